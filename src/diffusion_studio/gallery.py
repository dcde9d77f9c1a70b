"""Gallery of finished generations, persisted as a small JSON document.

The document has a single namespaced key holding the items newest-first::

    {"stability-ai-gallery": [{"id": ..., "imageUrl": ..., ...}, ...]}

The camelCase field names match what the web client already stores in
browser local storage, so a gallery exported from the browser can be dropped
in unchanged.

Writers serialise on a per-file lock and replace the file atomically, so
concurrent saves from the API's worker threads never drop each other's items.
A file that no longer parses is left untouched: reads treat it as empty, but
``add`` and ``delete`` refuse to write over it.
"""

import json
import logging
import os
import random
import string
import threading
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from diffusion_studio.inputs import KIND_INPAINTING, KIND_TEXT_TO_IMAGE

logger = logging.getLogger(__name__)

GALLERY_STORAGE_KEY = "stability-ai-gallery"

GalleryType = Literal["text-to-image", "inpainting"]
GalleryFilter = Literal["all", "text-to-image", "inpainting"]

_ID_ALPHABET = string.ascii_lowercase + string.digits

_path_locks: dict[Path, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = path.resolve()
    with _path_locks_guard:
        return _path_locks.setdefault(key, threading.Lock())


class GalleryCorruptError(Exception):
    """The gallery file exists but is not a readable gallery document."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Gallery file {path} is unreadable; refusing to overwrite it")
        self.path = path


class GalleryItem(BaseModel):
    """One saved generation."""

    model_config = {"populate_by_name": True}

    id: str
    image_url: str = Field(alias="imageUrl")
    prompt: str
    type: GalleryType
    timestamp: str
    parameters: dict[str, Any] | None = None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def _new_item_id() -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"item-{int(time.time() * 1000)}-{suffix}"


class GalleryStore:
    """CRUD over one gallery file, safe for writers in the same process."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self) -> list[dict[str, Any]]:
        """Return the stored items, or raise GalleryCorruptError."""
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise GalleryCorruptError(self.path) from exc
        if not isinstance(data, dict):
            raise GalleryCorruptError(self.path)
        items = data.get(GALLERY_STORAGE_KEY, [])
        if not isinstance(items, list):
            raise GalleryCorruptError(self.path)
        return items

    def _write(self, items: list[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f"{self.path.name}.tmp-{uuid.uuid4().hex}")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump({GALLERY_STORAGE_KEY: items}, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        finally:
            if tmp.exists():
                tmp.unlink()

    def list_items(self, type: GalleryFilter = "all") -> list[GalleryItem]:
        """Return saved items, newest first, optionally filtered by type."""
        try:
            stored = self._load()
        except GalleryCorruptError:
            logger.warning("Could not read gallery file %s; treating as empty", self.path)
            stored = []

        items: list[GalleryItem] = []
        for raw in stored:
            try:
                items.append(GalleryItem.model_validate(raw))
            except ValueError:
                logger.warning("Skipping malformed gallery item in %s", self.path)
        if type == "all":
            return items
        return [item for item in items if item.type == type]

    def get(self, item_id: str) -> GalleryItem | None:
        return next((item for item in self.list_items() if item.id == item_id), None)

    def add(
        self,
        image_url: str,
        prompt: str,
        type: GalleryType,
        parameters: dict[str, Any] | None = None,
    ) -> GalleryItem:
        """Prepend a new item and persist the gallery.

        Raises GalleryCorruptError, without writing, when the existing file
        cannot be parsed.
        """
        if type not in (KIND_TEXT_TO_IMAGE, KIND_INPAINTING):
            raise ValueError(f"Unknown gallery item type '{type}'")
        item = GalleryItem(
            id=_new_item_id(),
            image_url=image_url,
            prompt=prompt,
            type=type,
            timestamp=datetime.now(timezone.utc).isoformat(),
            parameters=parameters,
        )
        with _lock_for(self.path):
            self._write([item.to_json(), *self._load()])
        logger.debug("Added gallery item %s to %s", item.id, self.path)
        return item

    def delete(self, item_id: str) -> bool:
        """Remove an item.  Returns False when no item has that id."""
        with _lock_for(self.path):
            current = self._load()
            remaining = [
                raw for raw in current
                if not (isinstance(raw, dict) and raw.get("id") == item_id)
            ]
            if len(remaining) == len(current):
                return False
            self._write(remaining)
        return True
