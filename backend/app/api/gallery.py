"""Gallery API: saved generations, one gallery file per user.

Implements:
  GET    /gallery            list items, newest first (``?type=`` filter)
  POST   /gallery            save an item
  DELETE /gallery/{item_id}  remove an item
"""

import logging
import re
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from diffusion_studio.gallery import (
    GalleryCorruptError,
    GalleryFilter,
    GalleryStore,
    GalleryType,
)

from app.config import settings
from app.deps import get_current_user
from app.errors import NotFoundError, StorageError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["gallery"])

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def get_gallery(user_id: str | None) -> GalleryStore:
    """Return the gallery store for ``user_id`` (``anonymous`` when auth is off)."""
    name = _UNSAFE_FILENAME_CHARS.sub("_", user_id or "anonymous")
    return GalleryStore(Path(settings.gallery_path) / f"{name}.json")


class GalleryItemIn(BaseModel):
    model_config = {"populate_by_name": True}

    image_url: str = Field(alias="imageUrl")
    prompt: str
    type: GalleryType
    parameters: dict[str, Any] | None = None


@router.get("/gallery")
def list_gallery(
    type: GalleryFilter = Query(default="all"),
    user_id: str | None = Depends(get_current_user),
) -> dict:
    items = get_gallery(user_id).list_items(type)
    return {"items": [item.to_json() for item in items]}


@router.post("/gallery", status_code=201)
def add_gallery_item(
    body: GalleryItemIn,
    user_id: str | None = Depends(get_current_user),
) -> dict:
    try:
        item = get_gallery(user_id).add(
            body.image_url, body.prompt, body.type, body.parameters
        )
    except GalleryCorruptError as exc:
        logger.error("Refusing to overwrite gallery", extra={"path": str(exc.path)})
        raise StorageError("Gallery is unreadable; it was left unchanged") from exc
    logger.info("Gallery item saved", extra={"item_id": item.id, "user_id": user_id})
    return item.to_json()


@router.delete("/gallery/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_gallery_item(
    item_id: str,
    user_id: str | None = Depends(get_current_user),
) -> Response:
    try:
        deleted = get_gallery(user_id).delete(item_id)
    except GalleryCorruptError as exc:
        logger.error("Refusing to overwrite gallery", extra={"path": str(exc.path)})
        raise StorageError("Gallery is unreadable; it was left unchanged") from exc
    if not deleted:
        raise NotFoundError("Gallery item not found", requested_id=item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
