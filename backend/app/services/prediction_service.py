"""Prediction service: accepts submissions and answers status queries.

``submit`` validates the input, stores a ``processing`` record, starts the
background worker and returns the record without waiting on Replicate.
``get`` reads only the store and never calls the remote service.
"""

import asyncio
import logging
from typing import Any

import pydantic

from diffusion_studio.inputs import INPUT_SCHEMAS, KIND_TEXT_TO_IMAGE, missing_fields
from diffusion_studio.replicate_client import ReplicateClient

from app.config import Settings, settings
from app.errors import ConfigurationError, NotFoundError, ValidationError
from app.models.prediction import PredictionRecord, new_prediction_id
from app.services.prediction_store import PredictionStore, get_prediction_store
from app.services.prediction_worker import RemoteTarget, run_prediction

logger = logging.getLogger(__name__)


def remote_target_for(kind: str, cfg: Settings) -> RemoteTarget:
    """Map a prediction kind to the configured Replicate model or version."""
    if kind == KIND_TEXT_TO_IMAGE:
        if cfg.text_to_image_version:
            return RemoteTarget(version=cfg.text_to_image_version)
        return RemoteTarget(model=cfg.text_to_image_model)
    return RemoteTarget(version=cfg.inpainting_version)


def validate_input(kind: str, raw_input: Any) -> dict[str, Any]:
    """Check ``raw_input`` against the schema for ``kind``.

    Raises:
        ValidationError: Required fields are missing or a field has the wrong type.
    """
    schema = INPUT_SCHEMAS[kind]
    required = list(schema.REQUIRED_FIELDS)
    raw = raw_input if isinstance(raw_input, dict) else {}

    missing = missing_fields(raw, required)
    if missing:
        raise ValidationError(
            "Missing required fields",
            required=required,
            missing=missing,
            received=list(raw),
        )

    try:
        schema.model_validate(raw)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            "Invalid input",
            required=required,
            missing=[],
            received=list(raw),
            details=exc.errors(include_url=False, include_context=False, include_input=False),
        ) from exc
    return raw


class PredictionService:
    """Owns the background tasks spawned for submitted predictions."""

    def __init__(
        self,
        store: PredictionStore,
        cfg: Settings,
        client: ReplicateClient | None = None,
    ) -> None:
        self.store = store
        self.settings = cfg
        self._client = client
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Remote client
    # ------------------------------------------------------------------

    def get_client(self) -> ReplicateClient:
        """Return the Replicate client, creating it on first use.

        Raises:
            ConfigurationError: No API token is configured.
        """
        if self._client is None:
            if not self.settings.replicate_api_token:
                raise ConfigurationError(
                    "Replicate API token is not configured",
                    hint="Set REPLICATE_API_TOKEN",
                )
            self._client = ReplicateClient(
                self.settings.replicate_api_token,
                base_url=self.settings.replicate_api_base_url,
                timeout=self.settings.replicate_timeout_seconds,
            )
        return self._client

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit(
        self,
        kind: str,
        raw_input: Any,
        *,
        user_id: str | None = None,
    ) -> PredictionRecord:
        """Create a prediction and start fulfilling it in the background."""
        payload = validate_input(kind, raw_input)
        client = self.get_client()

        record = PredictionRecord(
            id=new_prediction_id(),
            kind=kind,
            input=payload,
            user_id=user_id,
        )
        self.store.put(record)

        task = asyncio.create_task(
            run_prediction(
                record.id,
                store=self.store,
                client=client,
                target=remote_target_for(kind, self.settings),
                poll_interval=self.settings.poll_interval_seconds,
                max_polls=self.settings.max_polls,
            ),
            name=f"prediction-{record.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            "Prediction submitted",
            extra={"prediction_id": record.id, "kind": kind, "user_id": user_id},
        )
        return record

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, prediction_id: str, *, user_id: str | None = None) -> PredictionRecord:
        """Return a stored prediction.

        When ``user_id`` is given, a prediction owned by someone else is
        reported as not found.

        Raises:
            NotFoundError: No visible prediction has that id.
        """
        record = self.store.get(prediction_id)
        if record is not None and user_id is not None and record.user_id != user_id:
            record = None

        if record is None:
            body: dict[str, Any] = {"requested_id": prediction_id}
            if self.settings.expose_prediction_ids:
                body["available_ids"] = self._visible_ids(user_id)
            raise NotFoundError("Prediction not found", **body)
        return record

    def _visible_ids(self, user_id: str | None) -> list[str]:
        if user_id is None:
            return self.store.ids()
        visible = []
        for pid in self.store.ids():
            record = self.store.get(pid)
            if record is not None and record.user_id == user_id:
                visible.append(pid)
        return visible

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight prediction task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel in-flight predictions and close the remote client."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d in-flight predictions", len(tasks))
        if self._client is not None:
            await self._client.aclose()
            self._client = None


_service: PredictionService | None = None


def get_prediction_service() -> PredictionService:
    """Return the module-level PredictionService singleton."""
    global _service
    if _service is None:
        _service = PredictionService(get_prediction_store(), settings)
    return _service


def reset_prediction_service() -> None:
    """Forget the singleton (used on shutdown so a restart builds a fresh one)."""
    global _service
    _service = None
