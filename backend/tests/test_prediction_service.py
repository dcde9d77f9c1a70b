"""Tests for PredictionService: routing, ownership and task lifecycle."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from diffusion_studio.replicate_client import RemotePrediction

from app.config import settings
from app.errors import ConfigurationError, NotFoundError, ValidationError
from app.services.prediction_service import PredictionService, remote_target_for
from app.services.prediction_store import InMemoryPredictionStore


def _service(replicate=None, **overrides) -> PredictionService:
    cfg = settings.model_copy(
        update={"replicate_api_token": "r8_test", "poll_interval_seconds": 0, **overrides}
    )
    return PredictionService(InMemoryPredictionStore(), cfg, client=replicate)


def _slow_replicate():
    replicate = MagicMock()
    replicate.create_prediction = AsyncMock(
        return_value=RemotePrediction(id="r_1", status="starting")
    )
    replicate.get_prediction = AsyncMock(
        return_value=RemotePrediction(id="r_1", status="processing")
    )
    replicate.aclose = AsyncMock()
    return replicate


class TestRemoteTarget:
    def test_text_to_image_uses_official_model(self):
        cfg = settings.model_copy(update={"text_to_image_version": ""})
        target = remote_target_for("text-to-image", cfg)
        assert target.model == cfg.text_to_image_model
        assert target.version is None

    def test_text_to_image_pinned_version(self):
        cfg = settings.model_copy(update={"text_to_image_version": "ac732df8"})
        assert remote_target_for("text-to-image", cfg).version == "ac732df8"

    def test_inpainting_uses_version(self):
        target = remote_target_for("inpainting", settings)
        assert target.version == settings.inpainting_version
        assert target.model is None


class TestSubmitAndGet:
    @pytest.mark.asyncio
    async def test_record_visible_before_worker_runs(self):
        service = _service(_slow_replicate())
        record = await service.submit("text-to-image", {"prompt": "p"})

        assert service.get(record.id).status == "processing"
        assert service.pending_tasks == 1
        await service.aclose()

    @pytest.mark.asyncio
    async def test_validation_error_creates_nothing(self):
        service = _service(_slow_replicate())
        with pytest.raises(ValidationError) as exc_info:
            await service.submit("inpainting", {"prompt": "p"})
        assert exc_info.value.body["missing"] == ["image", "mask"]
        assert service.store.ids() == []
        assert service.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_missing_token(self):
        service = _service(replicate_api_token="")
        with pytest.raises(ConfigurationError):
            await service.submit("text-to-image", {"prompt": "p"})
        assert service.store.ids() == []

    @pytest.mark.asyncio
    async def test_owner_scoping(self):
        service = _service(_slow_replicate())
        mine = await service.submit("text-to-image", {"prompt": "p"}, user_id="alice")

        assert service.get(mine.id, user_id="alice").id == mine.id
        with pytest.raises(NotFoundError) as exc_info:
            service.get(mine.id, user_id="bob")
        assert exc_info.value.body == {"requested_id": mine.id, "available_ids": []}
        await service.aclose()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_drain_waits_for_completion(self):
        replicate = _slow_replicate()
        replicate.get_prediction.return_value = RemotePrediction(
            id="r_1", status="succeeded", output=["u"]
        )
        service = _service(replicate)
        record = await service.submit("text-to-image", {"prompt": "p"})

        await service.drain()

        assert service.pending_tasks == 0
        assert service.get(record.id).status == "succeeded"

    @pytest.mark.asyncio
    async def test_aclose_cancels_in_flight_predictions(self):
        replicate = _slow_replicate()
        service = _service(replicate, poll_interval_seconds=10)
        record = await service.submit("text-to-image", {"prompt": "p"})
        await asyncio.sleep(0)

        await service.aclose()

        result = service.store.get(record.id)
        assert result.status == "failed"
        assert result.error == "Prediction cancelled: server shutting down"
        replicate.aclose.assert_awaited_once()
