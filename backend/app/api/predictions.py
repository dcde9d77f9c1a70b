"""Predictions API: submit image generations and poll their status.

Implements:
  POST /text-to-image              submit a text-to-image prediction
  POST /inpainting                 submit an inpainting prediction
  GET  /predictions/{prediction_id}  poll one prediction

Submissions return the ``processing`` record immediately; Replicate is called
from a background task.  Clients poll the status route until the prediction
is ``succeeded`` or ``failed``.
"""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from diffusion_studio.inputs import KIND_INPAINTING, KIND_TEXT_TO_IMAGE

from app.deps import get_current_user
from app.models.prediction import PUBLIC_FIELDS, PredictionRecord
from app.services.prediction_service import get_prediction_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["predictions"])


# ---------------------------------------------------------------------------
# Response schema
# ---------------------------------------------------------------------------


class PredictionResponse(BaseModel):
    """Public representation of a prediction record."""

    id: str
    status: str
    created_at: datetime
    completed_at: datetime | None
    input: dict[str, Any]
    output: Any = None
    error: str | None


def _to_response(record: PredictionRecord) -> PredictionResponse:
    return PredictionResponse.model_validate(record.model_dump(include=PUBLIC_FIELDS))


def _input_of(payload: dict[str, Any] | None) -> Any:
    return (payload or {}).get("input")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/text-to-image", response_model=PredictionResponse)
async def create_text_to_image(
    payload: dict[str, Any] | None = Body(default=None),
    user_id: str | None = Depends(get_current_user),
) -> PredictionResponse:
    """Start a text-to-image prediction.  ``input.prompt`` is required."""
    service = get_prediction_service()
    record = await service.submit(KIND_TEXT_TO_IMAGE, _input_of(payload), user_id=user_id)
    return _to_response(record)


@router.post("/inpainting", response_model=PredictionResponse)
async def create_inpainting(
    payload: dict[str, Any] | None = Body(default=None),
    user_id: str | None = Depends(get_current_user),
) -> PredictionResponse:
    """Start an inpainting prediction.  ``image``, ``mask`` and ``prompt`` are required."""
    service = get_prediction_service()
    record = await service.submit(KIND_INPAINTING, _input_of(payload), user_id=user_id)
    return _to_response(record)


@router.get("/predictions/{prediction_id}", response_model=PredictionResponse)
async def get_prediction(
    prediction_id: str,
    user_id: str | None = Depends(get_current_user),
) -> PredictionResponse:
    """Return the current state of a prediction from the local store."""
    service = get_prediction_service()
    return _to_response(service.get(prediction_id, user_id=user_id))
