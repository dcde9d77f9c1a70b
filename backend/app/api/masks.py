"""Masks API: rasterize mask-editor strokes on the server.

POST /masks  strokes → base64 PNG mask ready for the inpainting ``mask`` input
"""

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from diffusion_studio.mask import (
    EDITOR_MAX_DIMENSION,
    Stroke,
    encode_png_base64,
    fit_canvas_size,
    rasterize_mask,
)

from app.deps import get_current_user
from app.errors import ValidationError

router = APIRouter(tags=["masks"])

MAX_CANVAS_DIMENSION = 4096


class StrokeIn(BaseModel):
    points: list[tuple[float, float]]
    width: int = 20
    tool: Literal["brush", "eraser"] = "brush"


class MaskRequest(BaseModel):
    """Canvas size comes either from ``width``/``height`` directly or from the
    reference image's size, scaled the way the editor scales it."""

    strokes: list[StrokeIn] = Field(default_factory=list)
    width: int | None = None
    height: int | None = None
    reference_width: int | None = None
    reference_height: int | None = None


class MaskResponse(BaseModel):
    mask: str
    data_uri: str
    width: int
    height: int


def _canvas_size(req: MaskRequest) -> tuple[int, int]:
    if req.reference_width and req.reference_height:
        return fit_canvas_size(req.reference_width, req.reference_height)
    if req.width and req.height:
        if not (1 <= req.width <= MAX_CANVAS_DIMENSION and 1 <= req.height <= MAX_CANVAS_DIMENSION):
            raise ValueError(
                f"Canvas dimensions must be between 1 and {MAX_CANVAS_DIMENSION}"
            )
        return req.width, req.height
    return EDITOR_MAX_DIMENSION, EDITOR_MAX_DIMENSION


@router.post("/masks", response_model=MaskResponse)
def create_mask(
    req: MaskRequest,
    user_id: str | None = Depends(get_current_user),
) -> MaskResponse:
    """Rasterize the strokes: brush paints white, eraser paints black."""
    try:
        size = _canvas_size(req)
        strokes = [Stroke(points=s.points, width=s.width, tool=s.tool) for s in req.strokes]
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    encoded = encode_png_base64(rasterize_mask(strokes, size))
    return MaskResponse(
        mask=encoded,
        data_uri=f"data:image/png;base64,{encoded}",
        width=size[0],
        height=size[1],
    )
