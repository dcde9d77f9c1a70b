"""Request schemas for the two generation modes.

Both schemas mirror the parameters the image models accept.  Optional fields
stay ``None`` until ``to_model_input()`` fills in the documented defaults, so
the record of what the caller actually sent is never rewritten.

Unknown keys are kept (``extra="allow"``) and forwarded to the model untouched.
"""

import random
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict

KIND_TEXT_TO_IMAGE = "text-to-image"
KIND_INPAINTING = "inpainting"

VALID_KINDS: list[str] = [KIND_TEXT_TO_IMAGE, KIND_INPAINTING]

# Defaults applied when a parameter is omitted
DEFAULT_WIDTH = 512
DEFAULT_HEIGHT = 512
DEFAULT_NUM_INFERENCE_STEPS = 25
DEFAULT_GUIDANCE_SCALE = 7.5
DEFAULT_SCHEDULER = "DPMSolverMultistep"
MAX_SEED = 999_999

_DATA_URI_PREFIX = "data:image/png;base64,"


def random_seed() -> int:
    """Pick a seed in the same range the web client uses (0-999999)."""
    return random.randint(0, MAX_SEED)


def ensure_data_uri(value: str) -> str:
    """Wrap raw base64 in a PNG data URI; leave URLs and data URIs alone."""
    if value.startswith("data:") or value.startswith(("http://", "https://")):
        return value
    return f"{_DATA_URI_PREFIX}{value}"


def missing_fields(raw: dict[str, Any] | None, required: list[str]) -> list[str]:
    """Return the required keys that are absent, null or empty strings."""
    raw = raw or {}
    return [name for name in required if raw.get(name) in (None, "")]


class TextToImageInput(BaseModel):
    """Parameters for a text-to-image prediction."""

    model_config = ConfigDict(extra="allow")

    REQUIRED_FIELDS: ClassVar[list[str]] = ["prompt"]

    prompt: str
    negative_prompt: str | None = None
    width: int | None = None
    height: int | None = None
    num_inference_steps: int | None = None
    guidance_scale: float | None = None
    seed: int | None = None

    def to_model_input(self) -> dict[str, Any]:
        extra = dict(self.model_extra or {})
        return {
            **extra,
            "prompt": self.prompt,
            "negative_prompt": self.negative_prompt or "",
            "width": self.width or DEFAULT_WIDTH,
            "height": self.height or DEFAULT_HEIGHT,
            "num_inference_steps": self.num_inference_steps or DEFAULT_NUM_INFERENCE_STEPS,
            "guidance_scale": self.guidance_scale or DEFAULT_GUIDANCE_SCALE,
            "seed": self.seed if self.seed is not None else random_seed(),
        }


class InpaintingInput(BaseModel):
    """Parameters for an inpainting prediction.

    ``image`` and ``mask`` are base64 PNGs (with or without a data-URI
    prefix) or URLs.  White mask pixels mark the region to repaint.
    """

    model_config = ConfigDict(extra="allow")

    REQUIRED_FIELDS: ClassVar[list[str]] = ["image", "mask", "prompt"]

    image: str
    mask: str
    prompt: str
    negative_prompt: str | None = None
    num_inference_steps: int | None = None
    guidance_scale: float | None = None
    scheduler: str | None = None
    seed: int | None = None

    def to_model_input(self) -> dict[str, Any]:
        extra = dict(self.model_extra or {})
        return {
            **extra,
            "prompt": self.prompt,
            "image": ensure_data_uri(self.image),
            "mask": ensure_data_uri(self.mask),
            "negative_prompt": self.negative_prompt or "",
            "num_inference_steps": self.num_inference_steps or DEFAULT_NUM_INFERENCE_STEPS,
            "guidance_scale": self.guidance_scale or DEFAULT_GUIDANCE_SCALE,
            "scheduler": self.scheduler or DEFAULT_SCHEDULER,
            "seed": self.seed if self.seed is not None else random_seed(),
        }


INPUT_SCHEMAS: dict[str, type[BaseModel]] = {
    KIND_TEXT_TO_IMAGE: TextToImageInput,
    KIND_INPAINTING: InpaintingInput,
}


def build_model_input(kind: str, raw: dict[str, Any]) -> dict[str, Any]:
    """Validate ``raw`` for ``kind`` and return the input sent to the model.

    Raises:
        ValueError: If ``kind`` is not a known generation mode.
        pydantic.ValidationError: If ``raw`` does not match the schema.
    """
    schema = INPUT_SCHEMAS.get(kind)
    if schema is None:
        raise ValueError(f"Unknown prediction kind '{kind}'. Valid: {VALID_KINDS}")
    return schema.model_validate(raw).to_model_input()
