"""Inpainting mask rasterization.

The mask editor records freehand strokes as polylines, each tagged with the
tool that drew it and its width.  ``rasterize_mask`` replays them onto a black
canvas: brush strokes paint white (the region the model repaints), eraser
strokes paint black again.  Strokes are replayed in recorded order so a later
stroke wins wherever two overlap.
"""

import base64
import io
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from PIL import Image, ImageDraw

TOOL_BRUSH = "brush"
TOOL_ERASER = "eraser"

VALID_TOOLS = (TOOL_BRUSH, TOOL_ERASER)

MASK_BACKGROUND = 0
MASK_FOREGROUND = 255

# The editor scales the reference image so its longer side fits this size
EDITOR_MAX_DIMENSION = 512

Point = tuple[float, float]


@dataclass
class Stroke:
    """One pointer-drag captured by the mask editor."""

    points: list[Point] = field(default_factory=list)
    width: int = 20
    tool: str = TOOL_BRUSH

    def __post_init__(self) -> None:
        if self.tool not in VALID_TOOLS:
            raise ValueError(f"Unknown tool '{self.tool}'. Valid: {list(VALID_TOOLS)}")
        if self.width < 1:
            raise ValueError("Stroke width must be at least 1")
        self.points = [(float(x), float(y)) for x, y in self.points]

    @classmethod
    def from_flat(cls, coords: Sequence[float], width: int, tool: str = TOOL_BRUSH) -> "Stroke":
        """Build a stroke from the editor's flat ``[x0, y0, x1, y1, ...]`` list."""
        if len(coords) % 2:
            raise ValueError("Flat point list must have an even number of values")
        pairs = [(coords[i], coords[i + 1]) for i in range(0, len(coords), 2)]
        return cls(points=pairs, width=width, tool=tool)


def fit_canvas_size(width: int, height: int, max_dimension: int = EDITOR_MAX_DIMENSION) -> tuple[int, int]:
    """Scale (width, height) so the longer side equals ``max_dimension``."""
    if width <= 0 or height <= 0:
        raise ValueError("Image dimensions must be positive")
    scale = max_dimension / max(width, height)
    return max(1, round(width * scale)), max(1, round(height * scale))


def _draw_stroke(draw: ImageDraw.ImageDraw, stroke: Stroke) -> None:
    fill = MASK_FOREGROUND if stroke.tool == TOOL_BRUSH else MASK_BACKGROUND
    radius = stroke.width / 2

    if len(stroke.points) > 1:
        draw.line(stroke.points, fill=fill, width=stroke.width, joint="curve")

    # Round caps and joins: a disc at every vertex
    for x, y in stroke.points:
        draw.ellipse((x - radius, y - radius, x + radius, y + radius), fill=fill)


def rasterize_mask(strokes: Iterable[Stroke], size: tuple[int, int]) -> Image.Image:
    """Replay ``strokes`` onto a black ``size`` canvas and return an L-mode image."""
    mask = Image.new("L", size, MASK_BACKGROUND)
    draw = ImageDraw.Draw(mask)
    for stroke in strokes:
        if not stroke.points:
            continue
        _draw_stroke(draw, stroke)
    return mask


def encode_png_base64(image: Image.Image) -> str:
    """Encode an image as base64 PNG without a data-URI prefix."""
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def decode_png_base64(data: str) -> Image.Image:
    """Inverse of ``encode_png_base64``; tolerates a ``data:`` prefix."""
    if data.startswith("data:"):
        data = data.split(",", 1)[1]
    return Image.open(io.BytesIO(base64.b64decode(data)))
