# Tests for mask rasterization

import pytest
from PIL import Image

from diffusion_studio.mask import (
    Stroke,
    decode_png_base64,
    encode_png_base64,
    fit_canvas_size,
    rasterize_mask,
)


class TestRasterizeMask:
    """Brush paints white, eraser paints black, later strokes win"""

    def test_empty_canvas_is_black(self):
        mask = rasterize_mask([], (64, 32))
        assert mask.mode == "L"
        assert mask.size == (64, 32)
        assert mask.getextrema() == (0, 0)

    def test_brush_stroke_width(self):
        stroke = Stroke(points=[(10, 50), (90, 50)], width=10, tool="brush")
        mask = rasterize_mask([stroke], (100, 100))

        assert mask.getpixel((50, 50)) == 255
        assert mask.getpixel((50, 47)) == 255
        assert mask.getpixel((50, 53)) == 255
        # Well outside the band
        assert mask.getpixel((50, 40)) == 0
        assert mask.getpixel((50, 60)) == 0

        column = [mask.getpixel((50, y)) for y in range(100)]
        white = sum(1 for v in column if v == 255)
        assert 9 <= white <= 12

    def test_eraser_restores_black(self):
        brush = Stroke(points=[(10, 50), (90, 50)], width=10, tool="brush")
        eraser = Stroke(points=[(40, 50), (60, 50)], width=16, tool="eraser")
        mask = rasterize_mask([brush, eraser], (100, 100))

        assert mask.getpixel((50, 50)) == 0
        assert mask.getpixel((20, 50)) == 255
        assert mask.getpixel((80, 50)) == 255

    def test_brush_after_eraser_wins(self):
        eraser = Stroke(points=[(10, 10), (90, 10)], width=10, tool="eraser")
        brush = Stroke(points=[(50, 0), (50, 20)], width=6, tool="brush")
        mask = rasterize_mask([eraser, brush], (100, 30))
        assert mask.getpixel((50, 10)) == 255

    def test_single_point_draws_round_dot(self):
        mask = rasterize_mask([Stroke(points=[(20, 20)], width=10)], (40, 40))
        assert mask.getpixel((20, 20)) == 255
        assert mask.getpixel((0, 0)) == 0

    def test_empty_stroke_skipped(self):
        mask = rasterize_mask([Stroke(points=[], width=10)], (10, 10))
        assert mask.getextrema() == (0, 0)


class TestStroke:
    def test_unknown_tool(self):
        with pytest.raises(ValueError, match="Unknown tool"):
            Stroke(points=[(0, 0)], tool="spray")

    def test_width_must_be_positive(self):
        with pytest.raises(ValueError):
            Stroke(points=[(0, 0)], width=0)

    def test_from_flat(self):
        stroke = Stroke.from_flat([1, 2, 3, 4], width=5, tool="eraser")
        assert stroke.points == [(1.0, 2.0), (3.0, 4.0)]
        assert stroke.tool == "eraser"

    def test_from_flat_odd_length(self):
        with pytest.raises(ValueError):
            Stroke.from_flat([1, 2, 3], width=5)


class TestCanvasAndEncoding:
    def test_fit_landscape(self):
        assert fit_canvas_size(1024, 768) == (512, 384)

    def test_fit_portrait_upscales(self):
        assert fit_canvas_size(100, 200) == (256, 512)

    def test_fit_rejects_zero(self):
        with pytest.raises(ValueError):
            fit_canvas_size(0, 10)

    def test_png_base64_has_no_prefix(self):
        encoded = encode_png_base64(Image.new("L", (8, 8), 255))
        assert not encoded.startswith("data:")
        decoded = decode_png_base64(f"data:image/png;base64,{encoded}")
        assert decoded.size == (8, 8)
        assert decoded.getpixel((4, 4)) == 255
