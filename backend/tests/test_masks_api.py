"""Tests for POST /api/masks (server-side mask rasterization)."""

from fastapi.testclient import TestClient

from diffusion_studio.mask import decode_png_base64

from app.main import app

client = TestClient(app)


def test_brush_and_eraser():
    resp = client.post(
        "/api/masks",
        json={
            "width": 100,
            "height": 100,
            "strokes": [
                {"points": [[10, 50], [90, 50]], "width": 10, "tool": "brush"},
                {"points": [[40, 50], [60, 50]], "width": 16, "tool": "eraser"},
            ],
        },
    )

    assert resp.status_code == 200
    body = resp.json()
    assert (body["width"], body["height"]) == (100, 100)
    assert body["data_uri"] == f"data:image/png;base64,{body['mask']}"

    mask = decode_png_base64(body["mask"])
    assert mask.size == (100, 100)
    assert mask.getpixel((20, 50)) == 255
    assert mask.getpixel((50, 50)) == 0
    assert mask.getpixel((50, 10)) == 0


def test_reference_size_scaled_like_editor():
    resp = client.post(
        "/api/masks",
        json={"reference_width": 2048, "reference_height": 1024, "strokes": []},
    )
    assert resp.status_code == 200
    assert (resp.json()["width"], resp.json()["height"]) == (512, 256)


def test_default_canvas():
    resp = client.post("/api/masks", json={"strokes": []})
    assert (resp.json()["width"], resp.json()["height"]) == (512, 512)


def test_invalid_stroke_width_is_400():
    resp = client.post(
        "/api/masks",
        json={"strokes": [{"points": [[0, 0]], "width": 0, "tool": "brush"}]},
    )
    assert resp.status_code == 400
    assert "width" in resp.json()["error"]


def test_unknown_tool_is_422():
    resp = client.post(
        "/api/masks",
        json={"strokes": [{"points": [[0, 0]], "tool": "spray"}]},
    )
    assert resp.status_code == 422


def test_oversized_canvas_is_400():
    resp = client.post(
        "/api/masks",
        json={"width": 100000, "height": 100000, "strokes": []},
    )
    assert resp.status_code == 400
    assert "4096" in resp.json()["error"]


def test_largest_canvas_allowed():
    resp = client.post("/api/masks", json={"width": 4096, "height": 8, "strokes": []})
    assert resp.status_code == 200
    assert (resp.json()["width"], resp.json()["height"]) == (4096, 8)
