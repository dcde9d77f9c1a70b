# Tests for the backend polling client (httpx.MockTransport, no sleeping)

import httpx
import pytest

from diffusion_studio.studio_client import StudioClient, StudioError


def _record(status: str, **extra) -> dict:
    return {"id": "pred_1_abc", "status": status, "input": {}, **extra}


def _client(handler, **kwargs) -> StudioClient:
    return StudioClient(
        api_url="http://backend.test/api",
        poll_interval=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("diffusion_studio.studio_client.time.sleep", lambda s: None)


class TestStudioClient:
    def test_generate_polls_until_succeeded(self):
        statuses = iter(["processing", "processing", "succeeded"])
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, request.url.path))
            if request.method == "POST":
                return httpx.Response(200, json=_record("processing"))
            status = next(statuses)
            output = ["https://x/1.png"] if status == "succeeded" else None
            return httpx.Response(200, json=_record(status, output=output))

        with _client(handler) as client:
            urls = client.generate_image({"prompt": "fox"})

        assert urls == ["https://x/1.png"]
        assert calls[0] == ("POST", "/api/text-to-image")
        assert calls[1:] == [("GET", "/api/predictions/pred_1_abc")] * 3

    def test_inpaint_posts_to_inpainting(self):
        def handler(request):
            if request.method == "POST":
                assert request.url.path == "/api/inpainting"
                return httpx.Response(200, json=_record("processing"))
            return httpx.Response(200, json=_record("succeeded", output="https://x/2.png"))

        with _client(handler) as client:
            assert client.inpaint_image({"image": "a", "mask": "b", "prompt": "p"}) == [
                "https://x/2.png"
            ]

    def test_failed_prediction_raises_with_error(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json=_record("processing"))
            return httpx.Response(200, json=_record("failed", error="NSFW content detected"))

        with _client(handler) as client:
            with pytest.raises(StudioError, match="NSFW content detected"):
                client.generate_image({"prompt": "p"})

    def test_submit_error_uses_body_error(self):
        def handler(request):
            return httpx.Response(400, json={"error": "Missing required fields"})

        with _client(handler) as client:
            with pytest.raises(StudioError, match="Missing required fields"):
                client.generate_image({})

    def test_early_404s_are_tolerated(self):
        responses = iter([
            httpx.Response(404, json={"error": "Prediction not found"}),
            httpx.Response(404, json={"error": "Prediction not found"}),
            httpx.Response(200, json=_record("succeeded", output=["u"])),
        ])

        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json=_record("processing"))
            return next(responses)

        with _client(handler) as client:
            assert client.generate_image({"prompt": "p"}) == ["u"]

    def test_late_404_raises(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json=_record("processing"))
            return httpx.Response(404, json={"error": "Prediction not found"})

        with _client(handler) as client:
            with pytest.raises(StudioError, match="404"):
                client.generate_image({"prompt": "p"})

    def test_times_out_after_max_polls(self):
        polls = []

        def handler(request):
            if request.method == "GET":
                polls.append(1)
            return httpx.Response(200, json=_record("processing"))

        with _client(handler, max_polls=3) as client:
            with pytest.raises(StudioError, match="timed out after 3 polls"):
                client.generate_image({"prompt": "p"})
        assert len(polls) == 3

    def test_bearer_token_sent(self):
        def handler(request):
            assert request.headers["Authorization"] == "Bearer tok"
            return httpx.Response(200, json=_record("succeeded", output=[]))

        with _client(handler, auth_token="tok") as client:
            assert client.generate_image({"prompt": "p"}) == []

    def test_unreachable_backend_raises_studio_error(self):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        with _client(handler) as client:
            with pytest.raises(StudioError, match="Failed to create prediction"):
                client.generate_image({"prompt": "p"})

    def test_network_error_while_polling_raises_studio_error(self):
        def handler(request):
            if request.method == "GET":
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(201, json=_record("processing"))

        with _client(handler) as client:
            with pytest.raises(StudioError, match="Failed to check prediction status"):
                client.generate_image({"prompt": "p"})
