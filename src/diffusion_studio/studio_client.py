"""Synchronous client for the Diffusion Studio backend.

Submits a generation, then polls ``GET /predictions/{id}`` once per second
until the job finishes.  This is the same loop the browser front end runs;
it lives here so scripts and the CLI can drive the backend too.
"""

import logging
import time
from typing import Any

import httpx

from diffusion_studio.inputs import KIND_INPAINTING, KIND_TEXT_TO_IMAGE

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:3001/api"

# A freshly created job can briefly 404 when requests land on different
# workers; tolerate that for the first few polls only.
_NOT_FOUND_GRACE_POLLS = 5
_NOT_FOUND_BACKOFF_SECONDS = 2.0


class StudioError(Exception):
    """The backend rejected a request or the prediction did not succeed."""


class StudioClient:
    """Submit-and-wait helper around the backend HTTP API."""

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        auth_token: str | None = None,
        poll_interval: float = 1.0,
        max_polls: int = 60,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {auth_token}"} if auth_token else {}
        self._http = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self.poll_interval = poll_interval
        self.max_polls = max_polls

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "StudioClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_image(self, params: dict[str, Any]) -> list[str]:
        """Run a text-to-image prediction and return its output URLs."""
        return self._run(KIND_TEXT_TO_IMAGE, params)

    def inpaint_image(self, params: dict[str, Any]) -> list[str]:
        """Run an inpainting prediction and return its output URLs."""
        return self._run(KIND_INPAINTING, params)

    def submit(self, kind: str, params: dict[str, Any]) -> dict[str, Any]:
        """POST the job and return the initial prediction record."""
        try:
            resp = self._http.post(f"/{kind}", json={"input": params})
        except httpx.HTTPError as exc:
            raise StudioError(f"Failed to create prediction: {exc}") from exc
        if not resp.is_success:
            raise StudioError(f"Failed to create prediction: {_error_message(resp)}")
        return resp.json()

    def get_prediction(self, prediction_id: str) -> httpx.Response:
        try:
            return self._http.get(f"/predictions/{prediction_id}")
        except httpx.HTTPError as exc:
            raise StudioError(f"Failed to check prediction status: {exc}") from exc

    def wait(self, prediction: dict[str, Any]) -> dict[str, Any]:
        """Poll until the prediction is terminal; raise on failure or timeout."""
        result = prediction
        polls = 0
        while result.get("status") not in ("succeeded", "failed"):
            if polls >= self.max_polls:
                raise StudioError(
                    f"Prediction timed out after {self.max_polls} polls"
                )
            time.sleep(self.poll_interval)
            polls += 1

            resp = self.get_prediction(prediction["id"])
            if resp.status_code == 404 and polls < _NOT_FOUND_GRACE_POLLS:
                logger.info(
                    "Prediction %s not visible yet (poll %d/%d)",
                    prediction["id"], polls, _NOT_FOUND_GRACE_POLLS,
                )
                time.sleep(_NOT_FOUND_BACKOFF_SECONDS)
                continue
            if not resp.is_success:
                raise StudioError(
                    f"Failed to check prediction status: {resp.status_code} - {_error_message(resp)}"
                )
            result = resp.json()
            logger.debug("Poll %d: status = %s", polls, result.get("status"))

        if result["status"] == "failed":
            raise StudioError(result.get("error") or "Prediction failed")
        return result

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _run(self, kind: str, params: dict[str, Any]) -> list[str]:
        prediction = self.submit(kind, params)
        result = self.wait(prediction)
        output = result.get("output")
        if isinstance(output, str):
            return [output]
        return list(output or [])


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:100] or f"HTTP {resp.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return str(body)[:100]
