"""Async client for the Replicate predictions API.

Only the two calls the job proxy needs are wrapped:

    create  POST /v1/predictions                         (pinned version)
            POST /v1/models/{owner}/{name}/predictions   (official model)
    status  GET  /v1/predictions/{id}

Every failure (network error or non-2xx response) surfaces as a
``ReplicateError`` whose ``detail`` prefers the ``detail`` field of the
remote JSON error body over the raw text.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.replicate.com/v1"

# Remote prediction states
REMOTE_STATUS_STARTING = "starting"
REMOTE_STATUS_PROCESSING = "processing"
REMOTE_STATUS_SUCCEEDED = "succeeded"
REMOTE_STATUS_FAILED = "failed"
REMOTE_STATUS_CANCELED = "canceled"

REMOTE_TERMINAL_STATUSES = {
    REMOTE_STATUS_SUCCEEDED,
    REMOTE_STATUS_FAILED,
    REMOTE_STATUS_CANCELED,
}

# Raw error text is truncated to keep job records readable
_MAX_ERROR_TEXT = 500


class ReplicateError(Exception):
    """A create or status call to Replicate failed."""

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


@dataclass
class RemotePrediction:
    """The subset of a Replicate prediction object the poller reads."""

    id: str
    status: str
    output: Any = None
    error: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in REMOTE_TERMINAL_STATUSES

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RemotePrediction":
        if not isinstance(payload, dict) or not payload.get("id"):
            raise ReplicateError(f"Malformed prediction payload: {str(payload)[:_MAX_ERROR_TEXT]}")
        error = payload.get("error")
        return cls(
            id=str(payload["id"]),
            status=str(payload.get("status") or REMOTE_STATUS_STARTING),
            output=payload.get("output"),
            error=str(error) if error else None,
            raw=payload,
        )


def error_detail(response: httpx.Response) -> str:
    """Extract a human-readable reason from a failed Replicate response."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        for key in ("detail", "error", "title"):
            if body.get(key):
                return str(body[key])

    text = response.text.strip()
    if text:
        return text[:_MAX_ERROR_TEXT]
    return f"Replicate API returned HTTP {response.status_code}"


class ReplicateClient:
    """Thin async wrapper around the Replicate HTTP API.

    Usage::

        async with ReplicateClient(api_token) as client:
            remote = await client.create_prediction({"prompt": "a red fox"},
                                                    model="stability-ai/sdxl")
            remote = await client.get_prediction(remote.id)
    """

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_token:
            raise ValueError("REPLICATE_API_TOKEN not set")
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Token {api_token}",
                "Content-Type": "application/json",
            },
        )

    async def create_prediction(
        self,
        model_input: dict[str, Any],
        *,
        version: str | None = None,
        model: str | None = None,
    ) -> RemotePrediction:
        """Create a prediction against a pinned ``version`` or an official ``model``.

        Exactly one of ``version`` / ``model`` must be given.  ``model`` is the
        ``owner/name`` slug of an official model.
        """
        if bool(version) == bool(model):
            raise ValueError("Pass exactly one of version= or model=")

        if model:
            path = f"/models/{model}/predictions"
            body: dict[str, Any] = {"input": model_input}
        else:
            path = "/predictions"
            body = {"version": version, "input": model_input}

        remote = await self._request("POST", path, json=body)
        logger.info(
            "Remote prediction created",
            extra={"remote_id": remote.id, "remote_status": remote.status},
        )
        return remote

    async def get_prediction(self, prediction_id: str) -> RemotePrediction:
        """Fetch the current state of a remote prediction."""
        return await self._request("GET", f"/predictions/{prediction_id}")

    async def _request(self, method: str, path: str, **kwargs: Any) -> RemotePrediction:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise ReplicateError(str(exc) or type(exc).__name__) from exc

        if not resp.is_success:
            raise ReplicateError(error_detail(resp), status_code=resp.status_code)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise ReplicateError(
                f"Invalid JSON from Replicate: {resp.text[:_MAX_ERROR_TEXT]}",
                status_code=resp.status_code,
            ) from exc
        return RemotePrediction.from_payload(payload)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ReplicateClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
