"""JSON-lines logging for the Diffusion Studio backend.

``configure_logging()`` runs once from ``main`` before anything else logs.
Each record is written to stdout as one JSON object.

A record is tagged with the job it belongs to whenever that is known:

* ``request_id``: set by ``RequestIdMiddleware`` while an HTTP request runs.
* ``prediction_id``: set by ``bind_prediction_id()`` around a background
  prediction, so every create and poll line for a job can be grepped together
  even though it runs long after the submitting request returned.
"""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_prediction_id_var: ContextVar[str] = ContextVar("prediction_id", default="")

_CONTEXT_FIELDS: dict[str, ContextVar[str]] = {
    "request_id": _request_id_var,
    "prediction_id": _prediction_id_var,
}

# Replicate polls and PNG encoding log per call at DEBUG/INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "PIL", "uvicorn.access")

# LogRecord attributes that are either rendered explicitly or not useful
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime"}


def get_prediction_id() -> str:
    return _prediction_id_var.get()


@contextmanager
def bind_prediction_id(prediction_id: str) -> Iterator[None]:
    """Tag every log record emitted inside the block with ``prediction_id``."""
    token = _prediction_id_var.set(prediction_id)
    try:
        yield
    finally:
        _prediction_id_var.reset(token)


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record.

    Top-level keys are ``timestamp``, ``level``, ``logger`` and ``message``,
    then whichever job identifiers are bound, then ``exc_info`` and anything
    passed through ``extra=``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, var in _CONTEXT_FIELDS.items():
            value = var.get()
            if value:
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    """Send every logger through a single stdout handler using JSON lines."""
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLineFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured", extra={"log_level": level.upper()}
    )


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind an ``X-Request-ID`` to each request and log one access line.

    An ID supplied by the caller is reused; otherwise a new one is generated.
    The ID is echoed on the response so clients can quote it when reporting a
    failed submission.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self._header_name) or uuid.uuid4().hex
        token = _request_id_var.set(request_id)
        started = time.monotonic()
        try:
            response = await call_next(request)
            elapsed_ms = round((time.monotonic() - started) * 1000, 1)
            response.headers[self._header_name] = request_id
            logging.getLogger("app.access").info(
                "%s %s %s",
                request.method,
                request.url.path,
                response.status_code,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
            )
        finally:
            _request_id_var.reset(token)
        return response
