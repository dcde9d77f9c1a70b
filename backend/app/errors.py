"""Application error taxonomy.

Errors raised to a caller (``ValidationError``, ``NotFoundError``,
``ConfigurationError``) carry an HTTP status and a JSON body; ``main`` installs
one exception handler that renders them at the top level of the response.

The ``Upstream*`` errors describe how a background prediction ended.  They are
recorded on the prediction, never raised past the worker.
"""

from typing import Any


class AppError(Exception):
    """Base class for all application errors."""

    status_code: int = 500

    def __init__(self, message: str, **body: Any) -> None:
        super().__init__(message)
        self.message = message
        self.body = body

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, **self.body}


class ValidationError(AppError):
    """Submitted input is missing required fields or has bad types."""

    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class ConfigurationError(AppError):
    """The server is missing configuration it needs (e.g. the API token)."""

    status_code = 503


class PredictionStateError(AppError):
    """A write would break the prediction lifecycle (e.g. a second terminal transition)."""

    status_code = 409


class StorageError(AppError):
    """Stored data could not be read back, so a write was refused."""

    status_code = 500


# ── Fulfillment outcomes ─────────────────────────────────────────────────────


class UpstreamCreateError(AppError):
    """The remote service rejected or never received the create call."""

    status_code = 502


class UpstreamPollError(AppError):
    """One status poll failed.  Logged and swallowed by the poller."""

    status_code = 502


class UpstreamTimeout(AppError):
    """The remote job was still running when the poll budget ran out."""

    status_code = 504


class UpstreamFailure(AppError):
    """The remote job finished as failed or canceled."""

    status_code = 502
