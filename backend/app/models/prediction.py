"""Prediction model: one image-generation job proxied to Replicate.

Status lifecycle:
    processing → succeeded
               ↘ failed

``processing`` is the only start state and a record makes at most one
transition out of it.  ``output`` is set only on success, ``error`` only on
failure.
"""

import random
import string
import time
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import JSON, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base

PREDICTION_STATUS_PROCESSING = "processing"
PREDICTION_STATUS_SUCCEEDED = "succeeded"
PREDICTION_STATUS_FAILED = "failed"

VALID_PREDICTION_STATUSES: list[str] = [
    PREDICTION_STATUS_PROCESSING,
    PREDICTION_STATUS_SUCCEEDED,
    PREDICTION_STATUS_FAILED,
]

TERMINAL_PREDICTION_STATUSES = {PREDICTION_STATUS_SUCCEEDED, PREDICTION_STATUS_FAILED}

# Fields returned to clients; kind, remote_id and user_id stay server-side
PUBLIC_FIELDS = {"id", "status", "created_at", "completed_at", "input", "output", "error"}

_ID_ALPHABET = string.ascii_lowercase + string.digits


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_prediction_id() -> str:
    """Return ``pred_<epoch-ms>_<9 base36 chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"pred_{int(time.time() * 1000)}_{suffix}"


class PredictionRecord(BaseModel):
    """Local record of a prediction job."""

    id: str
    status: str = PREDICTION_STATUS_PROCESSING
    kind: str
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    input: dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    error: str | None = None
    remote_id: str | None = None
    user_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PREDICTION_STATUSES

    def public(self) -> dict[str, Any]:
        """JSON-ready projection sent to clients (unset values are null)."""
        return self.model_dump(mode="json", include=PUBLIC_FIELDS)


class PredictionRow(Base):
    """Durable storage for ``PredictionRecord`` when ``PREDICTION_STORE=sql``."""

    __tablename__ = "predictions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(
        String(20), default=PREDICTION_STATUS_PROCESSING, index=True
    )
    kind: Mapped[str] = mapped_column(String(30))

    # --- Ownership ---
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # --- Remote job ---
    remote_id: Mapped[str | None] = mapped_column(String(64), default=None)

    # --- Payloads ---
    input: Mapped[dict] = mapped_column(JSON, default=dict)
    output: Mapped[Any] = mapped_column(JSON, default=None, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, default=None)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None, index=True
    )

    def to_record(self) -> PredictionRecord:
        return PredictionRecord(
            id=self.id,
            status=self.status,
            kind=self.kind,
            created_at=_as_utc(self.created_at),
            completed_at=_as_utc(self.completed_at) if self.completed_at else None,
            input=self.input or {},
            output=self.output,
            error=self.error,
            remote_id=self.remote_id,
            user_id=self.user_id,
        )

    @classmethod
    def from_record(cls, record: PredictionRecord) -> "PredictionRow":
        return cls(
            id=record.id,
            status=record.status,
            kind=record.kind,
            created_at=record.created_at,
            completed_at=record.completed_at,
            input=record.input,
            output=record.output,
            error=record.error,
            remote_id=record.remote_id,
            user_id=record.user_id,
        )


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
