"""Prediction store: keyed storage for prediction records.

Two backends share the ``PredictionStore`` interface:

* ``InMemoryPredictionStore``: the default.  Records live in a dict and are
  lost on restart.
* ``SqlPredictionStore``: the ``predictions`` table through SQLAlchemy, for
  deployments that need jobs to survive a restart.

Both enforce the lifecycle rules in one place (``_apply_changes``): identity
fields never change, and a record that reached a terminal status is frozen.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from app.config import settings
from app.errors import PredictionStateError
from app.models.prediction import (
    PredictionRecord,
    PredictionRow,
    TERMINAL_PREDICTION_STATUSES,
    utcnow,
)

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = {"id", "kind", "created_at", "input", "user_id"}


def _apply_changes(current: PredictionRecord, changes: dict[str, Any]) -> PredictionRecord:
    """Return ``current`` with ``changes`` applied, or raise PredictionStateError."""
    frozen = _IMMUTABLE_FIELDS & changes.keys()
    if frozen:
        raise PredictionStateError(
            f"Cannot modify {sorted(frozen)} on prediction {current.id}"
        )
    if current.is_terminal:
        raise PredictionStateError(
            f"Prediction {current.id} is already {current.status}"
        )
    if "remote_id" in changes and current.remote_id is not None:
        raise PredictionStateError(f"Prediction {current.id} already has a remote job")
    return current.model_copy(update=changes)


class PredictionStore(ABC):
    """Interface shared by all prediction store backends."""

    @abstractmethod
    def put(self, record: PredictionRecord) -> None:
        """Insert a new record.  Ids are never reused."""

    @abstractmethod
    def get(self, prediction_id: str) -> PredictionRecord | None:
        """Return a snapshot of the record, or None."""

    @abstractmethod
    def patch(self, prediction_id: str, **changes: Any) -> PredictionRecord:
        """Apply field changes to an existing record and return the result."""

    @abstractmethod
    def ids(self) -> list[str]:
        """Return every stored id in insertion order."""

    @abstractmethod
    def purge_expired(self, ttl_seconds: float, now: datetime | None = None) -> int:
        """Drop terminal records completed more than ``ttl_seconds`` ago.

        Records still processing are never purged.  Returns the count removed.
        """


class InMemoryPredictionStore(PredictionStore):
    """Dict-backed store guarded by a lock."""

    def __init__(self) -> None:
        self._records: dict[str, PredictionRecord] = {}
        self._lock = threading.Lock()

    def put(self, record: PredictionRecord) -> None:
        with self._lock:
            if record.id in self._records:
                raise PredictionStateError(f"Prediction {record.id} already exists")
            self._records[record.id] = record.model_copy(deep=True)

    def get(self, prediction_id: str) -> PredictionRecord | None:
        with self._lock:
            record = self._records.get(prediction_id)
            return record.model_copy(deep=True) if record else None

    def patch(self, prediction_id: str, **changes: Any) -> PredictionRecord:
        with self._lock:
            current = self._records.get(prediction_id)
            if current is None:
                raise KeyError(prediction_id)
            updated = _apply_changes(current, copy.deepcopy(changes))
            self._records[prediction_id] = updated
            return updated.model_copy(deep=True)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def purge_expired(self, ttl_seconds: float, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - timedelta(seconds=ttl_seconds)
        with self._lock:
            expired = [
                pid
                for pid, record in self._records.items()
                if record.is_terminal
                and record.completed_at is not None
                and record.completed_at < cutoff
            ]
            for pid in expired:
                del self._records[pid]
        return len(expired)


class SqlPredictionStore(PredictionStore):
    """SQLAlchemy-backed store using the ``predictions`` table."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def put(self, record: PredictionRecord) -> None:
        with self._session_factory() as db:
            if db.get(PredictionRow, record.id) is not None:
                raise PredictionStateError(f"Prediction {record.id} already exists")
            db.add(PredictionRow.from_record(record))
            db.commit()

    def get(self, prediction_id: str) -> PredictionRecord | None:
        with self._session_factory() as db:
            row = db.get(PredictionRow, prediction_id)
            return row.to_record() if row else None

    def patch(self, prediction_id: str, **changes: Any) -> PredictionRecord:
        with self._session_factory() as db:
            row = db.get(PredictionRow, prediction_id)
            if row is None:
                raise KeyError(prediction_id)
            updated = _apply_changes(row.to_record(), changes)
            for key in changes:
                setattr(row, key, getattr(updated, key))
            db.commit()
            return updated

    def ids(self) -> list[str]:
        with self._session_factory() as db:
            stmt = select(PredictionRow.id).order_by(PredictionRow.created_at)
            return list(db.scalars(stmt))

    def purge_expired(self, ttl_seconds: float, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - timedelta(seconds=ttl_seconds)
        with self._session_factory() as db:
            stmt = delete(PredictionRow).where(
                PredictionRow.status.in_(sorted(TERMINAL_PREDICTION_STATUSES)),
                PredictionRow.completed_at.is_not(None),
                PredictionRow.completed_at < cutoff,
            )
            result = db.execute(stmt)
            db.commit()
            return result.rowcount or 0


_store: PredictionStore | None = None


def get_prediction_store() -> PredictionStore:
    """Return the module-level store selected by ``PREDICTION_STORE``."""
    global _store
    if _store is None:
        if settings.prediction_store == "sql":
            from app.database import get_session_factory, init_db

            init_db()
            _store = SqlPredictionStore(get_session_factory())
        else:
            _store = InMemoryPredictionStore()
        logger.info(
            "Prediction store initialised",
            extra={"backend": type(_store).__name__},
        )
    return _store
