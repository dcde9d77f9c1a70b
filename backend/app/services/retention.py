"""Retention sweeper: drops finished predictions older than the configured TTL.

Runs as a background task for the life of the application.  Predictions that
are still processing are never removed.
"""

import asyncio
import logging

from app.services.prediction_store import PredictionStore

logger = logging.getLogger(__name__)


def sweep_once(store: PredictionStore, ttl_seconds: float) -> int:
    removed = store.purge_expired(ttl_seconds)
    if removed:
        logger.info(
            "Purged %d expired predictions",
            removed,
            extra={"ttl_seconds": ttl_seconds},
        )
    return removed


async def run_retention_sweeper(
    store: PredictionStore,
    ttl_seconds: float,
    interval_seconds: float,
) -> None:
    """Call ``sweep_once`` every ``interval_seconds`` until cancelled."""
    logger.info(
        "Retention sweeper started",
        extra={"ttl_seconds": ttl_seconds, "interval_seconds": interval_seconds},
    )
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            sweep_once(store, ttl_seconds)
        except Exception:
            logger.exception("Retention sweep failed")
