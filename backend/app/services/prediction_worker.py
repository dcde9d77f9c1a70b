"""Background prediction worker: fulfills one prediction against Replicate.

The worker is started with ``asyncio.create_task()`` by the prediction
service right after the local record is stored.  It drives the record from
``processing`` to a terminal status:

    1. Build the model input from the submitted parameters (defaults applied).
    2. Create the remote job.  A failed create ends the prediction; no retry.
    3. Store the remote job id.
    4. Starting from the create response, poll the remote job once every
       ``poll_interval`` seconds until it is terminal or ``max_polls`` polls
       have been made.  A failed poll is logged and counts as a poll.
    5. Record the outcome: output on success, an error message otherwise.

Nothing escapes the task except cancellation; every failure is written to the
record instead.
"""

import asyncio
import logging
from dataclasses import dataclass

from diffusion_studio.inputs import build_model_input
from diffusion_studio.replicate_client import (
    REMOTE_STATUS_CANCELED,
    REMOTE_STATUS_FAILED,
    REMOTE_STATUS_SUCCEEDED,
    RemotePrediction,
    ReplicateClient,
    ReplicateError,
)

from app.errors import (
    AppError,
    PredictionStateError,
    UpstreamCreateError,
    UpstreamFailure,
    UpstreamPollError,
    UpstreamTimeout,
)
from app.logging_config import bind_prediction_id
from app.models.prediction import (
    PREDICTION_STATUS_FAILED,
    PREDICTION_STATUS_SUCCEEDED,
    utcnow,
)
from app.services.prediction_store import PredictionStore

logger = logging.getLogger(__name__)

SHUTDOWN_ERROR = "Prediction cancelled: server shutting down"


@dataclass(frozen=True)
class RemoteTarget:
    """Where a prediction is created: a pinned ``version`` or an official ``model``."""

    version: str | None = None
    model: str | None = None


async def _poll_until_terminal(
    client: ReplicateClient,
    remote: RemotePrediction,
    poll_interval: float,
    max_polls: int,
) -> RemotePrediction:
    """Poll ``remote`` until it is terminal or the budget is spent."""
    polls = 0
    while not remote.is_terminal and polls < max_polls:
        await asyncio.sleep(poll_interval)
        polls += 1
        try:
            remote = await client.get_prediction(remote.id)
        except ReplicateError as exc:
            err = UpstreamPollError(exc.detail, remote_id=remote.id, poll=polls)
            logger.warning(
                "Poll %d/%d failed: %s",
                polls, max_polls, err.message,
                extra={"remote_id": remote.id},
            )
            continue
        logger.debug(
            "Poll %d/%d: remote status %s",
            polls, max_polls, remote.status,
            extra={"remote_id": remote.id},
        )
    return remote


def _mark_failed(store: PredictionStore, prediction_id: str, error: str) -> None:
    try:
        store.patch(
            prediction_id,
            status=PREDICTION_STATUS_FAILED,
            error=error,
            completed_at=utcnow(),
        )
    except (KeyError, PredictionStateError):
        logger.warning("Could not mark prediction %s failed", prediction_id)
        return
    logger.info("Prediction failed: %s", error)


async def run_prediction(
    prediction_id: str,
    *,
    store: PredictionStore,
    client: ReplicateClient,
    target: RemoteTarget,
    poll_interval: float = 1.0,
    max_polls: int = 60,
) -> None:
    """Fulfill ``prediction_id`` in the background.

    Args:
        prediction_id: Id of a record already in ``store`` with status processing.
        store: Where the record lives.
        client: Replicate API client.
        target: Pinned version or official model to create the job against.
        poll_interval: Seconds to sleep before each status poll.
        max_polls: Status polls allowed before the prediction times out.
    """
    with bind_prediction_id(prediction_id):
        record = store.get(prediction_id)
        if record is None:
            logger.warning("Prediction %s vanished before fulfillment", prediction_id)
            return

        try:
            model_input = build_model_input(record.kind, record.input)

            try:
                remote = await client.create_prediction(
                    model_input, version=target.version, model=target.model
                )
            except ReplicateError as exc:
                raise UpstreamCreateError(exc.detail, upstream_status=exc.status_code) from exc

            store.patch(prediction_id, remote_id=remote.id)
            logger.info(
                "Polling remote prediction",
                extra={"remote_id": remote.id, "max_polls": max_polls},
            )

            remote = await _poll_until_terminal(client, remote, poll_interval, max_polls)

            if remote.status == REMOTE_STATUS_SUCCEEDED:
                store.patch(
                    prediction_id,
                    status=PREDICTION_STATUS_SUCCEEDED,
                    output=remote.output,
                    completed_at=utcnow(),
                )
                logger.info("Prediction succeeded", extra={"remote_id": remote.id})
            elif remote.status == REMOTE_STATUS_FAILED:
                raise UpstreamFailure(remote.error or "Prediction failed")
            elif remote.status == REMOTE_STATUS_CANCELED:
                raise UpstreamFailure(remote.error or "Prediction was canceled")
            else:
                raise UpstreamTimeout(f"Prediction timed out after {max_polls} polls")

        except asyncio.CancelledError:
            _mark_failed(store, prediction_id, SHUTDOWN_ERROR)
            raise
        except AppError as exc:
            _mark_failed(store, prediction_id, exc.message)
        except Exception as exc:
            logger.exception("Unexpected error while fulfilling prediction")
            _mark_failed(store, prediction_id, str(exc) or type(exc).__name__)
