import asyncio
import contextlib
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Configure structured JSON logging as early as possible so every subsequent
# log record (including import-time warnings) uses the JSON formatter.
from app.logging_config import RequestIdMiddleware, configure_logging

# Use LOG_LEVEL env var directly here because settings hasn't been imported yet
configure_logging(level=os.environ.get("LOG_LEVEL", "INFO"))

from app.config import settings  # noqa: E402

# LOG_LEVEL may only be set in .env
if settings.log_level.upper() != os.environ.get("LOG_LEVEL", "INFO").upper():
    configure_logging(level=settings.log_level)

from app.api.gallery import router as gallery_router  # noqa: E402
from app.api.masks import router as masks_router  # noqa: E402
from app.api.predictions import router as predictions_router  # noqa: E402
from app.errors import AppError, ConfigurationError  # noqa: E402
from app.services.prediction_service import (  # noqa: E402
    get_prediction_service,
    reset_prediction_service,
)
from app.services.retention import run_retention_sweeper  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up")
    if not settings.replicate_api_token:
        logger.critical("REPLICATE_API_TOKEN is not set; refusing to start")
        raise ConfigurationError(
            "Replicate API token is not configured",
            hint="Set REPLICATE_API_TOKEN",
        )

    service = get_prediction_service()
    logger.info(
        "Prediction service ready",
        extra={
            "store": settings.prediction_store,
            "poll_interval_seconds": settings.poll_interval_seconds,
            "max_polls": settings.max_polls,
        },
    )

    sweeper: asyncio.Task | None = None
    if settings.prediction_ttl_seconds > 0:
        sweeper = asyncio.create_task(
            run_retention_sweeper(
                service.store,
                settings.prediction_ttl_seconds,
                settings.retention_sweep_seconds,
            )
        )

    yield

    logger.info("Application shutting down")
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    await service.aclose()
    reset_prediction_service()


app = FastAPI(title="Diffusion Studio API", lifespan=lifespan)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Request ID middleware must be added BEFORE CORS so every response carries
# the X-Request-ID header (including preflight OPTIONS responses).
app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)

_api_prefix = settings.api_base_path.rstrip("/")

for _router in (predictions_router, masks_router, gallery_router):
    app.include_router(_router, prefix=_api_prefix)
    # Serverless deployments route /x and /api/x to the same handler
    if _api_prefix:
        app.include_router(_router, include_in_schema=False)


@app.get(f"{_api_prefix}/health")
async def health():
    return {"status": "ok"}
