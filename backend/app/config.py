from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

from diffusion_studio.replicate_client import DEFAULT_BASE_URL


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Replicate
    # The web client historically exported VITE_REPLICATE_API_TOKEN; accept both.
    replicate_api_token: str = Field(
        default="",
        validation_alias=AliasChoices("REPLICATE_API_TOKEN", "VITE_REPLICATE_API_TOKEN"),
    )
    replicate_api_base_url: str = DEFAULT_BASE_URL
    replicate_timeout_seconds: float = 30.0

    # Remote models
    # text-to-image goes to the official model endpoint unless a version is pinned
    text_to_image_model: str = "stability-ai/stable-diffusion-3.5-large"
    text_to_image_version: str = ""
    inpainting_version: str = (
        "95b7223104132402a9ae91cc677285bc5eb997834bd2349fa486f53910fd68b3"
    )

    # Routing
    api_base_path: str = "/api"

    # Polling
    poll_interval_seconds: float = 1.0
    max_polls: int = 60

    # Prediction store: "memory" (default) or "sql"
    prediction_store: str = "memory"
    database_url: str = "sqlite:///./diffusion_studio.db"

    # Retention. 0 keeps finished predictions forever.
    prediction_ttl_seconds: int = 3600
    retention_sweep_seconds: float = 300.0

    # Development aid: list known ids in 404 responses
    expose_prediction_ids: bool = True

    # Auth
    require_auth: bool = False
    auth_userinfo_url: str = "https://www.googleapis.com/oauth2/v3/userinfo"

    # Frontend
    cors_origins: list[str] = ["http://localhost:5173"]

    # Per-user gallery files live under this directory
    gallery_path: str = "./gallery"

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
