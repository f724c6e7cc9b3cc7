from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    GOOGLE_CLOUD_PROJECT: str = ""
    GOOGLE_CLOUD_BUCKET_NAME: str = ""
    GOOGLE_APPLICATION_CREDENTIALS: str | None = None
    JOBS_PREFIX: str = "jobs"
    PREDICTIONS_PREFIX: str = "predictions"
    SMALL_IMAGE_PREFIX: str = "small"

    OPENAI_API_KEY: str = ""
    OPENAI_VISION_MODEL: str = "gpt-4o"
    DESCRIPTION_MAX_TOKENS: int = 150

    REPLICATE_API_TOKEN: str = ""
    REPLICATE_BASE_URL: str = "https://api.replicate.com/v1"
    STANDARD_MODEL: str = "kwaivgi/kling-v1.6-standard"
    HIGH_MODEL: str = "kwaivgi/kling-v1.6-pro"

    SIGNED_URL_TTL_SECONDS: int = 900
    PROMPT_MAX_CHARS: int = 350

    STORAGE_TIMEOUT_SECONDS: float = 30.0
    DESCRIPTION_TIMEOUT_SECONDS: float = 30.0
    PREDICTION_TIMEOUT_SECONDS: float = 30.0

    POLL_INTERVAL_SECONDS: float = 6.0
    POLL_MAX_ATTEMPTS: int = 32
    JOB_WRITE_ATTEMPTS: int = 3

    CORS_ALLOWED_ORIGINS: list[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True
    )

    @property
    def job_persistence_enabled(self) -> bool:
        return bool(self.GOOGLE_CLOUD_BUCKET_NAME)
