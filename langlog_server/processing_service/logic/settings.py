import os
import logging
from pathlib import Path
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Define project root and .env path
SERVICE_ROOT = Path(__file__).parent.parent
DOTENV_PATH = SERVICE_ROOT / '.env'

if DOTENV_PATH.exists():
    load_dotenv(DOTENV_PATH)
    logger.info(f"Loaded .env file from {DOTENV_PATH}")
else:
    load_dotenv()


class Settings:
    """Manages settings for the labeling workers, the session reconstructor and the cron scheduler."""

    # --- Gemini API ---
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    LANGUAGE_DETECTION_MODEL_NAME: str = os.getenv("LANGUAGE_DETECTION_MODEL_NAME", "gemini-2.5-flash-lite")
    LANGUAGE_DETECTION_TRUNCATE_LIMIT: int = int(os.getenv("LANGUAGE_DETECTION_TRUNCATE_LIMIT", "2000"))

    # --- YouTube Data API ---
    YOUTUBE_API_KEY: str = os.getenv("YOUTUBE_API_KEY", "")
    YOUTUBE_API_TIMEOUT_S: float = float(os.getenv("YOUTUBE_API_TIMEOUT_S", "10"))

    # --- Caching ---
    CACHE_DIR: Path = Path(os.getenv("CACHE_DIR", str(SERVICE_ROOT / "cache")))
    ENABLE_LLM_CACHE: bool = os.getenv("ENABLE_LLM_CACHE", "True").lower() == "true"
    CACHE_TTL_HOURS: int = int(os.getenv("CACHE_TTL_HOURS", "168"))

    # --- Event recording ---
    MAX_FUTURE_SKEW_MINUTES: int = int(os.getenv("MAX_FUTURE_SKEW_MINUTES", "5"))

    # --- Cron cadence ---
    TRANSLATE_INTERVAL_SECONDS: int = int(os.getenv("TRANSLATE_INTERVAL_SECONDS", "30"))
    TRANSLATE_BATCH_LIMIT: int = int(os.getenv("TRANSLATE_BATCH_LIMIT", "500"))
    STREAK_NUDGE_INTERVAL_MINUTES: int = int(os.getenv("STREAK_NUDGE_INTERVAL_MINUTES", "60"))
    STREAK_NUDGE_MAX_USERS: int = int(os.getenv("STREAK_NUDGE_MAX_USERS", "250"))

    # --- RabbitMQ ---
    RABBITMQ_HOST: str = os.getenv("RABBITMQ_HOST", "localhost")
    RABBITMQ_PORT: int = int(os.getenv("RABBITMQ_PORT", "5672"))
    RABBITMQ_USER: str = os.getenv("RABBITMQ_USER", "user")
    RABBITMQ_PASS: str = os.getenv("RABBITMQ_PASS", "password")
    LABEL_JOBS_QUEUE: str = os.getenv("LABEL_JOBS_QUEUE", "langlog_label_jobs")
    RECONNECT_DELAY_SECONDS: int = int(os.getenv("RECONNECT_DELAY_SECONDS", "5"))
    # "rabbitmq" publishes label jobs to the broker, "inline" runs them in-process after commit
    LABEL_JOB_BACKEND: str = os.getenv("LABEL_JOB_BACKEND", "rabbitmq")

    # --- PostgreSQL Database ---
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    POSTGRES_HOST: str = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: int = int(os.getenv("POSTGRES_PORT", "5432"))
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "langlog_user")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "")
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "langlog_db")

    @property
    def SQLALCHEMY_DATABASE_URL(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    def __init__(self):
        if not self.GEMINI_API_KEY:
            logger.warning("GEMINI_API_KEY is not set in environment. Language detection will report failures.")
        if not self.YOUTUBE_API_KEY:
            logger.info("YOUTUBE_API_KEY is not set. YouTube labels will be built without API metadata.")


settings = Settings()
