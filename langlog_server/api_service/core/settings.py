import os
import logging
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Settings for the HTTP surface. Database, broker and worker settings live in the processing service."""
    model_config = SettingsConfigDict(case_sensitive=True, extra="ignore")

    # API Configuration
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "LangLog API"
    VERSION: str = "1.0.0"

    # Header carrying the caller's user id; authentication happens upstream
    USER_ID_HEADER: str = "X-User-Id"

    # CORS Configuration
    ALLOWED_ORIGINS_STR: str = os.getenv(
        "ALLOWED_ORIGINS",
        "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173",
    )

    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        """
        Returns a list of allowed origins for CORS.
        Reads from the ALLOWED_ORIGINS environment variable.
        """
        if not self.ALLOWED_ORIGINS_STR:
            return []
        return [origin.strip() for origin in self.ALLOWED_ORIGINS_STR.split(",")]

    # Development settings
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"


settings = Settings()
