"""Application settings and configuration management using Pydantic Settings"""

import logging
from typing import Any, List, Optional
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    # API Keys
    GEMINI_API_KEY: str = ""
    ADMIN_API_KEY: Optional[str] = None  # For admin endpoints authentication

    # Database Configuration (analysis history)
    DATABASE_URL: Optional[str] = "sqlite:///./facefit.db"

    # Redis Configuration
    REDIS_URL: Optional[str] = None
    CACHE_TTL: int = 86400  # 24 hours in seconds
    SESSION_TTL: int = 3600  # session-scoped flags expire after 1 hour

    # Security Settings
    ALLOWED_ORIGINS: str = "http://localhost:5173,https://face-fit-ke.netlify.app"  # Comma-separated list

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse ALLOWED_ORIGINS string into list"""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    # Gemini Model Configuration
    MODEL_NAME: str = "gemini-1.5-flash"
    ANALYSIS_TIMEOUT_SECONDS: float = 30.0

    # Payment backend (hosted checkout)
    PAYMENT_API_BASE_URL: str = "https://face-fit.onrender.com"
    CANONICAL_APP_URL: str = "https://face-fit-ke.netlify.app/"
    PAYMENT_TIMEOUT_SECONDS: float = 30.0
    PREMIUM_PRICE_KES: int = 500

    # Usage quota
    FREE_UPLOAD_LIMIT: int = 1

    # Upload limits
    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024  # 5MB

    # Pricing
    USD_TO_KES_RATE: float = 130.0
    DEFAULT_BUDGET_KES: int = 10000
    AFFORDABLE_THRESHOLD_KES: int = 10000

    # In-process orchestrator registry bound
    MAX_ACTIVE_SESSIONS: int = 10000

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Environment Settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Application Info
    APP_TITLE: str = "Face-Fit API"
    APP_DESCRIPTION: str = "AI beauty & fashion recommendations with pay-per-use analysis"
    APP_VERSION: str = "5.0.0"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)

        if self.PREMIUM_PRICE_KES <= 0:
            raise ValueError("PREMIUM_PRICE_KES must be a positive amount")

        # Validate required secrets
        if not self.GEMINI_API_KEY:
            raise ValueError(
                "GEMINI_API_KEY is required but not found in environment variables or .env"
            )

        logger.info(f"💻 Settings loaded for environment: {self.ENVIRONMENT}")


# Singleton instance
settings = Settings()
