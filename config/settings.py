"""Application settings and configuration management using Pydantic Settings"""

import logging
from typing import Any, List, Optional
from pydantic_settings import BaseSettings
from config.secrets import get_secret_or_env, is_aws_environment

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    # API Keys (will be overridden by __init__ if in AWS)
    GEMINI_API_KEY: str = ""

    # Gemini Model Configuration
    ANALYSIS_MODEL: str = "gemini-2.0-flash"
    IMAGE_MODEL: str = "gemini-3-pro-image-preview"
    ANALYSIS_TEMPERATURE: float = 0.2
    ANALYSIS_MAX_OUTPUT_TOKENS: int = 2048

    # Polar.sh checkout
    POLAR_ACCESS_TOKEN: Optional[str] = None
    POLAR_PRODUCT_ID: Optional[str] = None
    POLAR_ENV: str = "production"  # production or sandbox
    POLAR_WEBHOOK_SECRET: Optional[str] = None

    # Resend transactional email
    RESEND_API_KEY: Optional[str] = None
    EMAIL_FROM: str = "Hair Director <noreply@hairdirector.site>"
    REFUND_ADMIN_EMAIL: str = "refund@hairdirector.site"
    REFUND_AMOUNT_LABEL: str = "$5.99"
    SITE_URL: str = "https://hairdirector.site"

    # Client-side storage emulation
    REDIS_URL: Optional[str] = None
    SESSION_TTL_SECONDS: int = 86400  # tab lifetime upper bound
    MAX_ACTIVE_CLIENTS: int = 500  # orchestrators held in memory
    MAX_MEMORY_CLIENTS: int = 1000  # client namespaces kept by the in-memory backend
    STORAGE_QUOTA_BYTES: int = 5 * 1024 * 1024
    MAX_HISTORY_ITEMS: int = 10
    REDUCED_HISTORY_ITEMS: int = 5
    MAX_SAVED_ITEMS: int = 20
    REDUCED_SAVED_ITEMS: int = 10
    THUMBNAIL_MAX_SIZE: int = 200
    THUMBNAIL_JPEG_QUALITY: int = 60

    # AWS
    AWS_REGION: str = "ap-northeast-2"

    # Security Settings
    ALLOWED_ORIGINS: str = "http://localhost:5173"  # Comma-separated list
    MAX_UPLOAD_SIZE_MB: int = 10

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse ALLOWED_ORIGINS string into list"""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Environment Settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Application Info
    APP_TITLE: str = "Hair Director API"
    APP_DESCRIPTION: str = "AI 얼굴형 분석 및 3x3 헤어스타일 그리드 생성 서비스"
    APP_VERSION: str = "1.4.0"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    def __init__(self, **kwargs: Any) -> None:
        """
        Initialize settings with AWS Secrets Manager integration

        Priority:
        1. AWS Secrets Manager (if in AWS environment)
        2. Environment variables (fallback)
        3. .env file (fallback)
        """
        super().__init__(**kwargs)

        if is_aws_environment():
            logger.info("🔐 AWS environment detected - loading secrets from Secrets Manager")
            self._load_aws_secrets()
        else:
            logger.info("💻 Local/Dev environment detected - using environment variables/.env file")

        if not self.GEMINI_API_KEY:
            raise ValueError(
                "GEMINI_API_KEY is required but not found in Secrets Manager or environment variables"
            )

    def _load_aws_secrets(self) -> None:
        secret_map = [
            ("hairdirector-gemini-api-key", "GEMINI_API_KEY", True),
            ("hairdirector-polar-access-token", "POLAR_ACCESS_TOKEN", False),
            ("hairdirector-polar-webhook-secret", "POLAR_WEBHOOK_SECRET", False),
            ("hairdirector-resend-api-key", "RESEND_API_KEY", False),
        ]
        for secret_name, attr, required in secret_map:
            try:
                value = get_secret_or_env(
                    secret_name=secret_name,
                    env_var_name=attr,
                    region_name=self.AWS_REGION,
                    required=required
                )
                if value:
                    setattr(self, attr, value)
                    logger.info(f"✅ {attr} loaded from Secrets Manager")
            except Exception as e:
                if required:
                    logger.error(f"❌ Failed to load {attr}: {str(e)}")
                else:
                    logger.warning(f"⚠️ Failed to load {attr}: {str(e)}")


# Singleton instance
settings = Settings()
