"""
Configuration for Clarity Service
=================================

Environment variables:
- OPENAI_API_KEY: API key for OpenAI (gpt-4o-mini, gpt-4o, vision extraction)
- ANTHROPIC_API_KEY: API key for Anthropic (claude-3-5-sonnet)
- DEFAULT_MODEL: Model used when none/unknown requested (default: gpt-4o-mini)
- VISION_MODEL: Vision-capable model for screenshot extraction (default: gpt-4o)
- LLM_TIMEOUT: Per-call timeout in seconds (default: 60, no retries)
- IMAGE_EXTRACTION_FALLBACK: Fall back to supplied text if extraction fails (default: true)
- STRIPE_SECRET_KEY / STRIPE_WEBHOOK_SECRET: Billing provider credentials
- DATABASE_URL: SQLAlchemy URL (default: sqlite:///./clarity.db)
- DEPLOYMENT_MODE: production|local (local enables the dev auth bypass)
"""

from typing import Optional, List
from pydantic_settings import BaseSettings
from functools import lru_cache

from .schemas import AIModel, DeploymentMode


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # OpenAI (fast/cheap tier, high-accuracy tier, vision)
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"

    # Anthropic (alternate-provider tier)
    anthropic_api_key: Optional[str] = None
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    anthropic_version: str = "2023-06-01"

    # Model selection
    default_model: AIModel = AIModel.GPT_4O_MINI
    vision_model: AIModel = AIModel.GPT_4O

    # Timeouts (seconds); failed calls are not retried
    llm_timeout: int = 60

    # Orchestration
    image_extraction_fallback: bool = True

    # Billing (Stripe)
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_base_url: str = "https://api.stripe.com/v1"
    stripe_price_pro: Optional[str] = None
    stripe_price_premium: Optional[str] = None

    # Database
    database_url: str = "sqlite:///./clarity.db"

    # Auth
    deployment_mode: DeploymentMode = DeploymentMode.PRODUCTION
    jwt_secret_key: str = "dev-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    local_user_id: str = "local-dev-user"

    # Sharing
    share_link_default_days: int = 30

    # HTTP
    cors_allow_origins: str = "http://localhost:5173,http://127.0.0.1:5173,http://localhost:8000"

    # Service info
    service_version: str = "1.0.0"

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def is_local(self) -> bool:
        return self.deployment_mode == DeploymentMode.LOCAL

    def cors_origins(self) -> List[str]:
        origins: List[str] = []
        for item in self.cors_allow_origins.split(","):
            origin = item.strip().strip('"').strip("'").rstrip("/")
            if origin:
                origins.append(origin)
        return origins

    def validate_llm_config(self) -> List[str]:
        """Validate model backend configuration, return list of warnings"""
        warnings = []

        if not self.openai_api_key:
            warnings.append("OPENAI_API_KEY not set (default and vision models use OpenAI)")

        if not self.anthropic_api_key:
            warnings.append("ANTHROPIC_API_KEY not set (claude-3-5-sonnet requests will fail)")

        if not self.stripe_secret_key:
            warnings.append("STRIPE_SECRET_KEY not set (paid subscriptions disabled)")

        if self.is_local:
            warnings.append("DEPLOYMENT_MODE=local: auth bypass is active, do not use in production")

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
