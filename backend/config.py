"""
Configuration management for the storefront backend.

Loads settings from .env via pydantic-settings.

Notes:
    - Money is stored in minor units (paisa); the gateway receives major units.
    - validate_production_settings() refuses unsafe production configs.
"""
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/storefront.db"
    db_timeout_seconds: float = 10.0

    # ── Public URLs ─────────────────────────────────────────────────
    # Base of the storefront; callback + redirect URLs are built from it
    app_url: str = "http://localhost:3000"

    # ── Payment Gateway (RupantorPay) ───────────────────────────────
    gateway_base_url: str = "https://payment.rupantorpay.com/api/payment"
    gateway_api_key: str = ""
    gateway_timeout_seconds: float = 15.0

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"

    # ── Auth (JWT) ──────────────────────────────────────────────────
    jwt_secret: str = ""
    jwt_issuer: str = "storefront-api"
    jwt_access_ttl_minutes: int = 60

    # ── Rate limits ─────────────────────────────────────────────────
    coupon_validate_rate_limit: int = 20   # per minute per client
    order_create_rate_limit: int = 10      # per minute per client

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def app_base(self) -> str:
        return self.app_url.rstrip("/")

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup. In production a missing gateway key or
        JWT secret, or a wildcard CORS origin, aborts startup.
        """
        if self.environment == "production":
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if not self.gateway_api_key:
                raise ValueError(
                    "GATEWAY_API_KEY must be set in production. "
                    "Checkout and payment verification need it."
                )
            if not self.jwt_secret:
                raise ValueError(
                    "JWT_SECRET must be set in production. "
                    "It is used to sign customer and admin access tokens."
                )
            if self.app_url.startswith("http://"):
                logger.warning("APP_URL is not https; gateway callbacks will be sent in clear text")
            logger.info("✅ Production settings validated")
        else:
            warnings = []
            if not self.gateway_api_key:
                warnings.append("GATEWAY_API_KEY not set (gateway calls will be rejected)")
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            for w in warnings:
                logger.warning(f"⚠️  {w}")


# Global settings instance
settings = Settings()
