"""
Configuration and settings for the Mess Connect backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO", env="LOG_LEVEL")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "MESS_USE_IN_MEMORY_BACKENDS", "use_in_memory_backends"
        ),
    )

    # Key-value store (Redis preferred, SQL as fallback)
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    kv_namespace: str = Field(default="messconnect", env="KV_NAMESPACE")
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # Auth
    jwt_secret_key: str = Field(
        default="change-me-in-production", env="JWT_SECRET_KEY"
    )
    jwt_expire_minutes: int = Field(default=60 * 24, env="JWT_EXPIRE_MINUTES")
    verification_token_ttl_minutes: int = Field(
        default=60 * 24, env="VERIFICATION_TOKEN_TTL_MINUTES"
    )
    reset_token_ttl_minutes: int = Field(default=60, env="RESET_TOKEN_TTL_MINUTES")

    # Seed accounts created on demand
    admin_email: str = Field(default="admin@messconnect.com", env="ADMIN_EMAIL")
    admin_password: str = Field(default="password", env="ADMIN_PASSWORD")
    manager_email: str = Field(
        default="manager@messconnect.com", env="MANAGER_EMAIL"
    )
    manager_password: str = Field(default="password", env="MANAGER_PASSWORD")

    # Payments (Razorpay)
    razorpay_key_id: Optional[str] = Field(default=None, env="RAZORPAY_KEY_ID")
    razorpay_key_secret: Optional[str] = Field(
        default=None, env="RAZORPAY_KEY_SECRET"
    )
    razorpay_currency: str = Field(default="INR", env="RAZORPAY_CURRENCY")
    default_monthly_fee: float = Field(default=3000.0, env="DEFAULT_MONTHLY_FEE")

    # Email (Resend)
    resend_api_key: Optional[str] = Field(default=None, env="RESEND_API_KEY")
    email_from: str = Field(
        default="Mess Connect <noreply@messconnect.com>", env="EMAIL_FROM"
    )
    app_url: str = Field(default="http://localhost:3000", env="APP_URL")

    # S3-compatible storage for complaint images
    cos_endpoint: Optional[str] = Field(default=None, env="COS_ENDPOINT")
    cos_region: Optional[str] = Field(default=None, env="COS_REGION")
    cos_bucket: Optional[str] = Field(default=None, env="COS_BUCKET")
    aws_access_key_id: Optional[str] = Field(
        default=None, env="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, env="AWS_SECRET_ACCESS_KEY"
    )

    settings_cache_ttl_seconds: float = Field(
        default=300.0, env="SETTINGS_CACHE_TTL_SECONDS"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
