"""
Process-level configuration for the Foundation API.

Values come from the environment (or a local .env file). Credentials for the
M-PESA gateway are never hard-coded; an empty value means "not configured".
"""
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite:///./foundation.db"
    JWT_SECRET_KEY: str = "devsecretkey"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    ENVIRONMENT: str = "local"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    ORG_CODE: str = "KCE"
    FOUNDATION_NAME: str = "Kamune Cluster Elites Foundation"
    FOUNDATION_EMAIL: str = "info@kamune-elites.org"
    MEMBERSHIP_CURRENCY: str = "KSH"
    ANONYMOUS_DONOR_EMAIL: str = "anonymous@kamune-elites.org"

    MPESA_BASE_URL: str = "https://sandbox.safaricom.co.ke"
    MPESA_CONSUMER_KEY: str = ""
    MPESA_CONSUMER_SECRET: str = ""
    MPESA_SHORTCODE: str = ""
    MPESA_PASSKEY: str = ""
    MPESA_CALLBACK_URL: str = ""
    MPESA_TIMEOUT_SECONDS: float = 30.0


settings = Settings()
