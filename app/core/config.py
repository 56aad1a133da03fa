from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000"]


def _parse_cors_origins(v: Any) -> List[str]:
    if v is None or v == "":
        return _DEFAULT_CORS.copy()
    if isinstance(v, list):
        return [x for x in v if isinstance(x, str) and x.strip()]
    s = str(v).strip()
    if s.startswith("["):
        import json
        try:
            out = json.loads(s)
        except ValueError:
            return _DEFAULT_CORS.copy()
        return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
    return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    env: str = Field(default="development", alias="ENV")
    debug: bool = Field(default=False, alias="DEBUG")
    site_url: str = Field(default="http://localhost:3000", alias="SITE_URL")
    order_number_prefix: str = Field(default="FP", alias="ORDER_NUMBER_PREFIX")

    # Auth
    jwt_secret: str = Field(default="change-me-in-production-min-32-chars", alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    user_token_ttl_seconds: int = 7 * 24 * 3600
    admin_token_ttl_seconds: int = 24 * 3600

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="platform", alias="MONGODB_DB_NAME")

    # Redis (empty disables rate limiting and caching)
    redis_url: str = Field(default="", alias="REDIS_URL")

    # Asaas payment gateway
    asaas_api_key: str = Field(default="", alias="ASAAS_API_KEY")
    asaas_env: str = Field(default="sandbox", alias="ASAAS_ENV")
    asaas_webhook_token: str = Field(default="", alias="ASAAS_WEBHOOK_TOKEN")
    asaas_timeout_seconds: float = 30.0

    # Fulfillment partners
    printify_webhook_secret: str = Field(default="", alias="PRINTIFY_WEBHOOK_SECRET")
    prodigi_webhook_secret: str = Field(default="", alias="PRODIGI_WEBHOOK_SECRET")

    # Admin
    admin_flush_secret: str = Field(default="", alias="ADMIN_FLUSH_SECRET")

    # Gate (Cloudflare Turnstile)
    turnstile_secret_key: str = Field(default="", alias="TURNSTILE_SECRET_KEY")
    gate_cookie_max_age: int = 7 * 24 * 3600

    # Email (Resend)
    resend_api_key: str = Field(default="", alias="RESEND_API_KEY")
    email_from: str = Field(default="noreply@example.com", alias="EMAIL_FROM")
    email_from_name: str = Field(default="Platform", alias="EMAIL_FROM_NAME")

    # Consultation booking page
    booking_url: str = Field(default="", alias="BOOKING_URL")

    # Card token encryption (Fernet key, base64)
    token_encryption_key: str = Field(default="", alias="TOKEN_ENCRYPTION_KEY")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    @property
    def asaas_base_url(self) -> str:
        if self.asaas_env == "production":
            return "https://api.asaas.com/v3"
        return "https://sandbox.asaas.com/api/v3"


@lru_cache
def get_settings() -> Settings:
    return Settings()
