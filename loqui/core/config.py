import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database & Cache
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379"

    # Auth (identity provider is external; we only read the tenant id)
    AUTH_JWT_SECRET: Optional[str] = None
    OAUTH_STATE_SECRET: str = "dev-oauth-state-secret"

    # App URLs
    BACKEND_URL: str = "http://localhost:8000"
    FRONTEND_PUBLIC_URL: str = "http://localhost:3000"

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = False
    RATE_LIMIT_STORE: str = "memory"  # memory | redis
    RATE_LIMIT_WINDOW_SECONDS: int = 900
    RATE_LIMIT_MAX_REQUESTS: int = 100

    # Email marketing providers
    KIT_CLIENT_ID: Optional[str] = None
    KIT_CLIENT_SECRET: Optional[str] = None
    KIT_REDIRECT_URI: Optional[str] = None
    MAILCHIMP_CLIENT_ID: Optional[str] = None
    MAILCHIMP_CLIENT_SECRET: Optional[str] = None
    MAILCHIMP_REDIRECT_URI: Optional[str] = None
    SENDGRID_API_KEY: Optional[str] = None

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("loqui")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = ["DATABASE_URL"]
    if cfg.RATE_LIMIT_STORE == "redis":
        required_keys.append("REDIS_URL")
    if cfg.is_production:
        required_keys.append("AUTH_JWT_SECRET")

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if cfg.is_production and cfg.OAUTH_STATE_SECRET == "dev-oauth-state-secret":
        missing.append("OAUTH_STATE_SECRET")
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
