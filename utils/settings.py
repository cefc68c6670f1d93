"""Environment driven configuration for the gateway."""

import os
import logfire

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from utils.exceptions import SigningKeyUnavailable

load_dotenv()

DEVELOPMENT_SECRET = "DEVELOPMENT_ONLY_SECRET_CHANGE_IN_PRODUCTION_32bytes"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str = "") -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    """Gateway settings. Build with `Settings.from_env()` or directly in tests."""

    environment: str = "development"
    secret_key: str = DEVELOPMENT_SECRET
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = Field(default=15, gt=0)
    refresh_token_expire_days: int = Field(default=7, gt=0)

    general_rate_limit_per_second: float = Field(default=50.0, gt=0)
    general_rate_limit_burst: int = Field(default=100, gt=0)
    auth_rate_limit_per_second: float = Field(default=1.0, gt=0)
    auth_rate_limit_burst: int = Field(default=5, gt=0)
    rate_limit_shards: int = Field(default=16, gt=0)
    rate_limit_idle_seconds: float = Field(default=600.0, gt=0)
    rate_limit_sweep_interval: float = Field(default=60.0, gt=0)

    storage_workers: int = Field(default=8, gt=0)
    database_connection_string: str | None = None
    database_name: str = "session_gateway"
    redis_url: str | None = None
    refresh_token_revocation: bool = False

    cors_origins: list[str] = Field(default_factory=list)
    trusted_proxies: list[str] = Field(default_factory=lambda: ["127.0.0.1"])
    logfire_token: str | None = None

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in {"production", "prod"}

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.access_token_expire_minutes * 60

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self.refresh_token_expire_days * 24 * 3600

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from the process environment (and `.env`).

        Raises:
            SigningKeyUnavailable: `SECRET_KEY` is unset in production.
        """
        environment = os.getenv("ENVIRONMENT", "development")
        secret_key = os.getenv("SECRET_KEY")

        if not secret_key:
            if environment.lower() in {"production", "prod"}:
                raise SigningKeyUnavailable(
                    "SECRET_KEY environment variable must be set in production"
                )
            logfire.warning("Using development SECRET_KEY. Set SECRET_KEY in production!")
            secret_key = DEVELOPMENT_SECRET

        return cls(
            environment=environment,
            secret_key=secret_key,
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15")),
            refresh_token_expire_days=int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7")),
            general_rate_limit_per_second=float(
                os.getenv("GENERAL_RATE_LIMIT_PER_SECOND", "50")
            ),
            general_rate_limit_burst=int(os.getenv("GENERAL_RATE_LIMIT_BURST", "100")),
            auth_rate_limit_per_second=float(os.getenv("AUTH_RATE_LIMIT_PER_SECOND", "1")),
            auth_rate_limit_burst=int(os.getenv("AUTH_RATE_LIMIT_BURST", "5")),
            rate_limit_shards=int(os.getenv("RATE_LIMIT_SHARDS", "16")),
            rate_limit_idle_seconds=float(os.getenv("RATE_LIMIT_IDLE_SECONDS", "600")),
            rate_limit_sweep_interval=float(os.getenv("RATE_LIMIT_SWEEP_INTERVAL", "60")),
            storage_workers=int(os.getenv("STORAGE_WORKERS", "8")),
            database_connection_string=os.getenv("DATABASE_CONNECTION_STRING") or None,
            database_name=os.getenv("DATABASE_NAME", "session_gateway"),
            redis_url=os.getenv("REDIS_URL") or None,
            refresh_token_revocation=_env_bool("REFRESH_TOKEN_REVOCATION"),
            cors_origins=_env_list("CORS_ORIGINS"),
            trusted_proxies=_env_list("TRUSTED_PROXIES", "127.0.0.1"),
            logfire_token=os.getenv("LOGFIRE_WRITE_TOKEN") or None,
        )


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings. Call `get_settings.cache_clear()` after changing env."""
    return Settings.from_env()
