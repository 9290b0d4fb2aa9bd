from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import os


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in os.getenv(name, default).split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    """Runtime configuration values exposed to FastAPI components."""

    app_name: str = "pm-identity"
    version: str = "0.1.0"
    database_url: str = os.getenv(
        "POSTGRES_URL",
        "postgres://pm:pm@localhost:5432/property_manager",
    )
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me-to-32-bytes-or-more")
    jwt_issuer: str = os.getenv("JWT_ISSUER", "pm.identity")
    jwt_audience: str = os.getenv("JWT_AUDIENCE", "pm.api")
    access_token_minutes: int = int(os.getenv("JWT_ACCESS_TOKEN_MINUTES", "60"))
    refresh_token_days: int = int(os.getenv("REFRESH_TOKEN_DAYS", "7"))
    refresh_token_rotation: bool = _env_bool("REFRESH_TOKEN_ROTATION", "false")
    user_token_secret: str = os.getenv("USER_TOKEN_SECRET", "")
    user_token_ttl_hours: int = int(os.getenv("USER_TOKEN_TTL_HOURS", "24"))
    invitation_ttl_hours: int = int(os.getenv("INVITATION_TTL_HOURS", "24"))
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "12"))
    frontend_base_url: str = os.getenv("FRONTEND_BASE_URL", "http://localhost:4200")
    refresh_cookie_secure: bool = _env_bool("REFRESH_COOKIE_SECURE", "true")
    cors_origins: tuple[str, ...] = _env_list(
        "CORS_ORIGINS", "http://localhost:4200,http://127.0.0.1:4200"
    )
    rate_limit_auth_requests: int = int(os.getenv("RATE_LIMIT_AUTH_REQUESTS", "5"))
    rate_limit_refresh_requests: int = int(os.getenv("RATE_LIMIT_REFRESH_REQUESTS", "10"))
    rate_limit_window_seconds: int = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
    rate_limit_backend: str = os.getenv("RATE_LIMIT_BACKEND", "memory").lower()
    redis_url: str = os.getenv("REDIS_URL", "")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format: str = os.getenv("LOG_FORMAT", "console").lower()

    @property
    def access_token_seconds(self) -> int:
        return self.access_token_minutes * 60

    @property
    def refresh_token_seconds(self) -> int:
        return self.refresh_token_days * 24 * 3600

    @property
    def effective_user_token_secret(self) -> str:
        """Secret used to sign verification and reset values."""
        return self.user_token_secret or self.jwt_secret

    def validate(self) -> "Settings":
        """Reject configurations that would weaken token security."""
        if len(self.jwt_secret.encode("utf-8")) < 32:
            raise ValueError("JWT_SECRET must be at least 256 bits (32 bytes) long")
        for name in (
            "access_token_minutes",
            "refresh_token_days",
            "user_token_ttl_hours",
            "invitation_ttl_hours",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached Settings instance for the running process."""
    return Settings().validate()
