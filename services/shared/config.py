import os
from dataclasses import dataclass


def require_env(name: str) -> str:
    """
    Read a required environment variable.
    Raises RuntimeError at startup if the variable is absent or empty.
    Use this for all security-sensitive configuration (passwords, secrets, keys).
    """
    value = os.environ.get(name, "").strip()
    if not value:
        raise RuntimeError(
            f"Required environment variable '{name}' is not set. "
            "Set it before starting the service."
        )
    return value


def optional_env(name: str, default: str = "") -> str:
    """
    Read an optional environment variable with a safe default.
    Use this only for non-sensitive config (ports, log levels, feature flags).
    """
    return os.environ.get(name, default)


@dataclass(frozen=True)
class Settings:
    database_url: str | None
    pg_host: str
    pg_port: int
    pg_db: str
    pg_user: str
    pg_pass: str
    pg_pool_min: int
    pg_pool_max: int

    redis_url: str

    log_level: str
    rollup_hourly_seconds: int
    rollup_daily_seconds: int
    health_port: int


def load_settings() -> Settings:
    """Build settings from the environment. PG_PASS is only required without DATABASE_URL."""
    database_url = optional_env("DATABASE_URL") or None
    pg_pass = optional_env("PG_PASS") if database_url else require_env("PG_PASS")

    return Settings(
        database_url=database_url,
        pg_host=optional_env("PG_HOST", "localhost"),
        pg_port=int(optional_env("PG_PORT", "5432")),
        pg_db=optional_env("PG_DB", "netpulse"),
        pg_user=optional_env("PG_USER", "netpulse"),
        pg_pass=pg_pass,
        pg_pool_min=int(optional_env("PG_POOL_MIN", "1")),
        pg_pool_max=int(optional_env("PG_POOL_MAX", "10")),
        redis_url=optional_env("REDIS_URL", "redis://localhost:6379/0"),
        log_level=optional_env("LOG_LEVEL", "INFO"),
        rollup_hourly_seconds=int(optional_env("ROLLUP_HOURLY_SECONDS", "3600")),
        rollup_daily_seconds=int(optional_env("ROLLUP_DAILY_SECONDS", "86400")),
        health_port=int(optional_env("HEALTH_PORT", "8080")),
    )
