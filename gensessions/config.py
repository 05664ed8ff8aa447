"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from gensessions.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_ENV_PREFIX = "GENSESSIONS_"
_SESSION_STORES = {"memory", "postgres"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the generation session service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  log_dir: str | None
  pg_dsn: str | None
  pg_connect_timeout: int
  session_store: str
  auto_dispatch: bool
  engine_provider: str
  stale_session_seconds: int
  poll_interval_seconds: float
  stream_heartbeat_seconds: float
  stream_queue_size: int
  dummy_engine_delay_seconds: float


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _env(name: str, default: str | None = None) -> str | None:
  return os.getenv(f"{_ENV_PREFIX}{name}", default)


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ("http://localhost:3000",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("GENSESSIONS_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("GENSESSIONS_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _positive_int(name: str, default: str) -> int:
  value = int(_env(name, default) or default)
  if value <= 0:
    raise ValueError(f"{_ENV_PREFIX}{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(_env(name, default) or default)
  if value <= 0:
    raise ValueError(f"{_ENV_PREFIX}{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = (_env("ENV", "development") or "development").lower()
  # Toggle verbose error output and SQL echo in non-production environments.
  debug = _parse_bool(_env("DEBUG"))

  log_backup_count = int(_env("LOG_BACKUP_COUNT", "10") or "10")
  if log_backup_count < 0:
    raise ValueError("GENSESSIONS_LOG_BACKUP_COUNT must be zero or a positive integer.")

  pg_dsn = _optional_str(_env("PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))
  session_store = (_env("SESSION_STORE") or ("postgres" if pg_dsn else "memory")).strip().lower()
  if session_store not in _SESSION_STORES:
    raise ValueError("GENSESSIONS_SESSION_STORE must be 'memory' or 'postgres'.")

  if session_store == "postgres" and not pg_dsn:
    raise ValueError("GENSESSIONS_PG_DSN must be set when GENSESSIONS_SESSION_STORE is 'postgres'.")

  # Zero disables lazy expiry of abandoned sessions.
  stale_session_seconds = int(_env("STALE_SESSION_SECONDS", "1800") or "1800")
  if stale_session_seconds < 0:
    raise ValueError("GENSESSIONS_STALE_SESSION_SECONDS must be zero or a positive integer.")

  dummy_engine_delay_seconds = float(_env("DUMMY_ENGINE_DELAY_SECONDS", "0.5") or "0.5")
  if dummy_engine_delay_seconds < 0:
    raise ValueError("GENSESSIONS_DUMMY_ENGINE_DELAY_SECONDS must not be negative.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(_env("ALLOWED_ORIGINS")),
    log_max_bytes=_positive_int("LOG_MAX_BYTES", "5242880"),
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(_env("LOG_HTTP_4XX")),
    log_dir=_optional_str(_env("LOG_DIR")),
    pg_dsn=pg_dsn,
    pg_connect_timeout=_positive_int("PG_CONNECT_TIMEOUT", "5"),
    session_store=session_store,
    auto_dispatch=_parse_bool(_env("AUTO_DISPATCH"), default=True),
    engine_provider=(_env("ENGINE_PROVIDER") or "dummy").strip().lower(),
    stale_session_seconds=stale_session_seconds,
    poll_interval_seconds=_positive_float("POLL_INTERVAL_SECONDS", "3"),
    stream_heartbeat_seconds=_positive_float("STREAM_HEARTBEAT_SECONDS", "15"),
    stream_queue_size=_positive_int("STREAM_QUEUE_SIZE", "1000"),
    dummy_engine_delay_seconds=dummy_engine_delay_seconds,
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration."""
  # Migrations only need connectivity, so keep them independent of session tuning values.
  pg_connect_timeout = int(_env("PG_CONNECT_TIMEOUT", "5") or "5")
  if pg_connect_timeout <= 0:
    raise ValueError("GENSESSIONS_PG_CONNECT_TIMEOUT must be a positive integer.")

  pg_dsn = _optional_str(_env("PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))
  return DatabaseSettings(debug=_parse_bool(_env("DEBUG")), pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)
