"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

ENV_FILE_PATH = Path(__file__).resolve().parents[1] / ".env"
_QUOTES = {'"', "'"}


def read_env_file(path: Path) -> dict[str, str]:
  """Parse KEY=VALUE lines from a local .env file.

  A quoted value may span several lines, which is how a service-account
  FIREBASE_PRIVATE_KEY usually gets pasted from the downloaded JSON.
  """
  if not path.is_file():
    return {}

  values: dict[str, str] = {}
  lines = iter(path.read_text(encoding="utf-8").splitlines())
  for raw_line in lines:
    line = raw_line.strip()
    if not line or line.startswith("#") or "=" not in line:
      continue
    key, value = line.removeprefix("export ").split("=", 1)
    key, value = key.strip(), value.strip()
    if not key:
      continue

    if value[:1] in _QUOTES:
      quote, body = value[0], value[1:]
      while not body.endswith(quote):
        try:
          body = f"{body}\n{next(lines).rstrip()}"
        except StopIteration:
          raise ValueError(f"Unterminated quoted value for {key} in {path}") from None
      value = body[:-1]

    values[key] = value
  return values


def load_env_file(path: Path = ENV_FILE_PATH) -> None:
  """Fill unset environment variables from the .env file; the process env always wins."""
  for key, value in read_env_file(path).items():
    os.environ.setdefault(key, value)


load_env_file()


@dataclass(frozen=True)
class Settings:
  """Typed settings for the reminder dispatcher."""

  environment: str
  port: int
  firebase_project_id: str | None
  firebase_client_email: str | None
  firebase_private_key: str | None
  trigger_secret: str | None
  lookback_seconds: int
  claim_ttl_seconds: int
  recipient_concurrency: int
  android_channel_id: str
  push_dry_run: bool
  allowed_origins: tuple[str, ...]
  log_dir: str
  log_to_file: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool

  @property
  def firebase_configured(self) -> bool:
    """Return whether all three service-account values are present."""
    return bool(self.firebase_project_id and self.firebase_client_email and self.firebase_private_key)


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ()

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if "*" in origins:
    raise ValueError("DISPATCH_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _parse_private_key(raw: str | None) -> str | None:
  """Restore newlines in PEM keys that were flattened into a single env line."""
  value = _optional_str(raw)
  if value is None:
    return None
  return value.replace("\\n", "\n")


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("DISPATCH_ENV", "development").lower()
  port = _positive_int("PORT", "3000")

  # The lookback window bounds how late a fire time may be and still get dispatched.
  lookback_seconds = _positive_int("DISPATCH_LOOKBACK_SECONDS", "60")
  claim_ttl_seconds = _positive_int("DISPATCH_CLAIM_TTL_SECONDS", "300")
  recipient_concurrency = _positive_int("DISPATCH_RECIPIENT_CONCURRENCY", "1")

  log_max_bytes = _positive_int("DISPATCH_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("DISPATCH_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("DISPATCH_LOG_BACKUP_COUNT must be zero or a positive integer.")

  return Settings(
    environment=environment,
    port=port,
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")),
    firebase_client_email=_optional_str(os.getenv("FIREBASE_CLIENT_EMAIL")),
    firebase_private_key=_parse_private_key(os.getenv("FIREBASE_PRIVATE_KEY")),
    trigger_secret=_optional_str(os.getenv("DISPATCH_TRIGGER_SECRET")),
    lookback_seconds=lookback_seconds,
    claim_ttl_seconds=claim_ttl_seconds,
    recipient_concurrency=recipient_concurrency,
    android_channel_id=(os.getenv("DISPATCH_ANDROID_CHANNEL_ID") or "event_reminders").strip(),
    push_dry_run=_parse_bool(os.getenv("DISPATCH_PUSH_DRY_RUN")),
    allowed_origins=_parse_origins(os.getenv("DISPATCH_ALLOWED_ORIGINS")),
    log_dir=(os.getenv("DISPATCH_LOG_DIR") or "./logs").strip(),
    log_to_file=_parse_bool(os.getenv("DISPATCH_LOG_TO_FILE")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("DISPATCH_LOG_HTTP_4XX")),
  )
