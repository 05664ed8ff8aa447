"""Text helpers shared by the storage and session layers."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any

_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# NUL and C0 control characters except tab, line feed and carriage return.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")


def to_iso(value: datetime) -> str:
  """Format an aware datetime the way every stored timestamp is written."""
  return value.astimezone(UTC).strftime(_DATE_FORMAT)


def now_iso() -> str:
  """Return the current UTC time as an ISO-8601 string."""
  return to_iso(datetime.now(UTC))


def sanitize_text(value: str) -> str:
  """Strip control characters that Postgres text and JSONB columns reject."""
  return _CONTROL_CHARS.sub("", value)


def sanitize_payload(value: Any) -> Any:
  """Recursively sanitize every string inside a JSON-like payload."""
  if isinstance(value, str):
    return sanitize_text(value)
  if isinstance(value, dict):
    return {sanitize_text(str(key)): sanitize_payload(item) for key, item in value.items()}
  if isinstance(value, list | tuple):
    return [sanitize_payload(item) for item in value]
  return value
