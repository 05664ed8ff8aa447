"""Read GENSESSIONS_* settings from a local .env file before Settings are built."""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

ENV_FILE_VARIABLE = "GENSESSIONS_ENV_FILE"
_QUOTES = {'"', "'"}


def default_env_path() -> Path:
  """Return GENSESSIONS_ENV_FILE when set, else the .env beside the package."""
  explicit = os.getenv(ENV_FILE_VARIABLE)
  if explicit:
    return Path(explicit).expanduser()
  return Path(__file__).resolve().parents[2] / ".env"


def parse_env_lines(lines: Iterable[str]) -> dict[str, str]:
  """Parse KEY=value lines; later keys win, malformed lines are skipped.

  Unquoted values drop a trailing `` # comment``; quoted values are taken verbatim.
  """
  entries: dict[str, str] = {}
  for raw in lines:
    text = raw.strip()
    if text.startswith("export "):
      text = text.removeprefix("export ").lstrip()
    if not text or text[0] == "#":
      continue
    name, found, rest = text.partition("=")
    name = name.strip()
    if not found or not name or any(char.isspace() for char in name):
      continue
    entries[name] = _parse_value(rest.strip())
  return entries


def _parse_value(rest: str) -> str:
  if rest[:1] in _QUOTES:
    closing = rest.find(rest[0], 1)
    if closing > 0:
      return rest[1:closing]
  marker = rest.find(" #")
  return (rest[:marker] if marker >= 0 else rest).rstrip()


def load_env_file(path: Path, *, override: bool = False) -> list[str]:
  """Export the file's entries into os.environ and return the names that were set."""
  if not path.is_file():
    return []

  applied: list[str] = []
  for name, value in parse_env_lines(path.read_text(encoding="utf-8").splitlines()).items():
    if name in os.environ and not override:
      continue
    os.environ[name] = value
    applied.append(name)
  return applied
