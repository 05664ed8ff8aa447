from __future__ import annotations

from gensessions.services.runtime import SessionRuntime, get_runtime


def get_session_runtime() -> SessionRuntime:
  """FastAPI dependency for the process-wide session runtime."""
  return get_runtime()
