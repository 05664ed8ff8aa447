"""Shared fixtures: in-memory runtime and an ASGI client bound to it."""

from __future__ import annotations

import os
import sys
from collections.abc import AsyncIterator, Callable
from dataclasses import replace
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

# Settings are read at import time by the app module.
os.environ.setdefault("GENSESSIONS_SESSION_STORE", "memory")
os.environ.setdefault("GENSESSIONS_AUTO_DISPATCH", "0")
os.environ.setdefault("GENSESSIONS_ALLOWED_ORIGINS", "http://localhost")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from gensessions.api.deps import get_session_runtime  # noqa: E402
from gensessions.config import get_settings  # noqa: E402
from gensessions.main import app  # noqa: E402
from gensessions.services.runtime import SessionRuntime, build_runtime  # noqa: E402
from gensessions.sessions.engine import EngineRegistry  # noqa: E402
from gensessions.storage.memory_sessions_repo import InMemorySessionsRepository  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def make_runtime() -> Callable[..., SessionRuntime]:
  """Build an in-memory runtime with the given engines and setting overrides."""

  def _make(engines: EngineRegistry | dict[str, object] | None = None, *, auto_dispatch: bool = False, **overrides: object) -> SessionRuntime:
    settings = replace(get_settings(), session_store="memory", **overrides)
    registry = engines if isinstance(engines, EngineRegistry) else EngineRegistry(engines or {})
    return build_runtime(settings, repo=InMemorySessionsRepository(), engines=registry, auto_dispatch=auto_dispatch)

  return _make


@pytest.fixture
async def api_client() -> AsyncIterator[Callable[[SessionRuntime], AsyncClient]]:
  """Yield a factory that binds an AsyncClient to a specific runtime."""
  clients: list[AsyncClient] = []

  def _bind(runtime: SessionRuntime) -> AsyncClient:
    app.dependency_overrides[get_session_runtime] = lambda: runtime
    client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    clients.append(client)
    return client

  yield _bind
  for client in clients:
    await client.aclose()
  app.dependency_overrides.clear()
