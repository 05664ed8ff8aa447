"""Process-wide wiring of the session store, channel, driver and coordinators."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from gensessions.config import Settings, get_settings
from gensessions.services.dispatch import InProcessDispatcher, ManualDispatcher, SessionDispatcher
from gensessions.sessions.cancellation import CancellationRegistry
from gensessions.sessions.channel import ProgressChannel
from gensessions.sessions.driver import ExecutionDriver
from gensessions.sessions.engine import EngineRegistry
from gensessions.sessions.lifecycle import SessionLifecycle
from gensessions.sessions.phases import PhaseCoordinator
from gensessions.storage.factory import build_sessions_repo
from gensessions.storage.sessions_repo import SessionsRepository

logger = logging.getLogger(__name__)


@dataclass
class SessionRuntime:
  settings: Settings
  repo: SessionsRepository
  channel: ProgressChannel
  cancellations: CancellationRegistry
  engines: EngineRegistry
  driver: ExecutionDriver
  dispatcher: SessionDispatcher
  lifecycle: SessionLifecycle
  coordinator: PhaseCoordinator


def build_engines(settings: Settings) -> EngineRegistry:
  if settings.engine_provider == "dummy":
    from gensessions.engines.dummy import build_dummy_engines

    return build_dummy_engines(settings.dummy_engine_delay_seconds)
  raise ValueError(f"Unsupported GENSESSIONS_ENGINE_PROVIDER: {settings.engine_provider}")


def build_runtime(
  settings: Settings,
  *,
  repo: SessionsRepository | None = None,
  engines: EngineRegistry | None = None,
  auto_dispatch: bool | None = None,
) -> SessionRuntime:
  """Assemble the collaborators; tests pass their own repo and engines."""
  repo = repo if repo is not None else build_sessions_repo(settings)
  engines = engines if engines is not None else build_engines(settings)
  channel = ProgressChannel(repo, queue_size=settings.stream_queue_size, poll_interval_seconds=settings.poll_interval_seconds)
  cancellations = CancellationRegistry(repo)
  driver = ExecutionDriver(repo, channel, engines, cancellations)

  dispatch_enabled = settings.auto_dispatch if auto_dispatch is None else auto_dispatch
  dispatcher: SessionDispatcher = InProcessDispatcher(driver.run) if dispatch_enabled else ManualDispatcher()

  lifecycle = SessionLifecycle(repo, channel, dispatcher, cancellations, stale_after_seconds=settings.stale_session_seconds)
  coordinator = PhaseCoordinator(repo, lifecycle)
  return SessionRuntime(
    settings=settings,
    repo=repo,
    channel=channel,
    cancellations=cancellations,
    engines=engines,
    driver=driver,
    dispatcher=dispatcher,
    lifecycle=lifecycle,
    coordinator=coordinator,
  )


_runtime: SessionRuntime | None = None


def get_runtime() -> SessionRuntime:
  global _runtime
  if _runtime is None:
    _runtime = build_runtime(get_settings())
    logger.info("Session runtime ready store=%s engines=%s", _runtime.settings.session_store, ", ".join(_runtime.engines.names()))
  return _runtime


def set_runtime(runtime: SessionRuntime | None) -> None:
  global _runtime
  _runtime = runtime


async def shutdown_runtime() -> None:
  global _runtime
  if _runtime is None:
    return
  await _runtime.dispatcher.shutdown()
  _runtime = None
