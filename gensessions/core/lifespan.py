import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from gensessions.core.database import dispose_db_engine
from gensessions.core.logging import initialize_logging
from gensessions.services.runtime import get_runtime, shutdown_runtime


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and the session runtime, and drain it on shutdown."""
  from gensessions.config import get_settings

  settings = get_settings()
  logger = logging.getLogger(__name__)

  try:
    initialize_logging(settings)
  except RuntimeError:
    # Keep serving with default handlers; the file handler is optional locally.
    logger.warning("Logging setup failed; continuing with default handlers.", exc_info=True)

  runtime = get_runtime()
  logger.info("Startup complete environment=%s store=%s auto_dispatch=%s", settings.environment, settings.session_store, settings.auto_dispatch)
  # Only sessions idle past the stale window are expired here; clean shutdowns mark their own sessions interrupted.
  expired = await runtime.lifecycle.expire_stale()
  if expired:
    logger.warning("Expired %s stale sessions at startup.", len(expired))

  try:
    yield
  finally:
    await shutdown_runtime()
    await dispose_db_engine()
    logger.info("Shutdown complete.")
