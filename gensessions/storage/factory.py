"""Select the session repository backend from settings."""

from __future__ import annotations

import logging

from gensessions.config import Settings
from gensessions.storage.sessions_repo import SessionsRepository

logger = logging.getLogger(__name__)


def build_sessions_repo(settings: Settings) -> SessionsRepository:
  if settings.session_store == "postgres":
    from gensessions.storage.postgres_sessions_repo import PostgresSessionsRepository

    logger.info("Using Postgres session store.")
    return PostgresSessionsRepository()

  logger.info("Using in-memory session store; sessions do not survive restarts.")
  from gensessions.storage.memory_sessions_repo import InMemorySessionsRepository

  return InMemorySessionsRepository()
