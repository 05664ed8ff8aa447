from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from gensessions.config import get_database_settings


class Base(DeclarativeBase):
  pass


engine: AsyncEngine | None = None
SessionLocal: async_sessionmaker[AsyncSession] | None = None


def database_url() -> str | None:
  """Build the SQLAlchemy database URL, forcing the asyncpg driver."""
  settings = get_database_settings()
  url = settings.pg_dsn
  if url and url.startswith("postgresql://"):
    url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
  elif url and url.startswith("postgres://"):
    url = url.replace("postgres://", "postgresql+asyncpg://", 1)

  return url


def get_db_engine() -> AsyncEngine | None:
  global engine
  settings = get_database_settings()
  url = database_url()
  if engine is None and url:
    engine = create_async_engine(url, echo=settings.debug, pool_pre_ping=True, connect_args={"timeout": settings.pg_connect_timeout})
  return engine


def get_session_factory() -> async_sessionmaker[AsyncSession] | None:
  global SessionLocal
  if SessionLocal is None:
    db_engine = get_db_engine()
    if db_engine is not None:
      SessionLocal = async_sessionmaker(bind=db_engine, expire_on_commit=False, class_=AsyncSession)
  return SessionLocal


async def dispose_db_engine() -> None:
  """Close pooled connections on shutdown."""
  global engine, SessionLocal
  if engine is not None:
    await engine.dispose()
  engine = None
  SessionLocal = None
