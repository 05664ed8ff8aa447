from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from gensessions import __version__
from gensessions.api.routes import phases, sessions
from gensessions.config import get_settings
from gensessions.core.exceptions import global_exception_handler, http_exception_handler, request_validation_exception_handler, session_error_handler
from gensessions.core.lifespan import lifespan
from gensessions.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from gensessions.sessions.errors import SessionError

settings = get_settings()

app = FastAPI(title="gensessions", version=__version__, lifespan=lifespan, docs_url="/docs" if settings.debug else None, redoc_url=None)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "authorization", "last-event-id"], expose_headers=["x-request-id"])

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(SessionError, session_error_handler)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": __version__}


app.include_router(sessions.router, prefix="/v1/sessions", tags=["sessions"])
app.include_router(phases.router, prefix="/v1/subjects", tags=["phases"])
