import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from gensessions.sessions.errors import AlreadyTerminal, ChannelDisconnect, InvalidSubject, PhasePrerequisiteMissing, SessionError, SessionNotFound

logger = logging.getLogger("uvicorn.error")

_SESSION_ERROR_STATUS: dict[type[SessionError], int] = {
  InvalidSubject: status.HTTP_400_BAD_REQUEST,
  SessionNotFound: status.HTTP_404_NOT_FOUND,
  AlreadyTerminal: status.HTTP_409_CONFLICT,
  PhasePrerequisiteMissing: status.HTTP_409_CONFLICT,
  ChannelDisconnect: status.HTTP_409_CONFLICT,
}


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    message = str(value)
    return f"{type(value).__name__}: {message}" if message else type(value).__name__
  return str(value)


def _error_payload(detail: Any, *, request_id: str | None = None, error: str | None = None) -> dict[str, Any]:
  payload: dict[str, Any] = {"detail": detail}
  if error:
    payload["error"] = error
  # Let support correlate client reports with server logs.
  if request_id:
    payload["requestId"] = request_id
  return payload


def _request_id(request: Request) -> str | None:
  return getattr(request.state, "request_id", None)


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key != "input"}
    if "ctx" in scrubbed and isinstance(scrubbed["ctx"], dict):
      scrubbed_ctx = dict(scrubbed["ctx"])
      scrubbed_ctx.pop("input", None)
      scrubbed["ctx"] = scrubbed_ctx
    sanitized.append(_coerce_json_safe(scrubbed))
  return sanitized


async def session_error_handler(request: Request, exc: SessionError) -> JSONResponse:
  """Translate caller-level session errors into 4xx responses."""
  status_code = next((code for error_type, code in _SESSION_ERROR_STATUS.items() if isinstance(exc, error_type)), status.HTTP_500_INTERNAL_SERVER_ERROR)
  request_id = _request_id(request)
  if status_code >= 500:
    logger.error("Session error request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=exc)
    return JSONResponse(status_code=status_code, content=_error_payload("Internal Server Error", request_id=request_id))

  from gensessions.config import get_settings

  if get_settings().log_http_4xx:
    logger.warning("Session error request_id=%s path=%s status_code=%s error=%s", request_id, request.url.path, status_code, exc.code)
  return JSONResponse(status_code=status_code, content=_error_payload(str(exc), request_id=request_id, error=exc.code))


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Global exception handler to catch unhandled errors."""
  request_id = _request_id(request)
  logger.error("Global exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=exc)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("Internal Server Error", request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  """Log request validation errors without leaking payloads."""
  request_id = _request_id(request)
  sanitized_errors = _sanitize_validation_errors(list(exc.errors()))
  logger.warning("Request validation failed request_id=%s path=%s method=%s errors=%s", request_id, request.url.path, request.method, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_payload(sanitized_errors, request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Handle HTTPExceptions while keeping 5xx details out of responses."""
  from gensessions.config import get_settings

  request_id = _request_id(request)
  if exc.status_code >= 500:
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=_error_payload("Internal Server Error", request_id=request_id))

  if get_settings().log_http_4xx:
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)
  return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail, request_id=request_id), headers=getattr(exc, "headers", None))
