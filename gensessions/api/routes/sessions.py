import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from gensessions.api.deps import get_session_runtime
from gensessions.api.models import LatestSessionResponse, SessionSnapshotResponse, SessionStartRequest, SessionStartResponse
from gensessions.services.runtime import SessionRuntime
from gensessions.sessions.channel import format_resync, format_sse, snapshot_from_record
from gensessions.sessions.errors import ChannelDisconnect

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=SessionStartResponse)
async def start_session(  # noqa: B008
  request: SessionStartRequest,
  runtime: SessionRuntime = Depends(get_session_runtime),  # noqa: B008
) -> SessionStartResponse:
  """Start a session for a subject, or return the one already running."""
  result = await runtime.lifecycle.start(request.subject_key, request.seed_input)
  return SessionStartResponse(session_id=result.session_id, reused=result.reused, status=result.session.status, version=result.session.version)


@router.get("/latest", response_model=LatestSessionResponse)
async def latest_session(  # noqa: B008
  subject_key: str = Query(..., min_length=3, max_length=256),
  runtime: SessionRuntime = Depends(get_session_runtime),  # noqa: B008
) -> LatestSessionResponse:
  """Return the most recent session for a subject so a reloaded client can resume."""
  record = await runtime.lifecycle.latest(subject_key)
  if record is None:
    return LatestSessionResponse(session=None)
  snapshot = snapshot_from_record(record, poll_interval_seconds=runtime.channel.poll_interval_seconds)
  return LatestSessionResponse(session=SessionSnapshotResponse.model_validate(snapshot))


@router.get("/{session_id}", response_model=SessionSnapshotResponse)
async def get_session_status(  # noqa: B008
  session_id: str,
  runtime: SessionRuntime = Depends(get_session_runtime),  # noqa: B008
) -> SessionSnapshotResponse:
  """Pull-mode snapshot of one session."""
  return SessionSnapshotResponse.model_validate(await runtime.lifecycle.status(session_id))


@router.get("/{session_id}/events")
async def stream_session_events(  # noqa: B008
  session_id: str,
  runtime: SessionRuntime = Depends(get_session_runtime),  # noqa: B008
) -> StreamingResponse:
  """Push-mode stream: a snapshot, then live events until the session is terminal."""
  # Resolve before streaming so unknown ids get a 404 instead of an empty stream.
  await runtime.lifecycle.get(session_id)
  heartbeat = runtime.settings.stream_heartbeat_seconds

  async def _stream() -> AsyncIterator[str]:
    try:
      async for event in runtime.channel.subscribe(session_id, heartbeat_seconds=heartbeat):
        yield format_sse(event)
    except ChannelDisconnect:
      logger.warning("Subscriber disconnected for resync session_id=%s", session_id)
      yield format_resync(session_id)

  headers = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
  return StreamingResponse(_stream(), media_type="text/event-stream", headers=headers)


@router.post("/{session_id}/cancel", response_model=SessionSnapshotResponse)
async def cancel_session(  # noqa: B008
  session_id: str,
  runtime: SessionRuntime = Depends(get_session_runtime),  # noqa: B008
) -> SessionSnapshotResponse:
  """Request cooperative cancellation of a queued or running session."""
  record = await runtime.lifecycle.cancel(session_id)
  return SessionSnapshotResponse.model_validate(snapshot_from_record(record))
