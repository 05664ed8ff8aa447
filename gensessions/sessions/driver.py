"""Run the generation engine for one session and record what it produces."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from gensessions.sessions.aggregator import compose_final_payload, validate_sub_result
from gensessions.sessions.cancellation import CancellationRegistry
from gensessions.sessions.channel import ProgressChannel
from gensessions.sessions.engine import EngineRegistry, EngineRequest, FinalArtifact, ProgressUpdate, SubResultUpdate
from gensessions.sessions.errors import ContractViolation, EngineFailure, SessionCanceledError
from gensessions.sessions.models import SessionRecord
from gensessions.sessions.subjects import SubjectSpec, resolve_startable
from gensessions.storage.sessions_repo import SessionsRepository

logger = logging.getLogger(__name__)


class ExecutionDriver:
  """Drive a queued session through the engine to a terminal status.

  ``run`` only re-raises task cancellation, after marking the session
  interrupted. Engine failures and contract violations are written to the
  session and logged. Cancellation is cooperative and checked after every
  unit the engine yields.
  """

  def __init__(self, repo: SessionsRepository, channel: ProgressChannel, engines: EngineRegistry, cancellations: CancellationRegistry) -> None:
    self._repo = repo
    self._channel = channel
    self._engines = engines
    self._cancellations = cancellations

  async def run(self, session_id: str) -> SessionRecord | None:
    try:
      return await self._run(session_id)
    except asyncio.CancelledError:
      # Shutdown cancelled the task; nothing will resume this session.
      logger.warning("Driver interrupted session_id=%s", session_id)
      try:
        await self._fail(session_id, "Session interrupted by service shutdown.", kind="interrupted")
      except Exception:  # noqa: BLE001
        logger.error("Could not record driver interruption session_id=%s", session_id, exc_info=True)
      raise
    except Exception:  # noqa: BLE001
      # Last resort: the store or channel failed underneath us.
      logger.error("Driver crashed session_id=%s", session_id, exc_info=True)
      try:
        return await self._fail(session_id, "Internal error while running the session.", kind="engine_failure")
      except Exception:  # noqa: BLE001
        logger.error("Could not record driver failure session_id=%s", session_id, exc_info=True)
        return None
    finally:
      self._cancellations.clear(session_id)

  async def _run(self, session_id: str) -> SessionRecord | None:
    record = await self._repo.transition(session_id, expected={"queued"}, status="in_progress", progress_message="Starting generation.")
    if record is None:
      current = await self._repo.get(session_id)
      logger.info("Session not claimable session_id=%s status=%s", session_id, current.status if current else None)
      return current
    self._channel.publish_status(record)

    key, spec = resolve_startable(record.subject_key)
    request = EngineRequest(session_id=record.session_id, subject_key=record.subject_key, subject_type=record.subject_type, phase=key.phase, seed_input=record.seed_input)
    logger.info("Running session session_id=%s subject_key=%s engine=%s", session_id, record.subject_key, spec.name)

    try:
      engine = self._engines.resolve(spec.name)
      engine_payload = await self._consume(engine.run(request), record, spec)
      latest = await self._repo.get(session_id)
      if latest is None or latest.status != "in_progress":
        raise SessionCanceledError(session_id)
      final_payload = compose_final_payload(spec, latest, engine_payload)
    except SessionCanceledError:
      logger.info("Session stopped after cancellation session_id=%s", session_id)
      return await self._repo.get(session_id)
    except ContractViolation as exc:
      logger.error("Contract violation session_id=%s subject_key=%s: %s", session_id, record.subject_key, exc)
      return await self._fail(session_id, str(exc), kind="contract_violation")
    except Exception as exc:  # noqa: BLE001
      failure = exc if isinstance(exc, EngineFailure) else EngineFailure(f"{type(exc).__name__}: {exc}")
      logger.error("Engine failure session_id=%s subject_key=%s", session_id, record.subject_key, exc_info=True)
      return await self._fail(session_id, str(failure), kind="engine_failure")

    done = await self._repo.transition(session_id, expected={"in_progress"}, status="completed", progress_message="Generation complete.", final_payload=final_payload)
    if done is None:
      # Lost the race to a cancel or expiry; that transition already published.
      return await self._repo.get(session_id)
    self._channel.publish_terminal(done)
    logger.info("Session completed session_id=%s sub_results=%s", session_id, len(done.sub_results))
    return done

  async def _consume(self, events: Any, record: SessionRecord, spec: SubjectSpec) -> dict[str, Any] | None:
    session_id = record.session_id
    sub_results = list(record.sub_results)
    engine_payload: dict[str, Any] | None = None
    try:
      async for event in events:
        if await self._cancellations.is_requested(session_id):
          raise SessionCanceledError(session_id)

        if isinstance(event, SubResultUpdate):
          validate_sub_result(spec, sub_results, event.sub_result)
          updated = await self._repo.upsert_sub_result(session_id, event.sub_result)
          if updated is None:
            raise SessionCanceledError(session_id)
          sub_results = updated.sub_results
          self._channel.publish_sub_result(updated, event.sub_result)
          if event.message:
            await self._write_progress(session_id, event.message)
        elif isinstance(event, ProgressUpdate):
          await self._write_progress(session_id, event.message)
        elif isinstance(event, FinalArtifact):
          engine_payload = dict(event.payload)
        else:
          raise EngineFailure(f"Engine produced an unsupported event: {type(event).__name__}")
    finally:
      aclose = getattr(events, "aclose", None)
      if aclose is not None:
        await aclose()
    return engine_payload

  async def _write_progress(self, session_id: str, message: str) -> None:
    updated = await self._repo.update_progress(session_id, message)
    if updated is None:
      raise SessionCanceledError(session_id)
    self._channel.publish_progress(updated)

  async def _fail(self, session_id: str, message: str, *, kind: str) -> SessionRecord | None:
    failed = await self._repo.transition(session_id, expected={"queued", "in_progress"}, status="error", error_message=message, error_kind=kind)  # type: ignore[arg-type]
    if failed is None:
      return await self._repo.get(session_id)
    self._channel.publish_terminal(failed)
    return failed
