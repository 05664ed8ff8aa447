"""Error taxonomy for generation sessions."""

from __future__ import annotations


class SessionError(Exception):
  """Base class for session orchestration errors."""

  code = "session_error"


class InvalidSubject(SessionError):
  """The subject key is malformed, unknown, or cannot be started directly."""

  code = "invalid_subject"


class SessionNotFound(SessionError):
  """No session exists with the requested identifier."""

  code = "session_not_found"

  def __init__(self, session_id: str) -> None:
    super().__init__(f"Session {session_id} was not found.")
    self.session_id = session_id


class AlreadyTerminal(SessionError):
  """The session already reached a terminal status and cannot change."""

  code = "already_terminal"

  def __init__(self, session_id: str, status: str) -> None:
    super().__init__(f"Session {session_id} is already {status}.")
    self.session_id = session_id
    self.status = status


class PhasePrerequisiteMissing(SessionError):
  """A phase was requested before the phases it depends on were complete."""

  code = "phase_prerequisite_missing"


class EngineFailure(SessionError):
  """The generation engine raised, timed out, or produced unusable output."""

  code = "engine_failure"


class ContractViolation(SessionError):
  """Engine output broke an aggregation rule such as the citation cap."""

  code = "contract_violation"


class ChannelDisconnect(SessionError):
  """A push subscriber fell behind and was dropped; it must re-sync via pull."""

  code = "channel_disconnect"


class SessionCanceledError(Exception):
  """Raised inside the driver when a cancellation flag is observed."""
