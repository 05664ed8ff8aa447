import logging

from fastapi import APIRouter, Depends

from gensessions.api.deps import get_session_runtime
from gensessions.api.models import AdvanceRequest, AdvanceResponse, PhaseInputRequest, PhasesResponse
from gensessions.services.runtime import SessionRuntime

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/{subject_key}/phases", response_model=PhasesResponse)
async def get_phases(  # noqa: B008
  subject_key: str,
  runtime: SessionRuntime = Depends(get_session_runtime),  # noqa: B008
) -> PhasesResponse:
  """Composite phase snapshot for a multi-phase subject."""
  view = await runtime.coordinator.phases(subject_key)
  return PhasesResponse.model_validate(view.to_dict())


@router.post("/{subject_key}/advance", response_model=AdvanceResponse)
async def advance_subject(  # noqa: B008
  subject_key: str,
  request: AdvanceRequest,
  runtime: SessionRuntime = Depends(get_session_runtime),  # noqa: B008
) -> AdvanceResponse:
  """Start the next generation phase, or report that input is needed."""
  result = await runtime.coordinator.advance(subject_key, request.seed_input)
  return AdvanceResponse(
    subject_key=result.subject_key,
    phase=result.phase,
    action=result.action,
    session_id=result.session_id,
    phases=PhasesResponse.model_validate(result.view.to_dict()),
  )


@router.post("/{subject_key}/phases/{phase_name}/input", response_model=PhasesResponse)
async def provide_phase_input(  # noqa: B008
  subject_key: str,
  phase_name: str,
  request: PhaseInputRequest,
  runtime: SessionRuntime = Depends(get_session_runtime),  # noqa: B008
) -> PhasesResponse:
  """Record the human input for a phase."""
  view = await runtime.coordinator.provide_input(subject_key, phase_name, request.input_artifact)
  return PhasesResponse.model_validate(view.to_dict())
