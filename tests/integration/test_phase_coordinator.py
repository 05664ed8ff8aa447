"""Multi-phase subjects: research, human input, then brief."""

from __future__ import annotations

import pytest

from gensessions.sessions.errors import InvalidSubject, PhasePrerequisiteMissing
from tests.helpers import ScriptedEngine, artifact, progress

SUBJECT = "brand_intelligence:acme"


def _engines(brief: ScriptedEngine | None = None) -> dict[str, ScriptedEngine]:
  return {
    "brand_intelligence.research": ScriptedEngine([progress("Researching"), artifact(analysis="Acme sells anvils.", gaps=[])]),
    "brand_intelligence.brief": brief or ScriptedEngine([artifact(brief="Acme brief")]),
  }


@pytest.mark.anyio
async def test_new_subject_starts_with_research(make_runtime) -> None:
  runtime = make_runtime(_engines())

  view = await runtime.coordinator.phases(SUBJECT)
  assert view.status == "pending"
  assert view.current_phase == "research"
  assert [phase.status for phase in view.phases] == ["pending", "waiting", "pending"]

  first = await runtime.coordinator.advance(SUBJECT, {"brand": "Acme"})
  second = await runtime.coordinator.advance(SUBJECT)

  assert first.action == "started"
  assert second.action == "reused"
  assert second.session_id == first.session_id
  assert first.view.status == "in_progress"


@pytest.mark.anyio
async def test_failed_brief_is_retried_without_rerunning_research(make_runtime) -> None:
  engines = _engines(brief=ScriptedEngine([progress("Writing")], fail_before=1, error=RuntimeError("quota exhausted")))
  runtime = make_runtime(engines)
  research_engine = engines["brand_intelligence.research"]

  research = await runtime.coordinator.advance(SUBJECT, {"brand": "Acme"})
  await runtime.driver.run(research.session_id)
  assert research_engine.requests[0].seed_input["seed"] == {"brand": "Acme"}

  waiting = await runtime.coordinator.advance(SUBJECT)
  assert waiting.action == "waiting_input"
  assert waiting.phase == "input"
  assert waiting.view.status == "waiting_input"

  await runtime.coordinator.provide_input(SUBJECT, "input", {"audience": "Road runners"})
  brief = await runtime.coordinator.advance(SUBJECT)
  assert brief.phase == "brief"
  await runtime.driver.run(brief.session_id)

  failed_view = await runtime.coordinator.phases(SUBJECT)
  assert failed_view.status == "error"
  assert failed_view.current_phase == "brief"
  assert failed_view.phase("research").complete is True
  assert failed_view.phase("brief").to_dict()["error_message"] == "RuntimeError: quota exhausted"

  runtime.engines.register("brand_intelligence.brief", ScriptedEngine([artifact(brief="Acme brief")]))
  retry = await runtime.coordinator.advance(SUBJECT)
  assert retry.action == "started"
  assert retry.phase == "brief"
  assert retry.session_id != brief.session_id
  await runtime.driver.run(retry.session_id)

  assert len(research_engine.requests) == 1
  done = await runtime.coordinator.phases(SUBJECT)
  assert done.status == "completed"
  assert done.phase("brief").session is not None and done.phase("brief").session.version == 2

  finished = await runtime.coordinator.advance(SUBJECT)
  assert finished.action == "completed"
  assert finished.session_id is None


@pytest.mark.anyio
async def test_brief_receives_research_artifact_and_input(make_runtime) -> None:
  engines = _engines()
  runtime = make_runtime(engines)

  research = await runtime.coordinator.advance(SUBJECT, {"brand": "Acme"})
  await runtime.driver.run(research.session_id)
  await runtime.coordinator.provide_input(SUBJECT, "input", {"audience": "Road runners"})
  brief = await runtime.coordinator.advance(SUBJECT)
  await runtime.driver.run(brief.session_id)

  seed = engines["brand_intelligence.brief"].requests[0].seed_input
  assert seed["seed"] == {"brand": "Acme"}
  assert seed["previous"] == {"research": {"analysis": "Acme sells anvils.", "gaps": []}}
  assert seed["input"] == {"input": {"audience": "Road runners"}}


@pytest.mark.anyio
async def test_input_requires_completed_upstream_phase(make_runtime) -> None:
  runtime = make_runtime(_engines())
  with pytest.raises(PhasePrerequisiteMissing):
    await runtime.coordinator.provide_input(SUBJECT, "input", {"audience": "Road runners"})

  with pytest.raises(InvalidSubject):
    await runtime.coordinator.provide_input(SUBJECT, "research", {"analysis": "manual"})


@pytest.mark.anyio
async def test_changed_input_marks_brief_outdated(make_runtime) -> None:
  runtime = make_runtime(_engines())
  research = await runtime.coordinator.advance(SUBJECT, {"brand": "Acme"})
  await runtime.driver.run(research.session_id)
  await runtime.coordinator.provide_input(SUBJECT, "input", {"audience": "Road runners"})
  brief = await runtime.coordinator.advance(SUBJECT)
  await runtime.driver.run(brief.session_id)
  assert (await runtime.coordinator.phases(SUBJECT)).status == "completed"

  view = await runtime.coordinator.provide_input(SUBJECT, "input", {"audience": "Coyotes"})

  assert view.phase("brief").status == "outdated"
  assert view.current_phase == "brief"
  rerun = await runtime.coordinator.advance(SUBJECT)
  assert rerun.action == "started"


@pytest.mark.anyio
async def test_rerun_research_invalidates_input_and_brief(make_runtime) -> None:
  engines = _engines()
  runtime = make_runtime(engines)
  research = await runtime.coordinator.advance(SUBJECT, {"brand": "Acme"})
  await runtime.driver.run(research.session_id)
  await runtime.coordinator.provide_input(SUBJECT, "input", {"audience": "Road runners"})
  brief = await runtime.coordinator.advance(SUBJECT)
  await runtime.driver.run(brief.session_id)
  assert (await runtime.coordinator.phases(SUBJECT)).status == "completed"

  again = await runtime.lifecycle.start(f"{SUBJECT}::research", {"seed": {"brand": "Acme"}})
  await runtime.driver.run(again.session_id)

  view = await runtime.coordinator.phases(SUBJECT)
  assert view.phase("research").complete is True
  assert view.phase("input").status == "outdated"
  assert view.phase("input").complete is False
  assert view.phase("input").input_artifact == {"audience": "Road runners"}
  assert view.phase("brief").complete is False
  assert view.status == "waiting_input"
  assert view.current_phase == "input"

  waiting = await runtime.coordinator.advance(SUBJECT)
  assert waiting.action == "waiting_input"
  await runtime.coordinator.provide_input(SUBJECT, "input", {"audience": "Coyotes"})
  rerun = await runtime.coordinator.advance(SUBJECT)
  assert rerun.action == "started"
  assert rerun.phase == "brief"
  assert rerun.session_id != brief.session_id
  assert len(engines["brand_intelligence.research"].requests) == 2


@pytest.mark.anyio
async def test_phase_keys_are_rejected_by_the_coordinator(make_runtime) -> None:
  runtime = make_runtime(_engines())
  with pytest.raises(InvalidSubject):
    await runtime.coordinator.phases(f"{SUBJECT}::research")
  with pytest.raises(InvalidSubject):
    await runtime.coordinator.advance("outline:topic-1")
