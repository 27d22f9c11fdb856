import asyncio

import pytest

from kube_opsflow.domain.models import StageToken
from kube_opsflow.execution.engine import WorkflowEngine
from kube_opsflow.execution.schemas.state_machine import StageTransition
from kube_opsflow.repositories.session import InMemorySessionStore, SessionFilter
from kube_opsflow.services.exceptions import (
    Conflict,
    MissingField,
    SessionTerminal,
    StageMismatch,
    ToolNotFound,
    UnknownSession,
    VersionConflict,
)
from kube_opsflow.state.models import SessionStatus
from kube_opsflow.tools import wizard_graphs


class FlakyStore(InMemorySessionStore):
    """Raises VersionConflict for the first `conflicts` updates."""

    def __init__(self, conflicts: int):
        super().__init__()
        self.conflicts = conflicts
        self.updates = 0

    async def update(self, session_id, expected_version, mutation):
        self.updates += 1
        if self.conflicts:
            self.conflicts -= 1
            raise VersionConflict(session_id, expected_version, expected_version + 1)
        return await super().update(session_id, expected_version, mutation)


class LostAckStore(InMemorySessionStore):
    """Persists the next update, then fails as if the response was lost."""

    def __init__(self):
        super().__init__()
        self.drop_next = False

    async def update(self, session_id, expected_version, mutation):
        updated = await super().update(session_id, expected_version, mutation)
        if self.drop_next:
            self.drop_next = False
            raise ConnectionError("connection reset before ack")
        return updated


async def start_project(engine: WorkflowEngine) -> str:
    result = await engine.step("projectSetup", None, None)
    await engine.step("projectSetup", result.session_id, "discover", {"scopes": ["readme", "legal"]})
    await engine.step("projectSetup", result.session_id, "reportScan", {"existingFiles": []})
    return result.session_id


@pytest.mark.asyncio
async def test_start_returns_first_prompt(engine) -> None:
    result = await engine.step("patternWizard", None, None)
    assert result.session_id.startswith("pattern-")
    assert result.next_stage == "description"
    assert result.stage is None
    assert "capability" in result.prompt.prompt


@pytest.mark.asyncio
async def test_start_can_answer_initial_stage(engine) -> None:
    result = await engine.step("patternWizard", None, "description", {"response": "Database persistence"})
    assert result.next_stage == "triggers"
    assert result.version == 2


@pytest.mark.asyncio
async def test_invalid_initial_answer_creates_nothing(engine, store) -> None:
    with pytest.raises(MissingField):
        await engine.step("patternWizard", None, "description", {"response": "  "})
    assert await store.list(SessionFilter()) == []


@pytest.mark.asyncio
async def test_unknown_tool(engine) -> None:
    with pytest.raises(ToolNotFound):
        await engine.step("helmInstall", None, None)


@pytest.mark.asyncio
async def test_unknown_session(engine) -> None:
    with pytest.raises(UnknownSession):
        await engine.step("patternWizard", "pattern-0-00000000", "description", {"response": "x"})


@pytest.mark.asyncio
async def test_stage_mismatch_leaves_session_identical(engine, store) -> None:
    start = await engine.step("patternWizard", None, None)
    before = (await store.get(start.session_id)).model_dump_json()

    with pytest.raises(StageMismatch) as exc:
        await engine.step("patternWizard", start.session_id, "triggers", {"response": "db, postgres"})

    assert exc.value.expected == "description"
    assert (await store.get(start.session_id)).model_dump_json() == before


@pytest.mark.asyncio
async def test_missing_field_names_the_field(engine, store) -> None:
    start = await engine.step("patternWizard", None, None)
    with pytest.raises(MissingField) as exc:
        await engine.step("patternWizard", start.session_id, "description", {})
    assert exc.value.message == "response is required"
    assert (await store.get(start.session_id)).version == 1


@pytest.mark.asyncio
async def test_replay_after_advance_is_rejected_not_reapplied(engine, store) -> None:
    start = await engine.step("patternWizard", None, None)
    await engine.step("patternWizard", start.session_id, "description", {"response": "Scaling"})
    once = (await store.get(start.session_id)).model_dump_json()

    with pytest.raises(StageMismatch):
        await engine.step("patternWizard", start.session_id, "description", {"response": "Scaling"})
    assert (await store.get(start.session_id)).model_dump_json() == once


@pytest.mark.asyncio
async def test_replay_after_lost_ack_matches_single_application() -> None:
    """A persisted step whose response was lost equals one applied step."""
    lossy = LostAckStore()
    lossy_engine = WorkflowEngine(lossy, wizard_graphs())
    clean = InMemorySessionStore()
    clean_engine = WorkflowEngine(clean, wizard_graphs())

    lossy_start = await lossy_engine.step("recommend", None, None)
    clean_start = await clean_engine.step("recommend", None, None)
    payload = {"solutionId": "postgres", "questions": {"required": [{"id": "name", "question": "Name?"}]}}

    lossy.drop_next = True
    with pytest.raises(ConnectionError):
        await lossy_engine.step("recommend", lossy_start.session_id, "chooseSolution", payload)
    with pytest.raises(StageMismatch):
        await lossy_engine.step("recommend", lossy_start.session_id, "chooseSolution", payload)
    await clean_engine.step("recommend", clean_start.session_id, "chooseSolution", payload)

    replayed = await lossy.get(lossy_start.session_id)
    applied = await clean.get(clean_start.session_id)
    assert replayed.collected_data == applied.collected_data
    assert replayed.current_stage == applied.current_stage
    assert replayed.version == applied.version == 2


@pytest.mark.asyncio
async def test_version_conflict_is_retried_once() -> None:
    store = FlakyStore(conflicts=1)
    engine = WorkflowEngine(store, wizard_graphs())
    start = await engine.step("patternWizard", None, None)

    result = await engine.step("patternWizard", start.session_id, "description", {"response": "Scaling"})
    assert result.next_stage == "triggers"
    assert store.updates == 2


@pytest.mark.asyncio
async def test_second_conflict_surfaces_conflict() -> None:
    store = FlakyStore(conflicts=2)
    engine = WorkflowEngine(store, wizard_graphs())
    start = await engine.step("patternWizard", None, None)

    with pytest.raises(Conflict):
        await engine.step("patternWizard", start.session_id, "description", {"response": "Scaling"})
    assert (await store.get(start.session_id)).current_stage == StageToken("description")


@pytest.mark.asyncio
async def test_concurrent_steps_apply_once(engine, store) -> None:
    start = await engine.step("patternWizard", None, None)
    outcomes = await asyncio.gather(
        engine.step("patternWizard", start.session_id, "description", {"response": "Scaling"}),
        engine.step("patternWizard", start.session_id, "description", {"response": "Networking"}),
        return_exceptions=True,
    )

    successes = [o for o in outcomes if not isinstance(o, Exception)]
    failures = [o for o in outcomes if isinstance(o, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], (StageMismatch, Conflict))
    assert (await store.get(start.session_id)).version == 2


@pytest.mark.asyncio
async def test_round_trip_compression_is_one_update(engine, store) -> None:
    session_id = await start_project(engine)
    await engine.step(
        "projectSetup",
        session_id,
        "generateFile",
        {"fileName": "README.md", "answers": {"projectName": "opsflow", "description": "Ops tools"}},
    )
    before = await store.get(session_id)

    result = await engine.step(
        "projectSetup",
        session_id,
        "generateFile",
        {
            "completedFileName": "README.md",
            "nextFileAnswers": {"licenseType": "MIT", "copyrightHolder": "Ops Team"},
        },
    )

    after = await store.get(session_id)
    assert after.version == before.version + 1
    files = {f["fileName"]: f for f in after.collected_data["files"]}
    assert files["README.md"]["status"] == "done"
    assert files["LICENSE"]["status"] == "in-progress"
    assert files["LICENSE"]["answers"]["licenseType"] == "MIT"
    assert "generateFile#chained" in result.echoed_data


@pytest.mark.asyncio
async def test_chained_answers_are_validated_before_commit(engine, store) -> None:
    session_id = await start_project(engine)
    await engine.step(
        "projectSetup",
        session_id,
        "generateFile",
        {"fileName": "README.md", "answers": {"projectName": "opsflow", "description": "Ops tools"}},
    )
    before = (await store.get(session_id)).model_dump_json()

    with pytest.raises(MissingField) as exc:
        await engine.step(
            "projectSetup",
            session_id,
            "generateFile",
            {"completedFileName": "README.md", "nextFileAnswers": {"licenseType": "MIT"}},
        )
    assert exc.value.field == "answers.copyrightHolder"
    assert (await store.get(session_id)).model_dump_json() == before


@pytest.mark.asyncio
async def test_plan_kinds(engine) -> None:
    graph = engine.graph_for("patternWizard")
    plan = engine.plan(graph, {}, StageToken("description"), {"response": "Scaling"})
    assert plan.kind == StageTransition.ADVANCE
    assert plan.next_stage == StageToken("triggers")


@pytest.mark.asyncio
async def test_finished_session_rejects_other_stages(engine) -> None:
    session_id = await start_project(engine)
    await engine.step(
        "projectSetup", session_id, "generateFile",
        {"fileName": "README.md", "answers": {"projectName": "p", "description": "d"}},
    )
    await engine.step(
        "projectSetup", session_id, "generateFile",
        {"completedFileName": "README.md", "nextFileAnswers": {"licenseType": "MIT", "copyrightHolder": "me"}},
    )
    done = await engine.step("projectSetup", session_id, "generateFile", {"completedFileName": "LICENSE"})
    assert done.status == SessionStatus.FINISHED
    assert done.next_stage == "complete"

    again = await engine.step("projectSetup", session_id, "generateFile", {"completedFileName": "LICENSE"})
    assert again.no_op is True
    assert again.version == done.version

    with pytest.raises(SessionTerminal):
        await engine.step("projectSetup", session_id, "discover", {})


@pytest.mark.asyncio
async def test_step_timeout_keeps_last_persisted_state() -> None:
    class SlowStore(InMemorySessionStore):
        async def update(self, session_id, expected_version, mutation):
            await asyncio.sleep(1)
            return await super().update(session_id, expected_version, mutation)

    slow = SlowStore()
    engine = WorkflowEngine(slow, wizard_graphs())
    start = await engine.step("patternWizard", None, None)

    with pytest.raises(asyncio.TimeoutError):
        await engine.step("patternWizard", start.session_id, "description", {"response": "x"}, timeout=0.05)
    assert (await slow.get(start.session_id)).version == 1
