import pytest

from kube_opsflow.services.exceptions import InvalidField
from kube_opsflow.state.models import SessionStatus

ANSWERS = [
    ("description", "Database persistence"),
    ("triggers", "database, postgres"),
    ("trigger-expansion", '["database", "postgres", "db", "mysql"]'),
    ("resources", "StatefulSet, PersistentVolumeClaim, Secret"),
    ("rationale", "Stateful workloads need stable storage and credentials"),
    ("created-by", "platform-team"),
]


async def answer_all(engine, session_id: str):
    result = None
    for stage, response in ANSWERS:
        result = await engine.step("patternWizard", session_id, stage, {"response": response})
    return result


@pytest.mark.asyncio
async def test_wizard_finishes_only_after_confirm(engine, patterns) -> None:
    start = await engine.step("patternWizard", None, None)
    result = await answer_all(engine, start.session_id)

    assert result.next_stage == "review"
    assert result.status == SessionStatus.ACTIVE
    assert "**Triggers**: database, postgres, db, mysql" in result.prompt.prompt
    assert patterns.list() == []

    done = await engine.step("patternWizard", start.session_id, "review", {"response": "confirm"})
    assert done.status == SessionStatus.FINISHED
    assert done.next_stage == "complete"

    saved = patterns.list()
    assert len(saved) == 1
    assert saved[0].triggers == ["database", "postgres", "db", "mysql"]
    assert saved[0].suggested_resources == ["StatefulSet", "PersistentVolumeClaim", "Secret"]
    assert done.prompt.data["pattern"]["id"] == saved[0].id


@pytest.mark.asyncio
async def test_modify_returns_to_description(engine, store) -> None:
    start = await engine.step("patternWizard", None, None)
    await answer_all(engine, start.session_id)

    result = await engine.step("patternWizard", start.session_id, "review", {"response": "modify"})
    assert result.next_stage == "description"
    assert result.status == SessionStatus.ACTIVE
    session = await store.get(start.session_id)
    assert session.collected_data["description"] == "Database persistence"


@pytest.mark.asyncio
async def test_empty_trigger_expansion_keeps_initial_triggers(engine, store) -> None:
    start = await engine.step("patternWizard", None, None)
    await engine.step("patternWizard", start.session_id, "description", {"response": "Scaling"})
    await engine.step("patternWizard", start.session_id, "triggers", {"response": "scale, hpa"})

    result = await engine.step("patternWizard", start.session_id, "trigger-expansion", {"response": ""})
    assert result.next_stage == "resources"
    session = await store.get(start.session_id)
    assert session.collected_data["trigger-expansion"] == ["scale", "hpa"]


@pytest.mark.asyncio
async def test_triggers_must_not_be_empty(engine) -> None:
    start = await engine.step("patternWizard", None, None)
    await engine.step("patternWizard", start.session_id, "description", {"response": "Scaling"})
    with pytest.raises(InvalidField):
        await engine.step("patternWizard", start.session_id, "triggers", {"response": " , ,"})


def test_pattern_id_is_required(patterns) -> None:
    from kube_opsflow.services.exceptions import MissingField

    with pytest.raises(MissingField) as exc:
        patterns.get(None)
    assert exc.value.message == "Pattern ID is required"


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [42, ["Scaling"], {"text": "Scaling"}, True])
async def test_non_text_response_is_rejected(engine, response) -> None:
    start = await engine.step("patternWizard", None, None)
    with pytest.raises(InvalidField) as exc:
        await engine.step("patternWizard", start.session_id, "description", {"response": response})
    assert exc.value.field == "response"


@pytest.mark.asyncio
async def test_non_text_trigger_expansion_is_rejected(engine) -> None:
    start = await engine.step("patternWizard", None, None)
    await engine.step("patternWizard", start.session_id, "description", {"response": "Scaling"})
    await engine.step("patternWizard", start.session_id, "triggers", {"response": "scale, hpa"})
    with pytest.raises(InvalidField):
        await engine.step("patternWizard", start.session_id, "trigger-expansion", {"response": ["scale", "hpa"]})


@pytest.mark.asyncio
@pytest.mark.parametrize("response", ["unconfirmed", "I don't confirm", "I don’t confirm", "yes, but not yet", "yesterday"])
async def test_review_needs_an_unqualified_confirmation(engine, patterns, response) -> None:
    start = await engine.step("patternWizard", None, None)
    await answer_all(engine, start.session_id)

    result = await engine.step("patternWizard", start.session_id, "review", {"response": response})

    assert result.next_stage == "description"
    assert result.status == SessionStatus.ACTIVE
    assert patterns.list() == []


@pytest.mark.asyncio
@pytest.mark.parametrize("response", ["confirm", "Yes", "Confirmed!", "yes, confirm"])
async def test_review_accepts_confirmation_words(engine, patterns, response) -> None:
    start = await engine.step("patternWizard", None, None)
    await answer_all(engine, start.session_id)

    result = await engine.step("patternWizard", start.session_id, "review", {"response": response})

    assert result.status == SessionStatus.FINISHED
    assert len(patterns.list()) == 1
