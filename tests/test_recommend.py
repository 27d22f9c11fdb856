import pytest

from kube_opsflow.services.exceptions import InvalidField, MissingField
from kube_opsflow.state.models import SessionStatus

QUESTIONS = {
    "required": [{"id": "name", "question": "Database name?"}],
    "basic": [{"id": "replicas", "question": "How many replicas?", "default": "1"}],
    "advanced": [],
}


async def choose(engine, questions=QUESTIONS):
    start = await engine.step("recommend", None, None)
    result = await engine.step(
        "recommend",
        start.session_id,
        "chooseSolution",
        {"solutionId": "sol-postgres", "intent": "deploy a database", "questions": questions},
    )
    return start.session_id, result


@pytest.mark.asyncio
async def test_required_answers_are_enforced(engine) -> None:
    session_id, result = await choose(engine)
    assert result.next_stage == "answerQuestion:required"
    assert result.prompt.data["questions"][0]["id"] == "name"

    with pytest.raises(MissingField) as exc:
        await engine.step("recommend", session_id, "answerQuestion:required", {"answers": {"name": " "}})
    assert exc.value.field == "answers.name"


@pytest.mark.asyncio
async def test_empty_optional_answers_advance_and_empty_groups_are_skipped(engine) -> None:
    session_id, _ = await choose(engine)
    await engine.step("recommend", session_id, "answerQuestion:required", {"answers": {"name": "orders"}})

    basic = await engine.step("recommend", session_id, "answerQuestion:basic", {"answers": {}})
    # The advanced group has no questions.
    assert basic.next_stage == "answerQuestion:open"

    done = await engine.step("recommend", session_id, "answerQuestion:open", {"answers": {"open": "N/A"}})
    assert done.status == SessionStatus.FINISHED
    assert done.prompt.data["answers"] == {"name": "orders"}
    assert done.prompt.data["solutionId"] == "sol-postgres"


@pytest.mark.asyncio
async def test_solution_without_questions_goes_straight_to_open(engine) -> None:
    _, result = await choose(engine, questions={})
    assert result.next_stage == "answerQuestion:open"


@pytest.mark.asyncio
async def test_unknown_answer_ids_are_rejected(engine) -> None:
    session_id, _ = await choose(engine)
    with pytest.raises(InvalidField):
        await engine.step(
            "recommend", session_id, "answerQuestion:required", {"answers": {"name": "x", "color": "red"}}
        )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "questions",
    [
        {"required": None},
        {"basic": "replicas"},
        {"required": [{"id": ["name"], "question": "Database name?"}]},
    ],
)
async def test_malformed_question_groups_are_rejected(engine, questions) -> None:
    with pytest.raises(InvalidField) as exc:
        await choose(engine, questions=questions)
    assert exc.value.field == "questions"
