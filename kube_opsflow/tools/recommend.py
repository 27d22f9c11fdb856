"""
Recommend - Solution Configuration Wizard

After the calling agent picks a solution, the user answers its questions in
sub-stages:

    chooseSolution -> answerQuestion:required -> answerQuestion:basic
        -> answerQuestion:advanced -> answerQuestion:open -> complete

`required` demands a non-empty answer for every required question. The other
sub-stages are optional: an empty `answers` payload advances. A sub-stage
whose question set is empty is skipped entirely.
"""

from dataclasses import asdict
from typing import Any, Dict, List

from ..domain.models import Question, StageToken
from ..execution.stages import TERMINAL, StageGraph, StageHandler, StagePrompt
from ..services.exceptions import InvalidField, MissingField

TOOL_NAME = "recommend"
PREFIX = "sol"

CHOOSE_SOLUTION = StageToken("chooseSolution")
REQUIRED = StageToken("answerQuestion", "required")
BASIC = StageToken("answerQuestion", "basic")
ADVANCED = StageToken("answerQuestion", "advanced")
OPEN = StageToken("answerQuestion", "open")

QUESTION_ORDER = [REQUIRED, BASIC, ADVANCED]

STAGE_MESSAGES = {
    "required": (
        "Please answer the required configuration questions.",
        "STAGE: REQUIRED - Present ALL questions to the user and collect answers. "
        "All questions must be answered before proceeding.",
    ),
    "basic": (
        "Would you like to configure basic settings?",
        "STAGE: BASIC - Present ALL questions to the user. Show defaults where available "
        "but ask user to confirm or change each one. Send empty answers to skip.",
    ),
    "advanced": (
        "Would you like to configure advanced features?",
        "STAGE: ADVANCED - Present ALL questions to the user. Show defaults where available "
        "but ask user to confirm or change each one. Send empty answers to skip.",
    ),
    "open": (
        "Any additional requirements or constraints?",
        'STAGE: OPEN - Ask user for any additional requirements or constraints. User can say "N/A" if none.',
    ),
}


def questions_for(data: Dict[str, Any], substage: str) -> List[Question]:
    raw = data.get(str(CHOOSE_SOLUTION), {}).get("questions", {}).get(substage, [])
    return [Question(**item) for item in raw]


def next_question_stage(data: Dict[str, Any], after: int) -> StageToken:
    """First sub-stage after position `after` that has questions; `open` otherwise."""
    for token in QUESTION_ORDER[after + 1:]:
        if questions_for(data, token.substage):
            return token
    return OPEN


class ChooseSolutionStage(StageHandler):
    token = CHOOSE_SOLUTION
    required_fields = ("solutionId",)

    def validate(self, data: Dict[str, Any], payload: Dict[str, Any]) -> None:
        questions = payload.get("questions") or {}
        if not isinstance(questions, dict):
            raise InvalidField("questions", "expected an object keyed by required/basic/advanced")
        for substage, items in questions.items():
            if substage not in ("required", "basic", "advanced"):
                raise InvalidField("questions", f"unknown question group '{substage}'")
            if not isinstance(items, list):
                raise InvalidField("questions", f"{substage} questions must be a list")
            for item in items:
                if not isinstance(item, dict) or not isinstance(item.get("id"), str) or not item.get("question"):
                    raise InvalidField("questions", f"every {substage} question needs an id and a question")

    def transform(self, data: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        questions = payload.get("questions") or {}
        normalized = {}
        for substage in ("required", "basic", "advanced"):
            normalized[substage] = [
                asdict(
                    Question(
                        id=item["id"],
                        question=item["question"],
                        required=substage == "required",
                        default=item.get("default"),
                    )
                )
                for item in questions.get(substage, [])
            ]
        merged = dict(data)
        merged[str(self.token)] = {
            "solutionId": payload["solutionId"],
            "intent": payload.get("intent", ""),
            "questions": normalized,
        }
        return merged

    def next(self, data: Dict[str, Any]) -> StageToken:
        return next_question_stage(data, -1)

    def prompt(self, data: Dict[str, Any]) -> StagePrompt:
        return StagePrompt(
            prompt="Which solution should be configured?",
            instruction=(
                "Call this tool with the chosen solutionId and its question set "
                "({required: [...], basic: [...], advanced: [...]})."
            ),
        )


class AnswerQuestionStage(StageHandler):
    """One `answerQuestion:<substage>` sub-stage."""

    def __init__(self, token: StageToken):
        self.token = token

    @property
    def position(self) -> int:
        return QUESTION_ORDER.index(self.token)

    def validate(self, data: Dict[str, Any], payload: Dict[str, Any]) -> None:
        answers = payload.get("answers") or {}
        if not isinstance(answers, dict):
            raise InvalidField("answers", "expected an object keyed by question id")
        questions = questions_for(data, self.token.substage)
        known = {q.id for q in questions}
        unknown = sorted(set(answers) - known)
        if unknown:
            raise InvalidField("answers", f"unknown question ids: {', '.join(unknown)}")
        if self.token == REQUIRED:
            for question in questions:
                value = answers.get(question.id)
                if value is None or (isinstance(value, str) and not value.strip()):
                    raise MissingField(f"answers.{question.id}")

    def transform(self, data: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(data)
        merged[str(self.token)] = dict(payload.get("answers") or {})
        return merged

    def next(self, data: Dict[str, Any]) -> StageToken:
        return next_question_stage(data, self.position)

    def prompt(self, data: Dict[str, Any]) -> StagePrompt:
        message, instruction = STAGE_MESSAGES[self.token.substage]
        return StagePrompt(
            prompt=message,
            instruction=instruction,
            data={"questions": [asdict(q) for q in questions_for(data, self.token.substage)]},
        )


class OpenQuestionStage(StageHandler):
    token = OPEN

    def transform(self, data: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        answers = payload.get("answers") or {}
        requirements = answers.get("open", "") if isinstance(answers, dict) else ""
        merged = dict(data)
        merged[str(self.token)] = {"open": requirements.strip() if isinstance(requirements, str) else ""}
        return merged

    def next(self, data: Dict[str, Any]) -> StageToken:
        return TERMINAL

    def prompt(self, data: Dict[str, Any]) -> StagePrompt:
        message, instruction = STAGE_MESSAGES["open"]
        return StagePrompt(prompt=message, instruction=instruction)


def collected_answers(data: Dict[str, Any]) -> Dict[str, Any]:
    answers: Dict[str, Any] = {}
    for token in QUESTION_ORDER:
        answers.update(data.get(str(token), {}))
    return answers


def completion_prompt(data: Dict[str, Any]) -> StagePrompt:
    solution = data.get(str(CHOOSE_SOLUTION), {})
    return StagePrompt(
        prompt="Configuration completed successfully. Ready for manifest generation.",
        instruction="Generate the manifests for the solution using the collected answers.",
        data={
            "solutionId": solution.get("solutionId"),
            "answers": collected_answers(data),
            "openRequirements": data.get(str(OPEN), {}).get("open", ""),
        },
    )


def build_graph() -> StageGraph:
    graph = StageGraph(
        name=TOOL_NAME,
        prefix=PREFIX,
        initial=CHOOSE_SOLUTION,
        description="Collect configuration answers for a chosen deployment solution",
        completion_prompt=completion_prompt,
    )
    graph.register(ChooseSolutionStage())
    for token in QUESTION_ORDER:
        graph.register(AnswerQuestionStage(token))
    graph.register(OpenQuestionStage())
    return graph
