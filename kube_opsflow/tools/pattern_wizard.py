"""
Pattern Wizard - Organizational Pattern Capture

Seven linear stages, one free-text `response` per stage:

    description -> triggers -> trigger-expansion -> resources
        -> rationale -> created-by -> review

`review` finishes the session on "confirm" (or "yes") as a whole word, with
no negation in the reply, and sends anything else back to `description`
with the answers kept, so the user can revise.
The finished session yields a Pattern handed to the PatternRepository.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from ..domain.models import StageToken
from ..execution.stages import TERMINAL, StageGraph, StageHandler, StagePrompt
from ..repositories.pattern import Pattern, PatternRepository, build_pattern
from ..services.exceptions import InvalidField
from ..state.models import Session

logger = logging.getLogger(__name__)

TOOL_NAME = "patternWizard"
PREFIX = "pattern"

DESCRIPTION = StageToken("description")
TRIGGERS = StageToken("triggers")
TRIGGER_EXPANSION = StageToken("trigger-expansion")
RESOURCES = StageToken("resources")
RATIONALE = StageToken("rationale")
CREATED_BY = StageToken("created-by")
REVIEW = StageToken("review")

CONFIRMATIONS = {"confirm", "confirmed", "yes", "y"}
NEGATIONS = {"no", "not", "dont", "don't", "never", "cancel", "modify"}


def split_list(response: str) -> List[str]:
    return [item.strip() for item in response.split(",") if item.strip()]


def final_triggers(data: Dict[str, Any]) -> List[str]:
    return data.get("trigger-expansion") or data.get("triggers") or []


def pattern_from(data: Dict[str, Any]) -> Pattern:
    return build_pattern(
        description=data.get("description", ""),
        triggers=final_triggers(data),
        suggested_resources=data.get("resources", []),
        rationale=data.get("rationale", ""),
        created_by=data.get("created-by", ""),
    )


class ResponseStage(StageHandler):
    """A stage answered by a single `response` string."""

    required_fields = ("response",)
    next_stage: StageToken

    def parse(self, response: str) -> Any:
        return response.strip()

    def validate(self, data: Dict[str, Any], payload: Dict[str, Any]) -> None:
        response = payload.get("response")
        if response is not None and not isinstance(response, str):
            raise InvalidField("response", f"expected text, got {type(response).__name__}")

    def transform(self, data: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(data)
        merged[self.token.stage] = self.parse(payload.get("response") or "")
        return merged

    def next(self, data: Dict[str, Any]) -> StageToken:
        return self.next_stage


class DescriptionStage(ResponseStage):
    token = DESCRIPTION
    next_stage = TRIGGERS

    def prompt(self, data: Dict[str, Any]) -> StagePrompt:
        return StagePrompt(
            prompt=(
                'Ask the user: "What deployment capability does this pattern provide? '
                'I need a capability name (2-4 words), e.g. "Horizontal scaling", '
                '"Database persistence" or "Application networking"."'
            ),
            instruction=(
                "Wait for the user to provide a capability name. "
                "Then call this tool again with their response."
            ),
        )


class TriggersStage(ResponseStage):
    token = TRIGGERS
    next_stage = TRIGGER_EXPANSION

    def parse(self, response: str) -> List[str]:
        return split_list(response)

    def validate(self, data: Dict[str, Any], payload: Dict[str, Any]) -> None:
        super().validate(data, payload)
        if not split_list(payload["response"]):
            raise InvalidField("response", "provide at least one trigger keyword")

    def prompt(self, data: Dict[str, Any]) -> StagePrompt:
        return StagePrompt(
            prompt=(
                'Ask the user: "What keywords or phrases should trigger this pattern? '
                'Please provide keywords separated by commas."'
            ),
            instruction=(
                "If the user describes triggers instead of listing them, convert the "
                "description into keywords and confirm them. Then call this tool again "
                "with the comma-separated keywords."
            ),
        )


class TriggerExpansionStage(ResponseStage):
    """
    Optional: an empty response keeps the initial triggers. Accepts either a
    JSON list or a comma-separated string.
    """

    token = TRIGGER_EXPANSION
    required_fields = ()
    next_stage = RESOURCES

    def parse(self, response: str) -> List[str]:
        try:
            confirmed = json.loads(response)
        except ValueError:
            return split_list(response)
        if isinstance(confirmed, list):
            return [str(item).strip() for item in confirmed if str(item).strip()]
        return split_list(response)

    def transform(self, data: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(data)
        expanded = self.parse(payload.get("response") or "")
        merged[self.token.stage] = expanded or list(data.get("triggers", []))
        return merged

    def prompt(self, data: Dict[str, Any]) -> StagePrompt:
        description = data.get("description", "")
        initial = data.get("triggers", [])
        return StagePrompt(
            prompt=(
                f'Based on the pattern "{description}" and initial triggers '
                f"[{', '.join(initial)}], suggest related terms (synonyms, abbreviations, "
                "alternative phrasings) and ask the user which ones to include."
            ),
            instruction=(
                "Send back the final trigger list, comma-separated. Send an empty "
                "response to keep only the original triggers."
            ),
            data={"initialTriggers": initial, "description": description},
        )


class ResourcesStage(ResponseStage):
    token = RESOURCES
    next_stage = RATIONALE

    def parse(self, response: str) -> List[str]:
        return split_list(response)

    def validate(self, data: Dict[str, Any], payload: Dict[str, Any]) -> None:
        super().validate(data, payload)
        if not split_list(payload["response"]):
            raise InvalidField("response", "provide at least one Kubernetes resource type")

    def prompt(self, data: Dict[str, Any]) -> StagePrompt:
        return StagePrompt(
            prompt=(
                f'Ask the user: "Which Kubernetes resources should be suggested for '
                f"{data.get('description', 'this pattern')}? For example: Deployment, "
                'Service, ConfigMap."'
            ),
            instruction="Call this tool again with the comma-separated resource types.",
        )


class RationaleStage(ResponseStage):
    token = RATIONALE
    next_stage = CREATED_BY

    def prompt(self, data: Dict[str, Any]) -> StagePrompt:
        return StagePrompt(
            prompt=(
                'Ask the user: "Why does this combination of resources work well together '
                f'for {data.get("description", "this pattern")}?"'
            ),
            instruction="Call this tool again with the user's rationale.",
        )


class CreatedByStage(ResponseStage):
    token = CREATED_BY
    next_stage = REVIEW

    def prompt(self, data: Dict[str, Any]) -> StagePrompt:
        return StagePrompt(
            prompt='Ask the user: "What is your name or team identifier?"',
            instruction="Call this tool again with the user's identifier.",
        )


class ReviewStage(ResponseStage):
    token = REVIEW

    @staticmethod
    def confirmed(response: str) -> bool:
        """Whole-word "confirm" or "yes" with no negating word anywhere in the reply."""
        words = set(re.findall(r"[a-z']+", response.lower().replace("\u2019", "'")))
        return bool(words & CONFIRMATIONS) and not words & NEGATIONS

    def validate(self, data: Dict[str, Any], payload: Dict[str, Any]) -> None:
        super().validate(data, payload)
        if self.confirmed(payload["response"]):
            pattern_from(data)

    def next(self, data: Dict[str, Any]) -> StageToken:
        if self.confirmed(data.get("review", "")):
            return TERMINAL
        return DESCRIPTION

    def prompt(self, data: Dict[str, Any]) -> StagePrompt:
        return StagePrompt(
            prompt=(
                "Please review your pattern:\n\n"
                f"**Description**: {data.get('description', '')}\n"
                f"**Triggers**: {', '.join(final_triggers(data))}\n"
                f"**Suggested Resources**: {', '.join(data.get('resources', []))}\n"
                f"**Rationale**: {data.get('rationale', '')}\n"
                f"**Created By**: {data.get('created-by', '')}\n\n"
                "Does this look correct? Type 'confirm' to create the pattern, "
                "or 'modify' to make changes."
            ),
            instruction="Show the user the summary and call this tool again with their response.",
        )


def completion_prompt(data: Dict[str, Any]) -> StagePrompt:
    pattern = pattern_from(data)
    return StagePrompt(
        prompt=(
            "Pattern created successfully!\n\n"
            f"**Pattern ID**: {pattern.id}\n"
            f"**Description**: {pattern.description}\n"
            f"**Triggers**: {', '.join(pattern.triggers)}\n"
            f"**Resources**: {', '.join(pattern.suggested_resources)}"
        ),
        instruction="Pattern creation completed. The pattern has been saved and is ready for use.",
        data={"pattern": pattern.model_dump(mode="json")},
    )


def build_graph(repository: Optional[PatternRepository] = None) -> StageGraph:
    def store_pattern(session: Session):
        if repository is None:
            return
        pattern = pattern_from(session.collected_data)
        repository.save(pattern)
        logger.info(f"Pattern {pattern.id} saved from session {session.id}")

    graph = StageGraph(
        name=TOOL_NAME,
        prefix=PREFIX,
        initial=DESCRIPTION,
        description="Capture an organizational deployment pattern step by step",
        on_complete=store_pattern,
        completion_prompt=completion_prompt,
    )
    for handler in (
        DescriptionStage(),
        TriggersStage(),
        TriggerExpansionStage(),
        ResourcesStage(),
        RationaleStage(),
        CreatedByStage(),
        ReviewStage(),
    ):
        graph.register(handler)
    return graph
