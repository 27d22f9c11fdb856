"""
Domain Layer - Static Data Models

This module defines the static vocabulary shared by every tool: stage tokens,
risk levels, execution modes and the execution choices offered to a user when
an action needs approval. None of these objects carry per-session state.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class RiskLevel(str, Enum):
    """
    Ordinal risk attached to a proposed action.

    Totally ordered: LOW < MEDIUM < HIGH. Use `rank` (or the comparison
    operators) instead of comparing the raw string values.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank


_RISK_RANK = {RiskLevel.LOW: 1, RiskLevel.MEDIUM: 2, RiskLevel.HIGH: 3}


class ExecutionMode(str, Enum):
    """
    MANUAL: Always stop for user approval before running any action.
    AUTOMATIC: Run actions without approval when the ExecutionGate allows it.
    """

    MANUAL = "manual"
    AUTOMATIC = "automatic"


@dataclass(frozen=True)
class StageToken:
    """
    Position inside a tool's stage graph.

    Sub-staged flows use a `stage:substage` textual encoding
    (e.g. "answerQuestion:required"). Equality is structural, so a token
    parsed from a request compares equal to the one stored on the session.
    """

    stage: str
    substage: Optional[str] = None

    @classmethod
    def parse(cls, token: str) -> "StageToken":
        stage, _, substage = token.strip().partition(":")
        return cls(stage=stage, substage=substage or None)

    def __str__(self) -> str:
        if self.substage:
            return f"{self.stage}:{self.substage}"
        return self.stage


@dataclass
class Question:
    """
    A single question asked by a wizard stage.

    Attributes:
        id: Key under which the answer is stored.
        question: Human-readable question text.
        required: Whether an answer must be supplied before advancing.
        default: Suggested value shown to the user.
    """

    id: str
    question: str
    required: bool = False
    default: Optional[str] = None


@dataclass
class ExecutionChoice:
    """
    Numbered option presented when proposed actions need user approval.
    The risk is informative only.
    """

    id: int
    label: str
    description: str
    risk: Optional[RiskLevel] = None


EXECUTE_VIA_ENGINE = 1
HAND_OFF_TO_AGENT = 2


def execution_choices(risk: Optional[RiskLevel] = None) -> List[ExecutionChoice]:
    """The choices offered whenever automatic execution is not allowed."""
    return [
        ExecutionChoice(
            id=EXECUTE_VIA_ENGINE,
            label="Execute automatically via engine",
            description="Run the commands shown above through the orchestration engine",
            risk=risk,
        ),
        ExecutionChoice(
            id=HAND_OFF_TO_AGENT,
            label="Hand off to an external agent",
            description="Return the commands so the calling agent (or user) can run them",
            risk=risk,
        ),
    ]


@dataclass
class ToolDescriptor:
    """Public description of a registered tool."""

    name: str
    prefix: str
    kind: str  # "wizard" or "agentic"
    description: str = ""
    stages: List[str] = field(default_factory=list)
