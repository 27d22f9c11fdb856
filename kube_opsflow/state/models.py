"""
State Layer - Runtime Data Models

This module defines the durable state of one tool invocation (the Session).
Wizard tools keep their answers in `collected_data`; investigative tools also
carry an Investigation, an append-only list of ExecutionRecords and the
outcome of the post-execution validation.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..domain.models import ExecutionMode, RiskLevel, StageToken
from ..schemas.decisions import ProposedAction, ToolCallRequest


def utc_now() -> datetime:
    """Timezone-aware UTC; naive datetimes are rejected by the SQL layer."""
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    ACTIVE = "active"
    AWAITING_USER_APPROVAL = "awaiting_user_approval"
    FINISHED = "finished"
    ERROR = "error"


class LoopPhase(str, Enum):
    """
    Position of the AgenticLoopController inside one session.
    Stored as the session's current stage.
    """

    INVESTIGATING = "investigating"
    AWAITING_USER_APPROVAL = "awaiting_user_approval"
    EXECUTING = "executing"
    VALIDATING = "validating"
    SUCCESS = "success"
    ERROR = "error"


class Analysis(BaseModel):
    root_cause: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    factors: List[str] = Field(default_factory=list)


class InvestigationIteration(BaseModel):
    """One diagnostic round-trip: what the Oracle asked for and what came back."""

    step: int
    cycle: int = 0
    purpose: str = "investigation"  # or "validation"
    tool_call: ToolCallRequest
    evidence: str
    succeeded: bool = True
    timestamp: datetime = Field(default_factory=utc_now)


class Investigation(BaseModel):
    issue: str
    initial_context: Dict[str, Any] = Field(default_factory=dict)
    iterations: List[InvestigationIteration] = Field(default_factory=list)
    analysis: Optional[Analysis] = None
    proposed_actions: List[ProposedAction] = Field(default_factory=list)
    forced: bool = False

    def iterations_for(self, cycle: int, purpose: str) -> List[InvestigationIteration]:
        return [
            it for it in self.iterations if it.cycle == cycle and it.purpose == purpose
        ]

    @property
    def overall_risk(self) -> RiskLevel:
        if not self.proposed_actions:
            return RiskLevel.LOW
        return max(action.risk for action in self.proposed_actions)


class ExecutionRecord(BaseModel):
    """Outcome of one attempted action. Appended, never mutated."""

    action_id: str
    cycle: int = 0
    command: Optional[str] = None
    success: bool
    output: str = ""
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class ValidationResult(BaseModel):
    success: bool
    cycle: int
    summary: str
    confidence: float = 0.0


class LoopPolicy(BaseModel):
    """Per-session execution policy, fixed when the session starts."""

    mode: ExecutionMode = ExecutionMode.MANUAL
    confidence_threshold: float = Field(0.8, ge=0.0, le=1.0)
    max_risk_level: RiskLevel = RiskLevel.LOW


class Session(BaseModel):
    """
    The durable state for a single tool invocation.

    `version` is bumped by the SessionStore on every successful update and is
    the basis of optimistic concurrency control.
    """

    id: str
    tool_name: str
    current_stage: StageToken
    status: SessionStatus = SessionStatus.ACTIVE
    collected_data: Dict[str, Any] = Field(default_factory=dict)
    version: int = 1
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # The stage token whose application finished the session (wizards only)
    finished_by: Optional[str] = None

    # Investigative tools
    policy: Optional[LoopPolicy] = None
    investigation: Optional[Investigation] = None
    results: List[ExecutionRecord] = Field(default_factory=list)
    validation: Optional[ValidationResult] = None
    cycles: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in (SessionStatus.FINISHED, SessionStatus.ERROR)

    @property
    def phase(self) -> Optional[LoopPhase]:
        try:
            return LoopPhase(self.current_stage.stage)
        except ValueError:
            return None

    def records_for(self, cycle: int) -> List[ExecutionRecord]:
        return [record for record in self.results if record.cycle == cycle]

    def to_document(self) -> Dict[str, Any]:
        """
        The persisted/shared representation served by the session-retrieval
        endpoint.
        """
        data: Dict[str, Any] = {
            "toolName": self.tool_name,
            "currentStage": str(self.current_stage),
            "status": self.status.value,
            "collectedData": self.collected_data,
        }
        if self.investigation is not None:
            data["investigation"] = self.investigation.model_dump(mode="json")
            if self.investigation.analysis is not None:
                data["finalAnalysis"] = {
                    **self.investigation.analysis.model_dump(mode="json"),
                    "actions": [
                        a.model_dump(mode="json") for a in self.investigation.proposed_actions
                    ],
                }
        if self.results:
            data["results"] = [r.model_dump(mode="json") for r in self.results]
        if self.validation is not None:
            data["validation"] = self.validation.model_dump(mode="json")
        return {
            "sessionId": self.id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "version": self.version,
            "data": data,
        }
