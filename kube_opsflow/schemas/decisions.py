"""
Schemas - Structured Output Models for Oracle Responses

This module defines the Pydantic models the Oracle must produce on every
turn. The Oracle is untrusted and non-deterministic, so its output is a
closed sum type: it either asks for one more read-only diagnostic
(ToolCallRequest) or declares the investigation finished (FinalAnalysis).
Anything else fails validation.
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from ..domain.models import RiskLevel


class ProposedAction(BaseModel):
    """A remediation step suggested by the Oracle."""

    description: str
    command: Optional[str] = Field(
        None, description="The exact command to run (e.g. a kubectl invocation)."
    )
    risk: RiskLevel
    rationale: str


class ToolCallRequest(BaseModel):
    """
    Ask the engine to run one diagnostic and feed the evidence back.

    `analysis` and `confidence` carry the Oracle's working hypothesis so far;
    they become the best-effort analysis if the iteration cap is reached.
    """

    kind: Literal["tool_call"] = "tool_call"
    operation: str = Field(
        ..., description="kubectl verb to run: get, describe, logs, events, top or explain."
    )
    resource: str = Field(..., description="Resource type and optional name, e.g. 'pod/web-0'.")
    namespace: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    rationale: str = Field(..., description="Why this evidence is needed.")
    analysis: str = Field("", description="Working hypothesis given the evidence so far.")
    confidence: float = Field(0.0, ge=0.0, le=1.0)

    def render(self) -> str:
        parts = [self.operation, self.resource]
        if self.namespace:
            parts.extend(["-n", self.namespace])
        parts.extend(self.args)
        return " ".join(parts)


class FinalAnalysis(BaseModel):
    """
    The Oracle's conclusion.

    During a validation pass `issue_resolved` states whether the original
    symptom has cleared; it is ignored during investigation.
    """

    kind: Literal["final_analysis"] = "final_analysis"
    root_cause: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    factors: List[str] = Field(default_factory=list)
    actions: List[ProposedAction] = Field(default_factory=list)
    issue_resolved: Optional[bool] = None
    validation_intent: Optional[str] = None


OracleDecision = Annotated[
    Union[ToolCallRequest, FinalAnalysis], Field(discriminator="kind")
]


class OracleReply(BaseModel):
    """Envelope used for structured output, since the top level must be an object."""

    decision: OracleDecision
