"""
Execution Gate - Safety Policy

Pure decision function: may a proposed set of actions run without asking the
user? Only when all three hold:

    mode == automatic
    AND analysis.confidence >= confidence_threshold
    AND max(action.risk) <= max_risk_level

Every other combination (including manual mode regardless of confidence and
risk) requires approval, and the caller must present the execution choices.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..domain.models import ExecutionChoice, ExecutionMode, RiskLevel, execution_choices
from ..schemas.decisions import ProposedAction
from ..state.models import Analysis


@dataclass
class GateDecision:
    auto_execute: bool
    reason: str
    risk: RiskLevel
    fallback_reason: Optional[str] = None
    choices: List[ExecutionChoice] = field(default_factory=list)


def max_risk(actions: Sequence[ProposedAction]) -> RiskLevel:
    """Highest risk among `actions`; an empty batch counts as low risk."""
    if not actions:
        return RiskLevel.LOW
    return max(action.risk for action in actions)


def decide(
    analysis: Analysis,
    actions: Sequence[ProposedAction],
    mode: ExecutionMode,
    confidence_threshold: float,
    max_risk_level: RiskLevel,
) -> GateDecision:
    risk = max_risk(actions)

    if mode != ExecutionMode.AUTOMATIC:
        return GateDecision(
            auto_execute=False,
            reason="Manual mode selected - requiring user approval",
            risk=risk,
            choices=execution_choices(risk),
        )

    if analysis.confidence < confidence_threshold:
        return GateDecision(
            auto_execute=False,
            reason=f"Confidence {analysis.confidence:.2f} below threshold {confidence_threshold:.2f}",
            risk=risk,
            fallback_reason=(
                f"Analysis confidence ({round(analysis.confidence * 100)}%) is below the "
                f"required threshold ({round(confidence_threshold * 100)}%). Manual review recommended."
            ),
            choices=execution_choices(risk),
        )

    if risk > max_risk_level:
        return GateDecision(
            auto_execute=False,
            reason=f"Risk level {risk.value} exceeds maximum {max_risk_level.value}",
            risk=risk,
            fallback_reason=(
                f"Remediation risk level ({risk.value}) exceeds the maximum allowed level "
                f"({max_risk_level.value}). Manual approval required."
            ),
            choices=execution_choices(risk),
        )

    return GateDecision(
        auto_execute=True,
        reason=(
            f"Automatic execution approved - confidence {analysis.confidence:.2f} >= "
            f"{confidence_threshold:.2f}, risk {risk.value} <= {max_risk_level.value}"
        ),
        risk=risk,
    )
