"""
State Layer - Runtime Data Models

Defines the durable session state, including investigation progress and
execution records for investigative tools.
"""

from kube_opsflow.state.models import (
    Analysis,
    ExecutionRecord,
    Investigation,
    InvestigationIteration,
    LoopPhase,
    LoopPolicy,
    Session,
    SessionStatus,
    ValidationResult,
)

__all__ = [
    "Analysis",
    "ExecutionRecord",
    "Investigation",
    "InvestigationIteration",
    "LoopPhase",
    "LoopPolicy",
    "Session",
    "SessionStatus",
    "ValidationResult",
]
