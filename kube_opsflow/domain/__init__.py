"""
Domain Layer - Static Data Models

Defines the static vocabulary shared by all tools: stage tokens, risk levels,
execution modes and execution choices.
"""

from kube_opsflow.domain.models import (
    EXECUTE_VIA_ENGINE,
    HAND_OFF_TO_AGENT,
    ExecutionChoice,
    ExecutionMode,
    Question,
    RiskLevel,
    StageToken,
    ToolDescriptor,
    execution_choices,
)

__all__ = [
    "EXECUTE_VIA_ENGINE",
    "HAND_OFF_TO_AGENT",
    "ExecutionChoice",
    "ExecutionMode",
    "Question",
    "RiskLevel",
    "StageToken",
    "ToolDescriptor",
    "execution_choices",
]
