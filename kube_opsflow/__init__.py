"""
Kube OpsFlow

A session-scoped workflow orchestrator for Kubernetes operations tools,
combining deterministic stage machines for structured wizards with an
Oracle-driven investigation and remediation loop behind a safety gate.
"""

__version__ = "0.1.0"

from kube_opsflow.domain import (
    ExecutionChoice,
    ExecutionMode,
    Question,
    RiskLevel,
    StageToken,
    ToolDescriptor,
)
from kube_opsflow.state import (
    ExecutionRecord,
    Investigation,
    LoopPhase,
    Session,
    SessionStatus,
)
from kube_opsflow.schemas import FinalAnalysis, ProposedAction, ToolCallRequest
from kube_opsflow.execution import AgenticLoopController, StageGraph, WorkflowEngine

__all__ = [
    # Domain Layer
    "ExecutionChoice",
    "ExecutionMode",
    "Question",
    "RiskLevel",
    "StageToken",
    "ToolDescriptor",
    # State Layer
    "ExecutionRecord",
    "Investigation",
    "LoopPhase",
    "Session",
    "SessionStatus",
    # Schemas
    "FinalAnalysis",
    "ProposedAction",
    "ToolCallRequest",
    # Execution Layer
    "AgenticLoopController",
    "StageGraph",
    "WorkflowEngine",
]
