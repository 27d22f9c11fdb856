"""
Execution Layer - Workflow Orchestration and the Agentic Loop

Defines the WorkflowEngine (deterministic stage machine for wizards), the
ExecutionGate policy and the AgenticLoopController that together orchestrate
every tool session.
"""

from kube_opsflow.execution.agentic import AgenticLoopController, LoopConfig, LoopProfile, LoopResult
from kube_opsflow.execution.engine import StepResult, WorkflowEngine
from kube_opsflow.execution.gate import GateDecision, decide
from kube_opsflow.execution.stages import TERMINAL, StageGraph, StageHandler, StagePrompt

__all__ = [
    "AgenticLoopController",
    "GateDecision",
    "LoopConfig",
    "LoopProfile",
    "LoopResult",
    "StageGraph",
    "StageHandler",
    "StagePrompt",
    "StepResult",
    "TERMINAL",
    "WorkflowEngine",
    "decide",
]
