"""
Schemas - Structured Output Models for Oracle Responses

Defines the closed sum type returned by the Oracle, ensuring predictable and
parseable results for the AgenticLoopController.
"""

from kube_opsflow.schemas.decisions import (
    FinalAnalysis,
    OracleDecision,
    OracleReply,
    ProposedAction,
    ToolCallRequest,
)

__all__ = [
    "FinalAnalysis",
    "OracleDecision",
    "OracleReply",
    "ProposedAction",
    "ToolCallRequest",
]
