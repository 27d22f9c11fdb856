"""
Service Layer Exceptions

Error taxonomy shared by the SessionStore, the WorkflowEngine and the
AgenticLoopController. Every error carries a machine-checkable `code` and a
human-readable message naming the violated precondition.
"""

from typing import Any, Optional


class OrchestratorError(Exception):
    """Base class for every domain error raised by the orchestrator."""

    code = "ORCHESTRATOR_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class MissingField(OrchestratorError):
    """Raised when a required payload field is absent or empty."""

    code = "MISSING_FIELD"

    def __init__(self, field: str, details: Optional[Any] = None):
        super().__init__(f"{field} is required", details)
        self.field = field


class InvalidField(OrchestratorError):
    """Raised when a payload field is present but unacceptable."""

    code = "INVALID_FIELD"

    def __init__(self, field: str, reason: str, details: Optional[Any] = None):
        super().__init__(f"Invalid {field}: {reason}", details)
        self.field = field


class UnknownSession(OrchestratorError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class StageMismatch(OrchestratorError):
    """The request targets a stage other than the session's current one."""

    code = "STAGE_MISMATCH"

    def __init__(self, session_id: str, expected: str, received: str):
        super().__init__(
            f"Session {session_id} is at stage '{expected}', not '{received}'",
            {"currentStage": expected, "requestedStage": received},
        )
        self.expected = expected
        self.received = received


class SessionTerminal(OrchestratorError):
    """The session is finished or errored and rejects further transitions."""

    code = "SESSION_TERMINAL"

    def __init__(self, session_id: str, status: str):
        super().__init__(f"Session {session_id} is {status} and cannot be advanced")


class VersionConflict(OrchestratorError):
    """Compare-and-swap failed: the stored version moved on."""

    code = "VERSION_CONFLICT"

    def __init__(self, session_id: str, expected: int, actual: Optional[int]):
        super().__init__(
            f"Session {session_id} was modified concurrently "
            f"(expected version {expected}, found {actual})"
        )
        self.expected = expected
        self.actual = actual


class Conflict(OrchestratorError):
    """Surfaced to the caller when an automatic conflict retry also lost."""

    code = "CONFLICT"


class OracleUnavailable(OrchestratorError):
    code = "ORACLE_UNAVAILABLE"


class ExecutorFailure(OrchestratorError):
    """A single action failed. Recorded per action, never fatal to a batch."""

    code = "EXECUTOR_FAILURE"

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


class RequestTimeout(OrchestratorError):
    code = "REQUEST_TIMEOUT"

    def __init__(self, timeout: float):
        super().__init__(f"Request did not complete within {timeout}s")
        self.timeout = timeout


class ValidationInconclusive(OrchestratorError):
    """Post-execution validation did not confirm the fix."""

    code = "VALIDATION_INCONCLUSIVE"


class ToolNotFound(OrchestratorError):
    code = "TOOL_NOT_FOUND"

    def __init__(self, tool_name: str):
        super().__init__(f"Tool '{tool_name}' is not registered")
        self.tool_name = tool_name
