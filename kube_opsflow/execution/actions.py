"""
Action Execution - Cluster Command Runner

The ActionExecutor runs the commands the AgenticLoopController decides on:
read-only diagnostics during investigation and validation, and remediation
actions once the ExecutionGate (or the user) approved them. Failures are
reported as ExecutorFailure so the controller can record them per action.
"""

import asyncio
import logging
import shlex
from abc import ABC, abstractmethod
from typing import List, Optional

from ..schemas.decisions import ProposedAction, ToolCallRequest
from ..services.exceptions import ExecutorFailure

logger = logging.getLogger(__name__)

# Whitelist of read-only operations the Oracle may request during investigation.
SAFE_OPERATIONS = ("get", "describe", "logs", "events", "top", "explain")


# `--dry-run=none` is kubectl's explicit "really apply" mode.
SAFE_DRY_RUN_MODES = ("client", "server")


def dry_run_modes(args: Optional[List[str]]) -> List[str]:
    """Values of every `--dry-run` flag in `args`; a bare flag yields ''."""
    return [
        arg.partition("=")[2]
        for arg in args or []
        if arg == "--dry-run" or arg.startswith("--dry-run=")
    ]


def has_dry_run_flag(args: Optional[List[str]]) -> bool:
    """
    True only when the command carries at least one dry-run flag and every
    one of them is bare, `client` or `server`.
    """
    modes = dry_run_modes(args)
    return bool(modes) and all(mode in ("", *SAFE_DRY_RUN_MODES) for mode in modes)


def is_read_only(call: ToolCallRequest) -> bool:
    return call.operation in SAFE_OPERATIONS or has_dry_run_flag(call.args)


def error_suggestion(message: str) -> Optional[str]:
    """Hints appended to failed diagnostics so the Oracle can adjust its next request."""
    lowered = message.lower()
    if "namespace" in lowered and "not found" in lowered:
        return "Namespace does not exist. Try listing available namespaces first."
    if "not found" in lowered:
        return "Resource may not exist or may be in a different namespace. Try listing available resources first."
    if "forbidden" in lowered:
        return "Insufficient permissions. Check RBAC configuration for read access to this resource."
    if "connection refused" in lowered or "timeout" in lowered:
        return "Cannot connect to Kubernetes cluster. Verify cluster connectivity and kubectl configuration."
    return None


class ActionExecutor(ABC):
    """
    Runs diagnostics and remediation actions against a cluster.
    Timeouts are applied by the caller.
    """

    @abstractmethod
    async def run_diagnostic(self, call: ToolCallRequest) -> str:
        """Runs a read-only diagnostic and returns its output."""
        pass

    @abstractmethod
    async def run_action(self, action: ProposedAction) -> str:
        """Runs one remediation action. Raises ExecutorFailure on failure."""
        pass

    async def release(self, session_id: str) -> None:
        """Releases per-session resources (sandboxes, port-forwards) once a session is finished."""
        return None


class KubectlActionExecutor(ActionExecutor):
    """
    Subprocess-backed executor. Only kubectl invocations are accepted;
    anything else is rejected before a process is spawned.
    """

    def __init__(self, binary: str = "kubectl", kubeconfig: Optional[str] = None):
        self.binary = binary
        self.kubeconfig = kubeconfig

    async def run_diagnostic(self, call: ToolCallRequest) -> str:
        if not is_read_only(call):
            raise ExecutorFailure(
                f"Unsafe operation '{call.operation}' - only allowed: "
                f"{', '.join(SAFE_OPERATIONS)} or any operation with --dry-run flag"
            )
        args = [call.operation, call.resource]
        if call.namespace:
            args.extend(["-n", call.namespace])
        args.extend(call.args)
        if call.operation in ("get", "events") and not has_dry_run_flag(call.args):
            args.extend(["-o", "yaml"])
        return await self._run(args)

    async def run_action(self, action: ProposedAction) -> str:
        if not action.command:
            raise ExecutorFailure(f"Action '{action.description}' has no command to run")
        try:
            parts = shlex.split(action.command)
        except ValueError as e:
            raise ExecutorFailure(f"Invalid command syntax: {e}")
        if not parts or parts[0] != "kubectl":
            raise ExecutorFailure(f"Only kubectl commands can be executed, got: {action.command}")
        return await self._run(parts[1:])

    async def _run(self, args: List[str]) -> str:
        command = [self.binary, *args]
        if self.kubeconfig:
            command.extend(["--kubeconfig", self.kubeconfig])
        logger.debug(f"Executing: {' '.join(command)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise ExecutorFailure(f"{self.binary} not found on PATH")

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            raise

        output = stdout.decode(errors="replace")
        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip() or f"exit code {process.returncode}"
            raise ExecutorFailure(message, output=output)
        return output
