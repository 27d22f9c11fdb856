from typing import List, Optional, Sequence

import pytest

from kube_opsflow.domain.models import RiskLevel
from kube_opsflow.execution.actions import ActionExecutor
from kube_opsflow.execution.agentic import AgenticLoopController, LoopConfig
from kube_opsflow.execution.engine import WorkflowEngine
from kube_opsflow.llm.interface import Oracle
from kube_opsflow.repositories.pattern import InMemoryPatternRepository
from kube_opsflow.repositories.session import InMemorySessionStore
from kube_opsflow.schemas.decisions import FinalAnalysis, ProposedAction, ToolCallRequest
from kube_opsflow.services.exceptions import ExecutorFailure
from kube_opsflow.tools import loop_profiles, wizard_graphs


def tool_call(
    operation: str = "get",
    resource: str = "pods",
    namespace: Optional[str] = "default",
    analysis: str = "",
    confidence: float = 0.0,
) -> ToolCallRequest:
    return ToolCallRequest(
        operation=operation,
        resource=resource,
        namespace=namespace,
        rationale=f"need {resource}",
        analysis=analysis,
        confidence=confidence,
    )


def action(command: str, risk: RiskLevel = RiskLevel.LOW) -> ProposedAction:
    return ProposedAction(
        description=f"run {command}",
        command=command,
        risk=risk,
        rationale="fixes the issue",
    )


def final(
    confidence: float,
    actions: Sequence[ProposedAction] = (),
    resolved: Optional[bool] = None,
    root_cause: str = "memory limit too low",
) -> FinalAnalysis:
    return FinalAnalysis(
        root_cause=root_cause,
        confidence=confidence,
        factors=["OOMKilled events"],
        actions=list(actions),
        issue_resolved=resolved,
    )


class ScriptedOracle(Oracle):
    """Replays a fixed list of decisions; exceptions in the list are raised."""

    def __init__(self, decisions: list):
        self.decisions = list(decisions)
        self.calls: List[List[dict]] = []

    async def decide(self, messages):
        self.calls.append(messages)
        if not self.decisions:
            raise AssertionError("oracle script exhausted")
        decision = self.decisions.pop(0)
        if isinstance(decision, Exception):
            raise decision
        return decision


class NeverCompletingOracle(Oracle):
    """Always asks for one more diagnostic."""

    def __init__(self):
        self.calls = 0

    async def decide(self, messages):
        self.calls += 1
        return tool_call(analysis="pods restart after deploy", confidence=0.6)


class FakeExecutor(ActionExecutor):
    def __init__(self, failing: Sequence[str] = ()):
        self.failing = set(failing)
        self.diagnostics: List[str] = []
        self.actions: List[str] = []
        self.released: List[str] = []

    async def run_diagnostic(self, call):
        self.diagnostics.append(call.render())
        return f"output of {call.render()}"

    async def run_action(self, action):
        self.actions.append(action.command)
        if action.command in self.failing:
            raise ExecutorFailure(f"{action.command} failed", output="partial")
        return f"{action.command} done"

    async def release(self, session_id):
        self.released.append(session_id)


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def patterns() -> InMemoryPatternRepository:
    return InMemoryPatternRepository()


@pytest.fixture
def engine(store, patterns) -> WorkflowEngine:
    return WorkflowEngine(store, wizard_graphs(patterns))


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def loop_config() -> LoopConfig:
    return LoopConfig(
        max_iterations=5,
        validation_max_iterations=3,
        max_cycles=2,
        oracle_max_retries=3,
        oracle_timeout=5,
        oracle_backoff=0,
        executor_timeout=5,
    )


@pytest.fixture
def make_controller(engine, executor, loop_config):
    def build(oracle: Oracle, config: Optional[LoopConfig] = None) -> AgenticLoopController:
        return AgenticLoopController(engine, oracle, executor, loop_profiles(), config or loop_config)

    return build
