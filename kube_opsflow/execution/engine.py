"""
Engine - Workflow Orchestration Layer

The WorkflowEngine is the deterministic state machine ("The Manager") that
drives one request through a tool's StageGraph against a SessionStore-backed
session.
-----------------------------------------------

Every request is "Read -> Check -> Plan -> Commit":
1. Read the session (or create it when the request carries no id).
2. Check the stage token against the session's current stage. A mismatch
   leaves the session untouched, which is what makes client retries safe:
   a stage that already advanced answers StageMismatch instead of applying
   the same transform twice.
3. Plan the transition with pure handler functions (validate, transform,
   next). Nothing is written if validation fails.
4. Commit the whole transition with one compare-and-swap update. Losing a
   race re-reads and re-plans once before surfacing Conflict.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..domain.models import StageToken
from ..repositories.session import Mutation, SessionStore
from ..services.exceptions import (
    Conflict,
    InvalidField,
    MissingField,
    SessionTerminal,
    StageMismatch,
    ToolNotFound,
    UnknownSession,
    VersionConflict,
)
from ..state.models import Session, SessionStatus
from .schemas.state_machine import StageTransition
from .stages import TERMINAL, StageGraph, StagePrompt

logger = logging.getLogger(__name__)


@dataclass
class PlannedTransition:
    """A fully validated transition, ready to be committed."""

    data: Dict[str, Any]
    next_stage: StageToken
    applied: List[StageToken]
    echoed: Dict[str, Any]

    @property
    def kind(self) -> StageTransition:
        if self.next_stage == TERMINAL:
            return StageTransition.FINISH
        if len(self.applied) > 1:
            return StageTransition.CHAIN
        return StageTransition.ADVANCE

    def apply(self, session: Session):
        session.collected_data = copy.deepcopy(self.data)
        session.current_stage = self.next_stage
        if self.next_stage == TERMINAL:
            session.status = SessionStatus.FINISHED
            session.finished_by = str(self.applied[-1])


@dataclass
class StepResult:
    session_id: str
    tool_name: str
    stage: Optional[str]
    next_stage: str
    prompt: StagePrompt
    status: SessionStatus
    version: int
    echoed_data: Dict[str, Any] = field(default_factory=dict)
    no_op: bool = False

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "success": True,
            "sessionId": self.session_id,
            "tool": self.tool_name,
            "stage": self.stage,
            "nextStage": self.next_stage,
            "status": self.status.value,
            "prompt": self.prompt.prompt,
            "instruction": self.prompt.instruction,
            "echoedData": self.echoed_data,
            "version": self.version,
        }
        if self.prompt.data:
            body["data"] = self.prompt.data
        if self.no_op:
            body["noOp"] = True
        return body


class WorkflowEngine:
    def __init__(self, store: SessionStore, graphs: Optional[List[StageGraph]] = None):
        self.store = store
        self.graphs: Dict[str, StageGraph] = {}
        for graph in graphs or []:
            self.register(graph)

    def register(self, graph: StageGraph):
        self.graphs[graph.name] = graph

    def graph_for(self, tool_name: str) -> StageGraph:
        graph = self.graphs.get(tool_name)
        if graph is None:
            raise ToolNotFound(tool_name)
        return graph

    async def step(
        self,
        tool_name: str,
        session_id: Optional[str],
        stage_token: Union[str, StageToken, None],
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> StepResult:
        """
        Advances one wizard session by one logical client call.
        With `timeout`, the whole read-plan-commit sequence is cancelled after
        that many seconds; the commit is atomic, so the session stays at its
        last persisted state.
        """
        operation = self._step(tool_name, session_id, stage_token, payload or {})
        if timeout is not None:
            return await asyncio.wait_for(operation, timeout)
        return await operation

    async def _step(
        self,
        tool_name: str,
        session_id: Optional[str],
        stage_token: Union[str, StageToken, None],
        payload: Dict[str, Any],
    ) -> StepResult:
        graph = self.graph_for(tool_name)
        token = StageToken.parse(stage_token) if isinstance(stage_token, str) else stage_token

        if session_id is None:
            return await self._start(graph, token, payload)

        if token is None:
            raise MissingField("stage")

        for attempt in (1, 2):
            session = await self.load(session_id)
            if session.tool_name != graph.name:
                raise InvalidField("sessionId", f"session belongs to tool '{session.tool_name}'")

            if session.is_terminal:
                if session.finished_by == str(token):
                    logger.info(f"Session {session.id} already finished by '{token}'; no-op")
                    return self._result(graph, session, stage=str(token), no_op=True)
                raise SessionTerminal(session.id, session.status.value)

            if session.current_stage != token:
                raise StageMismatch(session.id, str(session.current_stage), str(token))

            plan = self.plan(graph, session.collected_data, token, payload)
            try:
                updated = await self.store.update(session.id, session.version, plan.apply)
            except VersionConflict as exc:
                if attempt == 2:
                    raise Conflict(
                        f"Session {session.id} is being modified by another request; retry later"
                    ) from exc
                logger.warning(f"Version conflict on {session.id} at '{token}'; re-reading once")
                continue

            logger.info(
                f"Session {updated.id} {plan.kind.name}: "
                f"{' -> '.join(str(t) for t in plan.applied)} -> {plan.next_stage} (v{updated.version})"
            )
            self._notify_complete(graph, updated)
            return self._result(graph, updated, stage=str(token), echoed=plan.echoed)

        raise AssertionError("unreachable")

    async def _start(
        self, graph: StageGraph, token: Optional[StageToken], payload: Dict[str, Any]
    ) -> StepResult:
        """
        Creates the session at the graph's initial stage. When the request
        already answers the initial stage, the answer is validated before
        the session is created and applied right after.
        """
        plan = None
        if token is not None and token != graph.initial:
            raise StageMismatch("(new)", str(graph.initial), str(token))
        if token is not None and payload:
            plan = self.plan(graph, {}, token, payload)

        session = await self.store.create(graph.name, graph.initial, graph.prefix)
        logger.info(f"Created {graph.name} session {session.id} at '{graph.initial}'")
        if plan is None:
            return self._result(graph, session, stage=None)

        updated = await self.store.update(session.id, session.version, plan.apply)
        self._notify_complete(graph, updated)
        return self._result(graph, updated, stage=str(token), echoed=plan.echoed)

    def plan(
        self,
        graph: StageGraph,
        data: Dict[str, Any],
        token: StageToken,
        payload: Dict[str, Any],
    ) -> PlannedTransition:
        """
        Validates and computes a transition without touching storage.
        Applies at most two handlers: the current stage and, when the payload
        carries answers for it, the following one.
        """
        handler = graph.handler_for(token)
        if handler is None:
            raise StageMismatch("(unknown)", ", ".join(str(s) for s in graph.stages), str(token))

        handler.check_required(payload)
        handler.validate(data, payload)
        merged = handler.transform(copy.deepcopy(data), payload)
        next_stage = handler.next(merged)
        applied = [token]
        echoed = {str(token): payload}

        chained = handler.chained_payload(merged, payload)
        if chained is not None and next_stage != TERMINAL:
            follower = graph.handler_for(next_stage)
            if follower is None:
                raise ValueError(f"Stage '{next_stage}' is not part of {graph.name}")
            follower.check_required(chained)
            follower.validate(merged, chained)
            merged = follower.transform(copy.deepcopy(merged), chained)
            applied.append(next_stage)
            echoed[f"{next_stage}#chained"] = chained
            next_stage = follower.next(merged)

        return PlannedTransition(data=merged, next_stage=next_stage, applied=applied, echoed=echoed)

    # ==========================================================================
    # Session helpers shared with the AgenticLoopController
    # ==========================================================================

    async def load(self, session_id: str) -> Session:
        session = await self.store.get(session_id)
        if session is None:
            raise UnknownSession(session_id)
        return session

    async def open(
        self,
        tool_name: str,
        initial_stage: StageToken,
        prefix: str,
        collected_data: Optional[Dict[str, Any]] = None,
    ) -> Session:
        session = await self.store.create(tool_name, initial_stage, prefix, collected_data)
        logger.info(f"Created {tool_name} session {session.id} at '{initial_stage}'")
        return session

    async def commit(self, session: Session, mutation: Mutation) -> Session:
        """
        Compare-and-swap on `session.version`. On conflict the mutation is
        re-applied once to a freshly read copy; mutations must therefore
        check their own preconditions.
        """
        try:
            return await self.store.update(session.id, session.version, mutation)
        except VersionConflict:
            logger.warning(f"Version conflict on {session.id}; re-reading once")
        fresh = await self.load(session.id)
        try:
            return await self.store.update(fresh.id, fresh.version, mutation)
        except VersionConflict as exc:
            raise Conflict(
                f"Session {session.id} is being modified by another request; retry later"
            ) from exc

    async def current(self, tool_name: str, session_id: str) -> StepResult:
        """Re-issues the prompt for the session's current stage."""
        graph = self.graph_for(tool_name)
        session = await self.load(session_id)
        return self._result(graph, session, stage=None)

    # ==========================================================================
    # Standard Helpers
    # ==========================================================================

    def _notify_complete(self, graph: StageGraph, session: Session):
        if session.status == SessionStatus.FINISHED and graph.on_complete:
            graph.on_complete(session)

    def _result(
        self,
        graph: StageGraph,
        session: Session,
        stage: Optional[str],
        echoed: Optional[Dict[str, Any]] = None,
        no_op: bool = False,
    ) -> StepResult:
        return StepResult(
            session_id=session.id,
            tool_name=graph.name,
            stage=stage,
            next_stage=str(session.current_stage),
            prompt=graph.prompt_for(session.current_stage, session.collected_data),
            status=session.status,
            version=session.version,
            echoed_data=echoed or {},
            no_op=no_op,
        )
