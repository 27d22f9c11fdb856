"""
Agentic Loop - Investigation and Remediation Orchestration

The AgenticLoopController drives the Oracle / ActionExecutor / ExecutionGate
interaction for open-ended tools (remediation, documentation validation).
It owns one state machine per session:

    investigating -> awaiting_user_approval -> executing -> validating
        -> success
        -> investigating            (validation inconclusive, cycles left)
        -> awaiting_user_approval   (validation inconclusive, cycles exhausted)
        -> error                    (cycles exhausted and every action failed)

Two independent caps bound the work: `max_iterations` Oracle round-trips per
investigation pass, and `max_cycles` investigate/execute/validate passes.
Every iteration, phase change and execution record is committed as it
happens, so an interrupted request resumes from the last persisted state.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, TypeVar

import tenacity

from ..domain.models import (
    EXECUTE_VIA_ENGINE,
    HAND_OFF_TO_AGENT,
    ExecutionMode,
    RiskLevel,
    StageToken,
    ToolDescriptor,
    execution_choices,
)
from ..llm.interface import Oracle
from ..schemas.decisions import FinalAnalysis, OracleDecision, ProposedAction, ToolCallRequest
from ..services.exceptions import (
    Conflict,
    InvalidField,
    MissingField,
    OracleUnavailable,
    SessionTerminal,
    StageMismatch,
    ToolNotFound,
    ValidationInconclusive,
)
from ..state.models import (
    Analysis,
    ExecutionRecord,
    Investigation,
    InvestigationIteration,
    LoopPhase,
    LoopPolicy,
    Session,
    SessionStatus,
    ValidationResult,
    utc_now,
)
from .actions import ActionExecutor, error_suggestion, is_read_only
from .engine import WorkflowEngine
from .gate import decide, max_risk
from .prompts import Template, render
from .schemas.state_machine import LoopTransition

logger = logging.getLogger(__name__)

T = TypeVar("T")

INVESTIGATION = "investigation"
VALIDATION = "validation"

# collected_data key holding the claim on the action being executed
IN_FLIGHT = "inFlight"

_STATUS_FOR_PHASE = {
    LoopPhase.INVESTIGATING: SessionStatus.ACTIVE,
    LoopPhase.EXECUTING: SessionStatus.ACTIVE,
    LoopPhase.VALIDATING: SessionStatus.ACTIVE,
    LoopPhase.SUCCESS: SessionStatus.ACTIVE,
    LoopPhase.AWAITING_USER_APPROVAL: SessionStatus.AWAITING_USER_APPROVAL,
    LoopPhase.ERROR: SessionStatus.ERROR,
}

_EVIDENCE_LIMIT = 4000


@dataclass
class LoopProfile:
    """Static description of one investigative tool."""

    name: str
    prefix: str
    investigation_template: str
    validation_template: str = Template.VALIDATION
    description: str = ""

    def describe(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            prefix=self.prefix,
            kind="agentic",
            description=self.description,
            stages=[phase.value for phase in LoopPhase],
        )


@dataclass
class LoopConfig:
    max_iterations: int = 20
    validation_max_iterations: int = 5
    max_cycles: int = 2
    forced_confidence: float = 0.3
    oracle_max_retries: int = 3
    oracle_timeout: Optional[float] = 120.0
    oracle_backoff: float = 1.0
    executor_timeout: Optional[float] = 30.0
    action_lease: float = 300.0
    default_confidence_threshold: float = 0.8
    default_max_risk_level: RiskLevel = RiskLevel.LOW


@dataclass
class LoopResult:
    session: Session
    transitions: List[LoopTransition] = field(default_factory=list)
    message: str = ""
    handoff: Optional[List[str]] = None
    no_op: bool = False

    @property
    def phase(self) -> Optional[LoopPhase]:
        return self.session.phase

    def to_dict(self) -> Dict[str, Any]:
        session = self.session
        investigation = session.investigation
        gate = session.collected_data.get("gate", {})
        actions = investigation.proposed_actions if investigation else []
        risk = max_risk(actions)

        body: Dict[str, Any] = {
            "success": True,
            "status": self.phase.value if self.phase else str(session.current_stage),
            "sessionStatus": session.status.value,
            "sessionId": session.id,
            "tool": session.tool_name,
            "version": session.version,
            "cycles": session.cycles,
            "executed": bool(session.results),
            "results": [record.model_dump(mode="json") for record in session.results],
            "path": [
                {
                    "from": t.from_phase.value if t.from_phase else None,
                    "to": t.to_phase.value,
                    "reason": t.reason,
                }
                for t in self.transitions
            ],
        }
        if investigation is not None:
            body["investigation"] = {
                "issue": investigation.issue,
                "iterations": len([i for i in investigation.iterations if i.purpose == INVESTIGATION]),
                "forced": investigation.forced,
                "dataGathered": [
                    f"kubectl {it.tool_call.render()}" for it in investigation.iterations if it.succeeded
                ],
            }
            if investigation.analysis is not None:
                body["analysis"] = investigation.analysis.model_dump(mode="json")
                body["remediation"] = {
                    "actions": [a.model_dump(mode="json") for a in actions],
                    "risk": risk.value,
                }
        if self.phase == LoopPhase.AWAITING_USER_APPROVAL and actions:
            body["executionChoices"] = [
                {"id": c.id, "label": c.label, "description": c.description, "risk": c.risk.value}
                for c in execution_choices(risk)
            ]
        if gate.get("fallbackReason"):
            body["fallbackReason"] = gate["fallbackReason"]
        if session.validation is not None:
            body["validation"] = session.validation.model_dump(mode="json")
        if self.handoff is not None:
            body["handoff"] = {"commands": self.handoff}
        if self.message:
            body["message"] = self.message
        if self.no_op:
            body["noOp"] = True
        return body


class _AlreadyFinished(Exception):
    pass


class AgenticLoopController:
    def __init__(
        self,
        engine: WorkflowEngine,
        oracle: Oracle,
        executor: ActionExecutor,
        profiles: Optional[List[LoopProfile]] = None,
        config: Optional[LoopConfig] = None,
    ):
        self.engine = engine
        self.oracle = oracle
        self.executor = executor
        self.config = config or LoopConfig()
        self.profiles: Dict[str, LoopProfile] = {p.name: p for p in profiles or []}

    def register(self, profile: LoopProfile):
        self.profiles[profile.name] = profile

    def profile_for(self, tool_name: str) -> LoopProfile:
        profile = self.profiles.get(tool_name)
        if profile is None:
            raise ToolNotFound(tool_name)
        return profile

    # ==========================================================================
    # Public operations
    # ==========================================================================

    async def start(
        self,
        tool_name: str,
        issue: Optional[str],
        context: Optional[Dict[str, Any]] = None,
        mode: Optional[str] = None,
        confidence_threshold: Optional[float] = None,
        max_risk_level: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> LoopResult:
        """Creates a session, investigates, and executes if the gate allows it."""
        profile = self.profile_for(tool_name)
        if not issue or not issue.strip():
            raise MissingField("issue")
        policy = self._policy(mode, confidence_threshold, max_risk_level)

        async def run() -> LoopResult:
            session = await self.engine.open(
                profile.name, StageToken(LoopPhase.INVESTIGATING.value), profile.prefix
            )

            def initialize(s: Session):
                s.policy = policy
                s.investigation = Investigation(issue=issue.strip(), initial_context=context or {})

            session = await self.engine.commit(session, initialize)
            transitions = [LoopTransition(None, LoopPhase.INVESTIGATING, "session created")]
            logger.info(
                f"{profile.name} session {session.id} started "
                f"(mode={policy.mode.value}, threshold={policy.confidence_threshold}, "
                f"max risk={policy.max_risk_level.value})"
            )
            return await self._run_cycle(profile, session, transitions)

        return await self._with_timeout(run(), timeout)

    async def resume(
        self,
        tool_name: str,
        session_id: Optional[str],
        choice: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> LoopResult:
        """
        Continues a session from its persisted phase. From
        awaiting_user_approval a `choice` is required: 1 executes through the
        engine, 2 hands the commands to an external agent.
        """
        profile = self.profile_for(tool_name)
        if not session_id:
            raise MissingField("sessionId")

        async def run() -> LoopResult:
            session = await self._load(profile, session_id)
            if session.is_terminal:
                raise SessionTerminal(session.id, session.status.value)

            phase = session.phase
            transitions: List[LoopTransition] = []

            if phase == LoopPhase.AWAITING_USER_APPROVAL:
                return await self._resolve_approval(profile, session, choice, transitions)
            if phase == LoopPhase.INVESTIGATING:
                return await self._run_cycle(profile, session, transitions)
            if phase == LoopPhase.EXECUTING:
                return await self._execute_and_validate(profile, session, transitions)
            if phase == LoopPhase.VALIDATING:
                return await self._validate_and_settle(profile, session, transitions)
            return LoopResult(session, transitions, message="Session completed; call finish to close it.")

        return await self._with_timeout(run(), timeout)

    async def finish(self, tool_name: str, session_id: Optional[str]) -> LoopResult:
        """
        Terminal action. Idempotent: a second call reports `no_op` and does
        not repeat the release side effect.
        """
        profile = self.profile_for(tool_name)
        if not session_id:
            raise MissingField("sessionId")
        session = await self._load(profile, session_id)
        if session.status == SessionStatus.FINISHED:
            return LoopResult(session, message="Session already finished.", no_op=True)

        def close(s: Session):
            if s.status == SessionStatus.FINISHED:
                raise _AlreadyFinished()
            s.status = SessionStatus.FINISHED

        try:
            session = await self.engine.commit(session, close)
        except _AlreadyFinished:
            session = await self._load(profile, session_id)
            return LoopResult(session, message="Session already finished.", no_op=True)

        await self.executor.release(session.id)
        logger.info(f"{profile.name} session {session.id} finished")
        return LoopResult(session, message="Session finished.")

    # ==========================================================================
    # Cycle: investigate -> decide -> (execute -> validate)
    # ==========================================================================

    async def _run_cycle(
        self, profile: LoopProfile, session: Session, transitions: List[LoopTransition]
    ) -> LoopResult:
        session, final, forced = await self._investigate(profile, session, INVESTIGATION)
        investigation = session.investigation
        policy = session.policy or LoopPolicy()

        if forced:
            reason = (
                f"Investigation reached the limit of {self.config.max_iterations} iterations "
                f"without a conclusion; best-effort analysis reported with low confidence."
            )
            session = await self._enter(
                session,
                LoopPhase.AWAITING_USER_APPROVAL,
                {LoopPhase.INVESTIGATING},
                reason,
                transitions,
                extra=_record_gate(False, reason, reason),
            )
            return LoopResult(session, transitions, message=reason)

        if not investigation.proposed_actions:
            session = await self._enter(
                session,
                LoopPhase.SUCCESS,
                {LoopPhase.INVESTIGATING},
                "analysis complete; no remediation actions proposed",
                transitions,
            )
            return LoopResult(session, transitions, message="No remediation actions were proposed.")

        decision = decide(
            investigation.analysis,
            investigation.proposed_actions,
            policy.mode,
            policy.confidence_threshold,
            policy.max_risk_level,
        )
        logger.info(
            f"Execution decision for {session.id}: auto_execute={decision.auto_execute} ({decision.reason})"
        )

        if not decision.auto_execute:
            session = await self._enter(
                session,
                LoopPhase.AWAITING_USER_APPROVAL,
                {LoopPhase.INVESTIGATING},
                decision.reason,
                transitions,
                extra=_record_gate(False, decision.reason, decision.fallback_reason),
            )
            return LoopResult(session, transitions)

        session = await self._enter(
            session,
            LoopPhase.EXECUTING,
            {LoopPhase.INVESTIGATING},
            decision.reason,
            transitions,
            extra=_record_gate(True, decision.reason, None),
        )
        return await self._execute_and_validate(profile, session, transitions)

    async def _resolve_approval(
        self,
        profile: LoopProfile,
        session: Session,
        choice: Optional[int],
        transitions: List[LoopTransition],
    ) -> LoopResult:
        if choice is None:
            raise MissingField("choice")
        actions = session.investigation.proposed_actions if session.investigation else []
        if not actions:
            raise InvalidField("choice", "there are no proposed actions to act on")

        if choice == EXECUTE_VIA_ENGINE:
            def approve(s: Session):
                s.collected_data["approval"] = {"choice": EXECUTE_VIA_ENGINE, "cycle": s.cycles}

            session = await self._enter(
                session,
                LoopPhase.EXECUTING,
                {LoopPhase.AWAITING_USER_APPROVAL},
                "user approved execution via engine",
                transitions,
                extra=approve,
            )
            return await self._execute_and_validate(profile, session, transitions)

        if choice == HAND_OFF_TO_AGENT:
            commands = [a.command or a.description for a in actions]

            def hand_off(s: Session):
                if s.phase != LoopPhase.AWAITING_USER_APPROVAL:
                    raise StageMismatch(s.id, str(s.current_stage), LoopPhase.AWAITING_USER_APPROVAL.value)
                s.collected_data["handoff"] = {"commands": commands, "cycle": s.cycles}

            session = await self.engine.commit(session, hand_off)
            logger.info(f"Session {session.id}: {len(commands)} commands handed off to external agent")
            return LoopResult(
                session,
                transitions,
                message="Run the commands yourself, then start a new investigation to verify the fix.",
                handoff=commands,
            )

        raise InvalidField("choice", f"must be {EXECUTE_VIA_ENGINE} or {HAND_OFF_TO_AGENT}")

    async def _execute_and_validate(
        self, profile: LoopProfile, session: Session, transitions: List[LoopTransition]
    ) -> LoopResult:
        """
        Runs every proposed action in order without aborting on failure.
        Actions already recorded for this cycle (interrupted request) are
        not run again.
        Each action is claimed in the store before it runs, so concurrent
        requests never execute the same action twice; a claim left behind by
        a crashed request can be taken over once `action_lease` has passed.
        """
        actions = session.investigation.proposed_actions
        cycle = session.cycles
        start = len(session.records_for(cycle))
        claim_id = uuid.uuid4().hex

        for index in range(start, len(actions)):
            session = await self.engine.commit(
                session, _claim_action(index, cycle, claim_id, self.config.action_lease)
            )
            record = await self._run_action(index, actions[index], cycle)
            session = await self.engine.commit(session, _append_record(record, index, cycle))

        records = session.records_for(cycle)
        failed = len([r for r in records if not r.success])
        session = await self._enter(
            session,
            LoopPhase.VALIDATING,
            {LoopPhase.EXECUTING},
            f"{len(records)} actions executed ({failed} failed)",
            transitions,
        )
        return await self._validate_and_settle(profile, session, transitions)

    async def _validate_and_settle(
        self, profile: LoopProfile, session: Session, transitions: List[LoopTransition]
    ) -> LoopResult:
        session, final, forced = await self._investigate(profile, session, VALIDATION)
        cycle = session.cycles
        resolved = bool(final.issue_resolved) and not forced
        validation = ValidationResult(
            success=resolved, cycle=cycle, summary=final.root_cause, confidence=final.confidence
        )

        def settle(s: Session):
            s.validation = validation
            s.cycles = cycle + 1

        if resolved:
            session = await self._enter(
                session,
                LoopPhase.SUCCESS,
                {LoopPhase.VALIDATING},
                "validation confirmed the issue is resolved",
                transitions,
                extra=settle,
            )
            return LoopResult(session, transitions)

        inconclusive = ValidationInconclusive(
            f"Validation of cycle {cycle + 1} did not confirm the fix: {final.root_cause}"
        )
        logger.info(f"Session {session.id}: {inconclusive.message}")

        if cycle + 1 < self.config.max_cycles:
            def reinvestigate(s: Session):
                settle(s)
                s.investigation.analysis = None
                s.investigation.proposed_actions = []
                s.investigation.forced = False

            session = await self._enter(
                session,
                LoopPhase.INVESTIGATING,
                {LoopPhase.VALIDATING},
                "validation inconclusive; re-investigating",
                transitions,
                extra=reinvestigate,
            )
            return await self._run_cycle(profile, session, transitions)

        records = session.records_for(cycle)
        every_action_failed = bool(records) and all(not r.success for r in records)
        reason = (
            f"Validation inconclusive after {cycle + 1} cycles; "
            + ("every action failed" if every_action_failed else "further investigation needed")
        )

        def give_up(s: Session):
            settle(s)
            _record_gate(False, reason, reason)(s)

        target = LoopPhase.ERROR if every_action_failed else LoopPhase.AWAITING_USER_APPROVAL
        session = await self._enter(session, target, {LoopPhase.VALIDATING}, reason, transitions, extra=give_up)
        return LoopResult(session, transitions, message=reason)

    # ==========================================================================
    # Investigation pass (shared by investigation and validation)
    # ==========================================================================

    async def _investigate(
        self, profile: LoopProfile, session: Session, purpose: str
    ) -> Tuple[Session, FinalAnalysis, bool]:
        cap = (
            self.config.max_iterations
            if purpose == INVESTIGATION
            else self.config.validation_max_iterations
        )
        cycle = session.cycles

        while True:
            done = session.investigation.iterations_for(cycle, purpose)
            if len(done) >= cap:
                final = self._forced_analysis(done, cap)
                forced = True
                logger.warning(f"Session {session.id}: {purpose} reached {cap} iterations; forcing termination")
                break

            messages = self._transcript(profile, session, purpose, len(done) + 1, cap)
            decision = await self._ask_oracle(session, messages)
            if isinstance(decision, FinalAnalysis):
                final = decision
                forced = False
                logger.info(
                    f"Session {session.id}: {purpose} completed after {len(done)} iterations "
                    f"(confidence {final.confidence:.2f})"
                )
                break

            evidence, succeeded = await self._gather(decision)
            iteration = InvestigationIteration(
                step=len(done) + 1,
                cycle=cycle,
                purpose=purpose,
                tool_call=decision,
                evidence=evidence,
                succeeded=succeeded,
            )
            session = await self.engine.commit(session, _append_iteration(iteration))
            logger.debug(f"Session {session.id}: {purpose} step {iteration.step} recorded")

        if purpose == INVESTIGATION:
            def record_analysis(s: Session):
                s.investigation.analysis = Analysis(
                    root_cause=final.root_cause,
                    confidence=final.confidence,
                    factors=final.factors,
                )
                s.investigation.proposed_actions = list(final.actions)
                s.investigation.forced = forced

            session = await self.engine.commit(session, record_analysis)

        return session, final, forced

    def _forced_analysis(self, done: List[InvestigationIteration], cap: int) -> FinalAnalysis:
        """Best analysis available when the Oracle never concluded."""
        last = next((it.tool_call for it in reversed(done) if it.tool_call.analysis), None)
        return FinalAnalysis(
            root_cause=last.analysis if last else f"Investigation did not converge within {cap} iterations",
            confidence=min(last.confidence if last else 0.0, self.config.forced_confidence),
            factors=[f"Iteration limit of {cap} reached before the investigation completed"],
            actions=[],
            issue_resolved=False,
        )

    async def _ask_oracle(self, session: Session, messages: List[dict]) -> OracleDecision:
        """
        Retries transient Oracle failures with exponential backoff.
        Cancellation is never retried.
        """
        retrying = tenacity.AsyncRetrying(
            retry=tenacity.retry_if_exception_type(Exception),
            wait=tenacity.wait_exponential(multiplier=self.config.oracle_backoff, max=30),
            stop=tenacity.stop_after_attempt(self.config.oracle_max_retries),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._with_timeout(
                        self.oracle.decide(messages), self.config.oracle_timeout
                    )
        except Exception as e:
            logger.error(f"Oracle failed for session {session.id}: {e!r}")
            raise OracleUnavailable(
                f"Oracle unavailable after {self.config.oracle_max_retries} attempts: {e or type(e).__name__}"
            ) from e
        raise AssertionError("unreachable")

    async def _gather(self, call: ToolCallRequest) -> Tuple[str, bool]:
        """Runs one diagnostic. Failures become evidence; they never end the investigation."""
        if not is_read_only(call):
            logger.warning(f"Rejected unsafe diagnostic: {call.render()}")
            return (
                f"Rejected: '{call.operation}' is not a read-only operation. "
                "Use get, describe, logs, events, top, explain or add --dry-run.",
                False,
            )
        try:
            output = await self._with_timeout(
                self.executor.run_diagnostic(call), self.config.executor_timeout
            )
            return output[:_EVIDENCE_LIMIT], True
        except Exception as e:
            message = _describe_failure(e, self.config.executor_timeout)
            logger.warning(f"Diagnostic failed: kubectl {call.render()}: {message}")
            suggestion = error_suggestion(message)
            evidence = f"Error: {message}"
            if suggestion:
                evidence += f"\nSuggestion: {suggestion}"
            return evidence, False

    async def _run_action(self, index: int, action: ProposedAction, cycle: int) -> ExecutionRecord:
        action_id = f"action-{index + 1}"
        try:
            output = await self._with_timeout(
                self.executor.run_action(action), self.config.executor_timeout
            )
            logger.info(f"{action_id} succeeded: {action.command}")
            return ExecutionRecord(
                action_id=action_id, cycle=cycle, command=action.command, success=True, output=output
            )
        except Exception as e:
            message = _describe_failure(e, self.config.executor_timeout)
            logger.warning(f"{action_id} failed: {action.command}: {message}")
            return ExecutionRecord(
                action_id=action_id,
                cycle=cycle,
                command=action.command,
                success=False,
                output=getattr(e, "output", ""),
                error=message,
            )

    # ==========================================================================
    # Standard Helpers
    # ==========================================================================

    def _transcript(
        self, profile: LoopProfile, session: Session, purpose: str, iteration: int, cap: int
    ) -> List[dict]:
        investigation = session.investigation
        if purpose == INVESTIGATION:
            template = profile.investigation_template
            previous = [it for it in investigation.iterations if it.purpose == INVESTIGATION]
        else:
            template = profile.validation_template
            previous = investigation.iterations_for(session.cycles, VALIDATION)

        prompt = render(
            template,
            issue=investigation.issue,
            initial_context=investigation.initial_context,
            iteration=iteration,
            max_iterations=cap,
            previous_iterations=[_iteration_view(it) for it in previous],
            results=[_record_view(r) for r in session.results],
            analysis=investigation.analysis,
        )
        logger.debug(f"Built {purpose} prompt for {session.id} ({len(prompt)} chars)")
        return [
            {"role": "system", "content": prompt},
            {"role": "user", "content": "Decide the next step."},
        ]

    async def _enter(
        self,
        session: Session,
        to_phase: LoopPhase,
        allowed_from: Set[LoopPhase],
        reason: str,
        transitions: List[LoopTransition],
        extra: Optional[Callable[[Session], None]] = None,
    ) -> Session:
        """Commits a phase change; the guard runs against the freshest stored copy."""
        from_phase = session.phase

        def mutate(s: Session):
            if s.phase not in allowed_from:
                raise StageMismatch(s.id, str(s.current_stage), to_phase.value)
            s.current_stage = StageToken(to_phase.value)
            s.status = _STATUS_FOR_PHASE[to_phase]
            if extra:
                extra(s)

        session = await self.engine.commit(session, mutate)
        transitions.append(LoopTransition(from_phase, to_phase, reason))
        logger.info(f"Session {session.id}: {from_phase.value if from_phase else '-'} -> {to_phase.value} ({reason})")
        return session

    async def _load(self, profile: LoopProfile, session_id: str) -> Session:
        session = await self.engine.load(session_id)
        if session.tool_name != profile.name or session.investigation is None:
            raise InvalidField("sessionId", f"session belongs to tool '{session.tool_name}'")
        return session

    def _policy(
        self,
        mode: Optional[str],
        confidence_threshold: Optional[float],
        max_risk_level: Optional[str],
    ) -> LoopPolicy:
        try:
            return LoopPolicy(
                mode=ExecutionMode(mode) if mode else ExecutionMode.MANUAL,
                confidence_threshold=(
                    confidence_threshold
                    if confidence_threshold is not None
                    else self.config.default_confidence_threshold
                ),
                max_risk_level=(
                    RiskLevel(max_risk_level) if max_risk_level else self.config.default_max_risk_level
                ),
            )
        except ValueError as e:
            raise InvalidField("policy", str(e).splitlines()[0])

    @staticmethod
    async def _with_timeout(operation: Awaitable[T], timeout: Optional[float]) -> T:
        if timeout is None:
            return await operation
        return await asyncio.wait_for(operation, timeout)


def _record_gate(auto_execute: bool, reason: str, fallback_reason: Optional[str]):
    def record(s: Session):
        s.collected_data["gate"] = {
            "autoExecute": auto_execute,
            "reason": reason,
            "fallbackReason": fallback_reason,
            "cycle": s.cycles,
        }

    return record


def _append_iteration(iteration: InvestigationIteration):
    def append(s: Session):
        recorded = s.investigation.iterations_for(iteration.cycle, iteration.purpose)
        if len(recorded) != iteration.step - 1:
            raise Conflict(f"Session {s.id}: {iteration.purpose} step {iteration.step} already recorded")
        s.investigation.iterations.append(iteration)

    return append


def _claim_action(index: int, cycle: int, claim_id: str, lease: float):
    def claim(s: Session):
        action_id = f"action-{index + 1}"
        if s.phase != LoopPhase.EXECUTING:
            raise StageMismatch(s.id, str(s.current_stage), LoopPhase.EXECUTING.value)
        if len(s.records_for(cycle)) != index:
            raise Conflict(f"Session {s.id}: {action_id} already recorded")
        held = s.collected_data.get(IN_FLIGHT)
        if (
            held
            and held["claimId"] != claim_id
            and (held["cycle"], held["index"]) == (cycle, index)
            and utc_now() - datetime.fromisoformat(held["claimedAt"]) < timedelta(seconds=lease)
        ):
            raise Conflict(f"Session {s.id}: {action_id} is being executed by another request")
        s.collected_data[IN_FLIGHT] = {
            "cycle": cycle,
            "index": index,
            "claimId": claim_id,
            "claimedAt": utc_now().isoformat(),
        }

    return claim


def _append_record(record: ExecutionRecord, index: int, cycle: int):
    def append(s: Session):
        if len(s.records_for(cycle)) != index:
            raise Conflict(f"Session {s.id}: {record.action_id} already recorded")
        s.results.append(record)
        s.collected_data.pop(IN_FLIGHT, None)

    return append


def _describe_failure(error: Exception, timeout: Optional[float]) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return f"timed out after {timeout}s"
    return str(error) or type(error).__name__


def _iteration_view(iteration: InvestigationIteration) -> Dict[str, Any]:
    return {
        "step": iteration.step,
        "cycle": iteration.cycle,
        "command": iteration.tool_call.render(),
        "rationale": iteration.tool_call.rationale,
        "succeeded": iteration.succeeded,
        "evidence": iteration.evidence[:_EVIDENCE_LIMIT],
    }


def _record_view(record: ExecutionRecord) -> Dict[str, Any]:
    return {
        "action_id": record.action_id,
        "command": record.command,
        "success": record.success,
        "error": record.error,
    }
