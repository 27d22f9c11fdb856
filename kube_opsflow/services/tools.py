"""
Tool Service - Application Orchestration Layer

This service is the entry point for every tool request. It resolves the
tool, routes wizard tools to the WorkflowEngine and investigative tools to
the AgenticLoopController, and wraps whatever comes back in the response
envelope:

    {success, result, meta: {timestamp, requestId, version}}

Transport-level problems (unknown tool) answer `success: false`. Domain
failures are a successful transport call carrying
`result: {success: false, error: {code, message}}`.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .. import __version__
from ..domain.models import ToolDescriptor
from ..execution.agentic import AgenticLoopController
from ..execution.engine import WorkflowEngine
from ..repositories.pattern import PatternRepository
from ..repositories.session import SessionFilter
from ..state.models import utc_now
from ..tools.pattern_wizard import TOOL_NAME as PATTERN_WIZARD
from .exceptions import InvalidField, OrchestratorError, RequestTimeout, ToolNotFound

logger = logging.getLogger(__name__)

LOOP_ACTIONS = ("start", "choose", "continue", "finish")


def envelope(
    success: bool,
    request_id: Optional[str] = None,
    result: Optional[Dict[str, Any]] = None,
    error: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": success}
    if result is not None:
        body["result"] = result
    if error is not None:
        body["error"] = error
    body["meta"] = {
        "timestamp": utc_now().isoformat().replace("+00:00", "Z"),
        "requestId": request_id or uuid.uuid4().hex,
        "version": __version__,
    }
    return body


class ToolRequest(BaseModel):
    """Generic request contract shared by every tool."""

    model_config = ConfigDict(populate_by_name=True)

    tool: str
    session_id: Optional[str] = Field(None, alias="sessionId")
    stage: Optional[str] = None
    action: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class ToolService:
    def __init__(
        self,
        engine: WorkflowEngine,
        controller: AgenticLoopController,
        patterns: Optional[PatternRepository] = None,
        web_ui_base_url: Optional[str] = None,
        request_timeout: Optional[float] = None,
    ):
        self.engine = engine
        self.controller = controller
        self.patterns = patterns
        self.web_ui_base_url = web_ui_base_url.rstrip("/") if web_ui_base_url else None
        self.request_timeout = request_timeout

    def list_tools(self) -> List[ToolDescriptor]:
        descriptors = [graph.describe() for graph in self.engine.graphs.values()]
        descriptors.extend(profile.describe() for profile in self.controller.profiles.values())
        return sorted(descriptors, key=lambda d: d.name)

    async def handle(self, request: ToolRequest) -> Dict[str, Any]:
        """Runs one request and always answers with an envelope."""
        request_id = uuid.uuid4().hex
        logger.info(f"[{request_id}] {request.tool} session={request.session_id} stage={request.stage} action={request.action}")
        try:
            result = await self.dispatch(request)
        except asyncio.TimeoutError:
            logger.warning(f"[{request_id}] {request.tool} timed out after {self.request_timeout}s")
            result = {"success": False, "error": RequestTimeout(self.request_timeout).to_dict()}
        except ToolNotFound as e:
            logger.warning(f"[{request_id}] {e.message}")
            return envelope(False, request_id, error=e.to_dict())
        except OrchestratorError as e:
            logger.info(f"[{request_id}] {request.tool} failed: {e.code}: {e.message}")
            result = {"success": False, "error": e.to_dict()}
        return envelope(True, request_id, result=result)

    async def dispatch(self, request: ToolRequest) -> Dict[str, Any]:
        if request.tool in self.controller.profiles:
            return await self._run_loop(request)

        self.engine.graph_for(request.tool)
        if request.tool == PATTERN_WIZARD and request.action in ("get", "list"):
            return self._pattern_query(request)

        result = await self.engine.step(
            request.tool,
            request.session_id,
            request.stage,
            request.payload,
            timeout=self.request_timeout,
        )
        return result.to_dict()

    async def get_session_document(self, session_id: str) -> Dict[str, Any]:
        session = await self.engine.load(session_id)
        return session.to_document()

    async def list_sessions(self, query: SessionFilter) -> List[Dict[str, Any]]:
        return [session.to_document() for session in await self.engine.store.list(query)]

    async def expire_sessions(self) -> int:
        removed = await self.engine.store.expire(utc_now())
        if removed:
            logger.info(f"Expired {removed} sessions")
        return removed

    # ==========================================================================
    # Investigative tools
    # ==========================================================================

    async def _run_loop(self, request: ToolRequest) -> Dict[str, Any]:
        payload = request.payload
        action = request.action or self._infer_action(request)
        if action not in LOOP_ACTIONS:
            raise InvalidField("action", f"must be one of {', '.join(LOOP_ACTIONS)}")

        if action == "start":
            result = await self.controller.start(
                request.tool,
                payload.get("issue"),
                context=payload.get("context"),
                mode=payload.get("mode"),
                confidence_threshold=payload.get("confidenceThreshold"),
                max_risk_level=payload.get("maxRiskLevel"),
                timeout=self.request_timeout,
            )
        elif action == "finish":
            result = await self.controller.finish(request.tool, request.session_id)
        else:
            result = await self.controller.resume(
                request.tool,
                request.session_id,
                choice=self._choice(payload.get("choice")),
                timeout=self.request_timeout,
            )

        body = result.to_dict()
        if self.web_ui_base_url:
            body["visualizationUrl"] = f"{self.web_ui_base_url}/v/{result.session.id}"
        return body

    @staticmethod
    def _infer_action(request: ToolRequest) -> str:
        if request.session_id is None:
            return "start"
        if request.payload.get("choice") is not None:
            return "choose"
        return "continue"

    @staticmethod
    def _choice(value: Any) -> Optional[int]:
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise InvalidField("choice", f"expected a number, got {value!r}")

    # ==========================================================================
    # Pattern queries
    # ==========================================================================

    def _pattern_query(self, request: ToolRequest) -> Dict[str, Any]:
        if self.patterns is None:
            raise InvalidField("action", "no pattern repository is configured")
        if request.action == "get":
            pattern = self.patterns.get(request.payload.get("id"))
            return {"success": True, "pattern": pattern.model_dump(mode="json")}
        limit = request.payload.get("limit", 50)
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidField("limit", f"expected a positive integer, got {limit!r}")
        patterns = self.patterns.list(limit=limit)
        return {
            "success": True,
            "patterns": [p.model_dump(mode="json") for p in patterns],
            "count": len(patterns),
        }
