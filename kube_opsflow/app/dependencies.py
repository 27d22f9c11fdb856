"""
Composition root.

Each collaborator (session store, pattern repository, Oracle, kubectl
executor, engine, loop controller, services) is built once per process by an
@lru_cache provider; FastAPI resolves the chain through Depends, so every
request sees the same session store.

Tests override `get_tool_service` / `get_resync_service` through
`app.dependency_overrides`.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.engine import Engine

from ..config import get_settings
from ..domain.models import RiskLevel
from ..execution.actions import ActionExecutor, KubectlActionExecutor
from ..execution.agentic import AgenticLoopController, LoopConfig
from ..execution.engine import WorkflowEngine
from ..infrastructure.database.connection import create_db_engine
from ..llm.adapters.openai_adapter import OpenAIOracle
from ..llm.interface import Oracle
from ..repositories.pattern import InMemoryPatternRepository, PatternRepository
from ..repositories.session import InMemorySessionStore, SessionStore, SQLSessionStore
from ..services.resync import InMemoryResourceRepository, ResourceSyncService
from ..services.tools import ToolService
from ..tools import loop_profiles, wizard_graphs


@lru_cache()
def get_db_engine() -> Engine:
    return create_db_engine(get_settings().DATABASE_URL)


@lru_cache()
def get_session_store() -> SessionStore:
    settings = get_settings()
    if settings.SESSION_BACKEND == "memory":
        return InMemorySessionStore(ttl_seconds=settings.SESSION_TTL_SECONDS)
    return SQLSessionStore(get_db_engine(), ttl_seconds=settings.SESSION_TTL_SECONDS)


@lru_cache()
def get_pattern_repository() -> PatternRepository:
    return InMemoryPatternRepository()


@lru_cache()
def get_oracle() -> Oracle:
    settings = get_settings()
    return OpenAIOracle(
        api_key=settings.OPENAI_API_KEY,
        model_name=settings.OPENAI_MODEL,
        temperature=settings.LLM_TEMPERATURE,
    )


@lru_cache()
def get_executor() -> ActionExecutor:
    return KubectlActionExecutor(binary=get_settings().KUBECTL_BINARY)


@lru_cache()
def get_workflow_engine(
    store: SessionStore = Depends(get_session_store),
    patterns: PatternRepository = Depends(get_pattern_repository),
) -> WorkflowEngine:
    return WorkflowEngine(store, wizard_graphs(patterns))


@lru_cache()
def get_loop_controller(
    engine: WorkflowEngine = Depends(get_workflow_engine),
    oracle: Oracle = Depends(get_oracle),
    executor: ActionExecutor = Depends(get_executor),
) -> AgenticLoopController:
    settings = get_settings()
    config = LoopConfig(
        max_iterations=settings.MAX_ITERATIONS,
        validation_max_iterations=settings.VALIDATION_MAX_ITERATIONS,
        max_cycles=settings.MAX_CYCLES,
        forced_confidence=settings.FORCED_CONFIDENCE,
        oracle_max_retries=settings.ORACLE_MAX_RETRIES,
        oracle_timeout=settings.ORACLE_TIMEOUT_SECONDS,
        oracle_backoff=settings.ORACLE_BACKOFF_SECONDS,
        executor_timeout=settings.EXECUTOR_TIMEOUT_SECONDS,
        action_lease=settings.ACTION_LEASE_SECONDS,
        default_confidence_threshold=settings.DEFAULT_CONFIDENCE_THRESHOLD,
        default_max_risk_level=RiskLevel(settings.DEFAULT_MAX_RISK_LEVEL),
    )
    return AgenticLoopController(engine, oracle, executor, loop_profiles(), config)


@lru_cache()
def get_tool_service(
    engine: WorkflowEngine = Depends(get_workflow_engine),
    controller: AgenticLoopController = Depends(get_loop_controller),
    patterns: PatternRepository = Depends(get_pattern_repository),
) -> ToolService:
    return ToolService(
        engine=engine,
        controller=controller,
        patterns=patterns,
        web_ui_base_url=get_settings().WEB_UI_BASE_URL,
        request_timeout=get_settings().REQUEST_TIMEOUT_SECONDS,
    )


@lru_cache()
def get_resync_service() -> ResourceSyncService:
    return ResourceSyncService(InMemoryResourceRepository())
