import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import get_settings
from ..infrastructure.database.connection import init_db
from ..repositories.session import SessionFilter
from ..services.exceptions import OrchestratorError, UnknownSession
from ..services.resync import ResourceSyncService
from ..services.tools import ToolRequest, ToolService, envelope
from ..state.models import SessionStatus, utc_now
from .dependencies import get_db_engine, get_resync_service, get_session_store, get_tool_service
from .schemas import ResourceSyncBody, ToolCallBody, ToolListResponse, ToolRead

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.SESSION_BACKEND == "sql":
        init_db(get_db_engine())
    removed = await get_session_store().expire(utc_now())
    logger.info(f"Session store ready ({settings.SESSION_BACKEND}); expired {removed} stale sessions")
    yield
    if settings.SESSION_BACKEND == "sql":
        get_db_engine().dispose()


app = FastAPI(title="Kube OpsFlow", lifespan=lifespan)


def error_response(http_status: int, code: str, message: str, details=None) -> JSONResponse:
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=http_status, content=envelope(False, error=error))


# --- Transport errors ---

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        "Request body failed validation",
        jsonable_encoder(exc.errors()),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        return error_response(
            exc.status_code, "METHOD_NOT_ALLOWED", f"Method {request.method} is not allowed on {request.url.path}"
        )
    return error_response(exc.status_code, "HTTP_ERROR", str(exc.detail))


# --- Endpoints ---

@app.get("/api/v1/tools")
def list_tools(service: ToolService = Depends(get_tool_service)):
    """Lists every registered tool."""
    tools = [ToolRead(**asdict(descriptor)) for descriptor in service.list_tools()]
    return envelope(True, result=ToolListResponse(tools=tools, count=len(tools)).model_dump())


@app.post("/api/v1/tools/{tool}")
async def call_tool(
    tool: str,
    body: ToolCallBody,
    service: ToolService = Depends(get_tool_service),
):
    request = ToolRequest(
        tool=tool,
        session_id=body.session_id,
        stage=body.stage,
        action=body.action,
        payload=body.payload,
    )
    response = await service.handle(request)
    if not response["success"]:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=response)
    return response


@app.get("/api/v1/sessions/{session_id}")
async def get_session(session_id: str, service: ToolService = Depends(get_tool_service)):
    """
    Retrieves the persisted session document.
    """
    try:
        document = await service.get_session_document(session_id)
    except UnknownSession as e:
        return error_response(status.HTTP_404_NOT_FOUND, e.code, e.message)
    return envelope(True, result=document)


@app.get("/api/v1/sessions")
async def list_sessions(
    tool: Optional[str] = None,
    session_status: Optional[SessionStatus] = Query(None, alias="status"),
    limit: int = 50,
    service: ToolService = Depends(get_tool_service),
):
    try:
        query = SessionFilter(tool_name=tool, status=session_status, limit=limit)
    except OrchestratorError as e:
        return error_response(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", e.message)
    sessions = await service.list_sessions(query)
    return envelope(True, result={"sessions": sessions, "count": len(sessions)})


@app.post("/api/v1/resources/sync")
def sync_resources(
    body: ResourceSyncBody,
    service: ResourceSyncService = Depends(get_resync_service),
):
    result = service.sync(body.upserts, body.deletes, is_resync=body.is_resync)
    return envelope(True, result={"success": True, **result})
