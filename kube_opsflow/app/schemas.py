"""
API Layer - Request/Response Schemas

Pydantic models for API request and response validation.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..services.resync import ClusterResource, ResourceRef


class ToolCallBody(BaseModel):
    """Body of POST /api/v1/tools/{tool}; the tool comes from the path."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(None, alias="sessionId")
    stage: Optional[str] = None
    action: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class ToolRead(BaseModel):
    name: str
    prefix: str
    kind: str
    description: str
    stages: List[str]


class ToolListResponse(BaseModel):
    tools: List[ToolRead]
    count: int


class ResourceSyncBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    upserts: List[ClusterResource] = Field(default_factory=list)
    deletes: List[ResourceRef] = Field(default_factory=list)
    is_resync: bool = Field(False, alias="isResync")
