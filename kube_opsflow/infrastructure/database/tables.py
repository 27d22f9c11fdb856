"""
Database Table Definitions.

This module defines the SQL schema using SQLModel.
We use the 'DBModel' suffix to distinguish these persistence models
from the Pydantic domain models (Session, Investigation).
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import JSON, Column, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from ...state.models import utc_now

# JSONB on Postgres, plain JSON everywhere else (SQLite in tests and local dev).
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class SessionDBModel(SQLModel, table=True):
    """
    Persistence model for orchestrator Sessions.
    Maps 1-to-1 with the 'sessions' table.
    """

    __tablename__ = "sessions"

    session_id: str = Field(primary_key=True, index=True)
    tool_name: str = Field(index=True)
    status: str = Field(index=True)

    # Optimistic concurrency token; every UPDATE is guarded by it.
    version: int = Field(default=1)

    # The entire Session (stage, collected data, investigation, results) as a JSON blob.
    state: Dict[str, Any] = Field(sa_column=Column(JSONDocument, nullable=False))

    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
