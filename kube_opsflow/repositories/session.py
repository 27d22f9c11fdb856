import asyncio
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, update
from sqlalchemy.engine import Engine
from sqlmodel import Session as DBSession
from sqlmodel import select

from ..domain.models import StageToken
from ..infrastructure.database.tables import SessionDBModel
from ..services.exceptions import InvalidField, UnknownSession, VersionConflict
from ..state.models import Session, SessionStatus, utc_now

logger = logging.getLogger(__name__)

# A mutation edits a private copy of the session in place.
Mutation = Callable[[Session], None]

MAX_LIST_LIMIT = 500


@dataclass
class SessionFilter:
    """Bounded listing query. Listing never replaces direct lookup by id."""

    tool_name: Optional[str] = None
    status: Optional[SessionStatus] = None
    updated_before: Optional[datetime] = None
    limit: int = 50

    def __post_init__(self):
        if self.limit < 1 or self.limit > MAX_LIST_LIMIT:
            raise InvalidField("limit", f"must be between 1 and {MAX_LIST_LIMIT}")


def generate_session_id(prefix: str) -> str:
    """Pattern: {prefix}-{epoch millis}-{8 hex chars}"""
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def next_timestamp(previous: datetime) -> datetime:
    """`updated_at` must strictly increase, even if the clock has not."""
    now = utc_now()
    if now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def apply_mutation(current: Session, mutation: Mutation) -> Session:
    """
    Runs `mutation` on a deep copy and stamps the new version/timestamp.
    Identity fields are restored so a mutation can never rename a session.
    """
    draft = current.model_copy(deep=True)
    mutation(draft)
    draft.id = current.id
    draft.tool_name = current.tool_name
    draft.created_at = current.created_at
    draft.version = current.version + 1
    draft.updated_at = next_timestamp(current.updated_at)
    return draft


class SessionStore(ABC):
    """
    Defines how the application accesses sessions.
    This allows us to change how data is stored (Memory -> SQL) without
    changing the WorkflowEngine or the AgenticLoopController.
    """

    @abstractmethod
    async def create(
        self,
        tool_name: str,
        initial_stage: StageToken,
        prefix: str,
        collected_data: Optional[Dict[str, Any]] = None,
    ) -> Session:
        """Creates a new session with a unique, tool-prefixed ID."""
        pass

    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        """Retrieves a session by ID."""
        pass

    @abstractmethod
    async def update(
        self, session_id: str, expected_version: int, mutation: Mutation
    ) -> Session:
        """
        Compare-and-swap update.
        Raises VersionConflict if the stored version differs from
        `expected_version`, UnknownSession if the session does not exist.
        Returns only after the new state is durably stored.
        """
        pass

    @abstractmethod
    async def list(self, query: SessionFilter) -> List[Session]:
        """Bounded listing, newest first."""
        pass

    @abstractmethod
    async def expire(self, now: datetime) -> int:
        """Removes sessions idle for longer than the TTL. Returns the count."""
        pass

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Deletes a session. Returns True if found and deleted."""
        pass


class InMemorySessionStore(SessionStore):
    """
    Uses an in-memory dictionary of JSON documents for testing/dev purposes.
    Stored state is serialized so callers never share objects with the store.
    """

    def __init__(self, ttl_seconds: int = 86400):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._store: Dict[str, str] = {}
        self._lock = threading.Lock()

    async def create(
        self,
        tool_name: str,
        initial_stage: StageToken,
        prefix: str,
        collected_data: Optional[Dict[str, Any]] = None,
    ) -> Session:
        session = Session(
            id=generate_session_id(prefix),
            tool_name=tool_name,
            current_stage=initial_stage,
            collected_data=collected_data or {},
        )
        with self._lock:
            if session.id in self._store:
                raise InvalidField("sessionId", f"{session.id} already exists")
            self._store[session.id] = session.model_dump_json()
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            raw = self._store.get(session_id)
        if raw is None:
            return None
        return Session.model_validate_json(raw)

    async def update(
        self, session_id: str, expected_version: int, mutation: Mutation
    ) -> Session:
        with self._lock:
            raw = self._store.get(session_id)
            if raw is None:
                raise UnknownSession(session_id)
            current = Session.model_validate_json(raw)
            if current.version != expected_version:
                raise VersionConflict(session_id, expected_version, current.version)
            updated = apply_mutation(current, mutation)
            self._store[session_id] = updated.model_dump_json()
        return updated

    async def list(self, query: SessionFilter) -> List[Session]:
        with self._lock:
            sessions = [Session.model_validate_json(raw) for raw in self._store.values()]
        if query.tool_name:
            sessions = [s for s in sessions if s.tool_name == query.tool_name]
        if query.status:
            sessions = [s for s in sessions if s.status == query.status]
        if query.updated_before:
            sessions = [s for s in sessions if s.updated_at < query.updated_before]
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return sessions[: query.limit]

    async def expire(self, now: datetime) -> int:
        threshold = now - self.ttl
        with self._lock:
            stale = [
                session_id
                for session_id, raw in self._store.items()
                if Session.model_validate_json(raw).updated_at < threshold
            ]
            for session_id in stale:
                del self._store[session_id]
        if stale:
            logger.info(f"Expired {len(stale)} sessions idle since before {threshold.isoformat()}")
        return len(stale)

    async def delete(self, session_id: str) -> bool:
        with self._lock:
            if session_id in self._store:
                del self._store[session_id]
                return True
        return False


class SQLSessionStore(SessionStore):
    """
    SQL storage (PostgreSQL JSONB in production, SQLite locally).

    The compare-and-swap is a single guarded statement:
    UPDATE sessions SET ... WHERE session_id = :id AND version = :expected.
    Zero affected rows means another writer won.
    """

    def __init__(self, engine: Engine, ttl_seconds: int = 86400):
        self.engine = engine
        self.ttl = timedelta(seconds=ttl_seconds)

    async def create(
        self,
        tool_name: str,
        initial_stage: StageToken,
        prefix: str,
        collected_data: Optional[Dict[str, Any]] = None,
    ) -> Session:
        session = Session(
            id=generate_session_id(prefix),
            tool_name=tool_name,
            current_stage=initial_stage,
            collected_data=collected_data or {},
        )
        await asyncio.to_thread(self._insert, session)
        return session

    def _insert(self, session: Session):
        with DBSession(self.engine) as db:
            if db.get(SessionDBModel, session.id) is not None:
                raise InvalidField("sessionId", f"{session.id} already exists")
            db.add(
                SessionDBModel(
                    session_id=session.id,
                    tool_name=session.tool_name,
                    status=session.status.value,
                    version=session.version,
                    state=session.model_dump(mode="json"),
                    created_at=session.created_at,
                    updated_at=session.updated_at,
                )
            )
            db.commit()

    async def get(self, session_id: str) -> Optional[Session]:
        return await asyncio.to_thread(self._get, session_id)

    def _get(self, session_id: str) -> Optional[Session]:
        with DBSession(self.engine) as db:
            row = db.get(SessionDBModel, session_id)
            if row is None:
                return None
            return self._to_domain(row)

    async def update(
        self, session_id: str, expected_version: int, mutation: Mutation
    ) -> Session:
        return await asyncio.to_thread(self._update, session_id, expected_version, mutation)

    def _update(self, session_id: str, expected_version: int, mutation: Mutation) -> Session:
        with DBSession(self.engine) as db:
            row = db.get(SessionDBModel, session_id)
            if row is None:
                raise UnknownSession(session_id)
            current = self._to_domain(row)
            if current.version != expected_version:
                raise VersionConflict(session_id, expected_version, current.version)

            updated = apply_mutation(current, mutation)
            statement = (
                update(SessionDBModel)
                .where(SessionDBModel.session_id == session_id)
                .where(SessionDBModel.version == expected_version)
                .values(
                    status=updated.status.value,
                    version=updated.version,
                    state=updated.model_dump(mode="json"),
                    updated_at=updated.updated_at,
                )
            )
            result = db.exec(statement)
            if result.rowcount != 1:
                db.rollback()
                raise VersionConflict(session_id, expected_version, None)
            db.commit()
            return updated

    async def list(self, query: SessionFilter) -> List[Session]:
        return await asyncio.to_thread(self._list, query)

    def _list(self, query: SessionFilter) -> List[Session]:
        with DBSession(self.engine) as db:
            statement = select(SessionDBModel)
            if query.tool_name:
                statement = statement.where(SessionDBModel.tool_name == query.tool_name)
            if query.status:
                statement = statement.where(SessionDBModel.status == query.status.value)
            if query.updated_before:
                statement = statement.where(SessionDBModel.updated_at < query.updated_before)
            statement = statement.order_by(SessionDBModel.updated_at.desc()).limit(query.limit)
            return [self._to_domain(row) for row in db.exec(statement).all()]

    async def expire(self, now: datetime) -> int:
        return await asyncio.to_thread(self._expire, now)

    def _expire(self, now: datetime) -> int:
        threshold = now - self.ttl
        with DBSession(self.engine) as db:
            result = db.exec(delete(SessionDBModel).where(SessionDBModel.updated_at < threshold))
            db.commit()
            count = result.rowcount or 0
        if count:
            logger.info(f"Expired {count} sessions idle since before {threshold.isoformat()}")
        return count

    async def delete(self, session_id: str) -> bool:
        return await asyncio.to_thread(self._delete, session_id)

    def _delete(self, session_id: str) -> bool:
        with DBSession(self.engine) as db:
            row = db.get(SessionDBModel, session_id)
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True

    @staticmethod
    def _to_domain(row: SessionDBModel) -> Session:
        # Deserialize the JSON blob back into the Pydantic domain model.
        # The version column is authoritative.
        session = Session.model_validate(row.state)
        session.version = row.version
        return session
