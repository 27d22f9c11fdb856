import re
from datetime import timedelta

import pytest

from kube_opsflow.domain.models import StageToken
from kube_opsflow.infrastructure.database.connection import create_db_engine, init_db
from kube_opsflow.repositories.session import (
    InMemorySessionStore,
    SessionFilter,
    SQLSessionStore,
    generate_session_id,
)
from kube_opsflow.services.exceptions import InvalidField, UnknownSession, VersionConflict
from kube_opsflow.state.models import SessionStatus, utc_now


@pytest.fixture(params=["memory", "sql"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemorySessionStore(ttl_seconds=60)
    engine = create_db_engine(f"sqlite:///{tmp_path / 'sessions.db'}")
    init_db(engine)
    return SQLSessionStore(engine, ttl_seconds=60)


def test_session_id_format() -> None:
    """Ids are {prefix}-{millis}-{8 hex}."""
    assert re.fullmatch(r"rem-\d{13}-[0-9a-f]{8}", generate_session_id("rem"))


@pytest.mark.asyncio
async def test_create_and_get(any_store) -> None:
    session = await any_store.create("patternWizard", StageToken("description"), "pattern")
    loaded = await any_store.get(session.id)
    assert loaded == session
    assert loaded.version == 1
    assert loaded.status == SessionStatus.ACTIVE


@pytest.mark.asyncio
async def test_get_unknown_returns_none(any_store) -> None:
    assert await any_store.get("rem-0-deadbeef") is None


@pytest.mark.asyncio
async def test_update_bumps_version_and_timestamp(any_store) -> None:
    session = await any_store.create("recommend", StageToken("answerQuestion", "required"), "sol")

    def answer(s):
        s.collected_data["answerQuestion:required"] = {"name": "db"}

    updated = await any_store.update(session.id, 1, answer)
    assert updated.version == 2
    assert updated.updated_at > session.updated_at
    assert updated.current_stage == StageToken("answerQuestion", "required")

    stored = await any_store.get(session.id)
    assert stored.collected_data == {"answerQuestion:required": {"name": "db"}}


@pytest.mark.asyncio
async def test_stale_version_is_rejected(any_store) -> None:
    """Two writers on the same version: exactly one commits."""
    session = await any_store.create("remediate", StageToken("investigating"), "rem")

    def first(s):
        s.collected_data["writer"] = "first"

    def second(s):
        s.collected_data["writer"] = "second"

    await any_store.update(session.id, 1, first)
    with pytest.raises(VersionConflict):
        await any_store.update(session.id, 1, second)

    stored = await any_store.get(session.id)
    assert stored.collected_data == {"writer": "first"}
    assert stored.version == 2


@pytest.mark.asyncio
async def test_failing_mutation_leaves_record_untouched(any_store) -> None:
    session = await any_store.create("remediate", StageToken("investigating"), "rem")

    def broken(s):
        s.collected_data["half"] = True
        raise ValueError("mutation failed")

    with pytest.raises(ValueError):
        await any_store.update(session.id, 1, broken)
    assert await any_store.get(session.id) == session


@pytest.mark.asyncio
async def test_mutation_cannot_rename_session(any_store) -> None:
    session = await any_store.create("remediate", StageToken("investigating"), "rem")

    def rename(s):
        s.id = "other"
        s.tool_name = "recommend"

    updated = await any_store.update(session.id, 1, rename)
    assert updated.id == session.id
    assert updated.tool_name == "remediate"


@pytest.mark.asyncio
async def test_update_unknown_session(any_store) -> None:
    with pytest.raises(UnknownSession):
        await any_store.update("rem-0-00000000", 1, lambda s: None)


@pytest.mark.asyncio
async def test_list_is_filtered_and_bounded(any_store) -> None:
    for _ in range(3):
        await any_store.create("remediate", StageToken("investigating"), "rem")
    await any_store.create("recommend", StageToken("chooseSolution"), "sol")

    remediations = await any_store.list(SessionFilter(tool_name="remediate", limit=2))
    assert len(remediations) == 2
    assert all(s.tool_name == "remediate" for s in remediations)
    assert remediations[0].updated_at >= remediations[1].updated_at


def test_list_limit_is_validated() -> None:
    with pytest.raises(InvalidField):
        SessionFilter(limit=0)
    with pytest.raises(InvalidField):
        SessionFilter(limit=501)


@pytest.mark.asyncio
async def test_expire_removes_idle_sessions(any_store) -> None:
    session = await any_store.create("remediate", StageToken("investigating"), "rem")

    assert await any_store.expire(utc_now()) == 0
    assert await any_store.expire(utc_now() + timedelta(seconds=120)) == 1
    assert await any_store.get(session.id) is None


@pytest.mark.asyncio
async def test_delete(any_store) -> None:
    session = await any_store.create("remediate", StageToken("investigating"), "rem")
    assert await any_store.delete(session.id) is True
    assert await any_store.delete(session.id) is False


@pytest.mark.asyncio
async def test_timestamps_are_timezone_aware(any_store) -> None:
    session = await any_store.create("recommend", StageToken("chooseSolution"), "sol")

    def touch(s):
        s.collected_data["touched"] = True

    updated = await any_store.update(session.id, session.version, touch)
    loaded = await any_store.get(session.id)

    assert session.created_at.tzinfo is not None
    assert updated.updated_at.tzinfo is not None
    assert loaded.updated_at == updated.updated_at
    assert loaded.created_at == session.created_at
