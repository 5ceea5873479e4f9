import pytest
from sqlalchemy import update

from ritual_engine.errors import ConflictRetryExhausted, VersionConflict
from ritual_engine.models import Ritual, RitualCompletion
from ritual_engine.services.derived_state import bump_version, refresh_derived_state, retry_on_conflict

from conftest import ritual_payload

pytestmark = pytest.mark.asyncio


async def _bump_elsewhere(database, ritual_id):
    async with database.session() as other:
        await other.execute(update(Ritual).where(Ritual.id == ritual_id).values(version=Ritual.version + 1))


async def test_refresh_rejects_stale_version(database, rituals, clock):
    created = await rituals.create("alice", ritual_payload(steps=[]))
    with pytest.raises(VersionConflict):
        async with database.session() as session:
            ritual = await session.get(Ritual, created.id)
            await _bump_elsewhere(database, created.id)
            session.add(RitualCompletion(ritual_id=ritual.id, user_id="alice", completed_at=clock.now))
            await session.flush()
            await refresh_derived_state(session, ritual, clock.now)

    # the rolled-back transaction left no completion behind
    assert (await rituals.get(created.id, "alice")).total_completions == 0


async def test_bump_version_rejects_stale_version(database, rituals, clock):
    created = await rituals.create("alice", ritual_payload(steps=[]))
    async with database.session() as session:
        ritual = await session.get(Ritual, created.id)
        await bump_version(session, ritual, clock.now)
        assert ritual.version == 2

    with pytest.raises(VersionConflict):
        async with database.session() as session:
            ritual = await session.get(Ritual, created.id)
            await _bump_elsewhere(database, created.id)
            await bump_version(session, ritual, clock.now)


async def test_refresh_recomputes_from_log(database, rituals, clock):
    created = await rituals.create("alice", ritual_payload(steps=[]))
    async with database.session() as session:
        for _ in range(3):
            session.add(
                RitualCompletion(ritual_id=created.id, user_id="alice", completed_at=clock.advance(days=1))
            )
        await session.flush()
        ritual = await session.get(Ritual, created.id)
        result = await refresh_derived_state(session, ritual, clock.now)

    assert (result.current, result.best) == (3, 3)
    assert ritual.total_completions == 3
    assert ritual.last_completed_at == clock.now


async def test_retry_gives_up():
    attempts = []

    async def conflicting():
        attempts.append(1)
        raise VersionConflict("r1")

    with pytest.raises(ConflictRetryExhausted):
        await retry_on_conflict("r1", conflicting, 4)
    assert len(attempts) == 4
