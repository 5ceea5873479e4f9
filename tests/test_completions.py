import asyncio
from datetime import time

import pytest
from sqlalchemy import select

from ritual_engine.errors import (
    ConflictRetryExhausted,
    InvalidStepReference,
    RitualInactive,
    Unauthorized,
    ValidationError,
    VersionConflict,
)
from ritual_engine.models import Ritual, RitualCompletion
from ritual_engine.services import CompletionRecorder

from conftest import START, ritual_payload

pytestmark = pytest.mark.asyncio


async def test_complete_updates_derived_state(rituals, recorder, clock):
    ritual = await rituals.create("alice", ritual_payload())
    first, second = ritual.steps

    completion = await recorder.complete(
        ritual.id,
        "alice",
        {
            "completed_steps": [first.id],
            "skipped_steps": [second.id],
            "mood_before": 4,
            "mood_after": 7,
            "notes": "<b>good</b> session",
        },
    )
    assert completion.ritual_id == ritual.id
    assert completion.user_id == "alice"
    assert completion.completed_at == clock.now
    assert completion.notes == "good session"

    refreshed = await rituals.get(ritual.id, "alice")
    assert refreshed.total_completions == 1
    assert (refreshed.streak_count, refreshed.best_streak) == (1, 1)
    assert refreshed.last_completed_at == clock.now


async def test_server_owns_identity_and_time(rituals, recorder, clock):
    ritual = await rituals.create("alice", ritual_payload(steps=[]))
    completion = await recorder.complete(
        ritual.id, "alice", {"user_id": "mallory", "completed_at": "1999-01-01T00:00:00"}
    )
    assert completion.user_id == "alice"
    assert completion.completed_at == clock.now


async def test_unknown_step_appends_nothing(rituals, recorder):
    ritual = await rituals.create("alice", ritual_payload())
    with pytest.raises(InvalidStepReference) as exc:
        await recorder.complete(ritual.id, "alice", {"completed_steps": ["not-a-step"]})
    assert exc.value.kind == "InvalidStepReference"

    log = await recorder.list_completions(ritual.id, "alice")
    assert log.total == 0
    assert (await rituals.get(ritual.id, "alice")).total_completions == 0


async def test_step_of_another_ritual_rejected(rituals, recorder):
    mine = await rituals.create("alice", ritual_payload())
    other = await rituals.create("alice", ritual_payload(name="Other"))
    with pytest.raises(InvalidStepReference):
        await recorder.complete(mine.id, "alice", {"skipped_steps": [other.steps[0].id]})


async def test_step_both_completed_and_skipped(rituals, recorder):
    ritual = await rituals.create("alice", ritual_payload())
    step_id = ritual.steps[0].id
    with pytest.raises(ValidationError):
        await recorder.complete(
            ritual.id, "alice", {"completed_steps": [step_id], "skipped_steps": [step_id]}
        )


async def test_inactive_ritual_rejects_completion(rituals, recorder):
    ritual = await rituals.create("alice", ritual_payload())
    await rituals.update(ritual.id, "alice", {"is_active": False})
    with pytest.raises(RitualInactive) as exc:
        await recorder.complete(ritual.id, "alice", {})
    assert exc.value.status_code == 409


async def test_foreign_completion_rejected(rituals, recorder):
    ritual = await rituals.create("alice", ritual_payload())
    with pytest.raises(Unauthorized):
        await recorder.complete(ritual.id, "bob", {"mood_before": 99})
    assert (await recorder.list_completions(ritual.id, "alice")).total == 0


async def test_concurrent_completions_are_not_lost(rituals, recorder, database, clock):
    ritual = await rituals.create("alice", ritual_payload())
    other_recorder = CompletionRecorder(database, clock=clock)

    results = await asyncio.gather(
        *[
            (recorder if i % 2 else other_recorder).complete(ritual.id, "alice", {"duration_minutes": i})
            for i in range(6)
        ]
    )
    assert len(results) == 6

    refreshed = await rituals.get(ritual.id, "alice")
    assert refreshed.total_completions == 6
    assert (await recorder.list_completions(ritual.id, "alice")).total == 6


async def test_concurrent_completion_and_step_edit(rituals, recorder):
    ritual = await rituals.create("alice", ritual_payload())
    await asyncio.gather(
        recorder.complete(ritual.id, "alice", {"completed_steps": [ritual.steps[0].id]}),
        rituals.add_step(ritual.id, "alice", {"name": "Stretch", "order": 0}),
        recorder.complete(ritual.id, "alice", {}),
    )
    refreshed = await rituals.get(ritual.id, "alice")
    assert refreshed.total_completions == 2
    assert len(refreshed.steps) == 3


async def test_conflict_retried_then_committed(rituals, recorder, monkeypatch):
    ritual = await rituals.create("alice", ritual_payload(steps=[]))
    real = recorder._append_and_recompute
    calls = []

    async def flaky(*args):
        calls.append(args)
        if len(calls) == 1:
            raise VersionConflict(ritual.id)
        return await real(*args)

    monkeypatch.setattr(recorder, "_append_and_recompute", flaky)
    await recorder.complete(ritual.id, "alice", {})
    assert len(calls) == 2
    assert (await rituals.get(ritual.id, "alice")).total_completions == 1


async def test_conflict_retry_exhausted(rituals, database, clock, monkeypatch):
    ritual = await rituals.create("alice", ritual_payload(steps=[]))
    recorder = CompletionRecorder(database, clock=clock, max_attempts=3)
    calls = []

    async def always_conflict(*args):
        calls.append(args)
        raise VersionConflict(ritual.id)

    monkeypatch.setattr(recorder, "_append_and_recompute", always_conflict)
    with pytest.raises(ConflictRetryExhausted) as exc:
        await recorder.complete(ritual.id, "alice", {})
    assert len(calls) == 3
    assert exc.value.attempts == 3
    assert exc.value.status_code == 503


async def test_list_completions_newest_first(rituals, recorder, clock):
    ritual = await rituals.create("alice", ritual_payload(steps=[]))
    for minutes in (5, 10, 15):
        await recorder.complete(ritual.id, "alice", {"duration_minutes": minutes})
        clock.advance(hours=1)

    page = await recorder.list_completions(ritual.id, "alice", page=1, limit=2)
    assert [c.duration_minutes for c in page.items] == [15, 10]
    assert (page.total, page.total_pages) == (3, 2)

    with pytest.raises(Unauthorized):
        await recorder.list_completions(ritual.id, "bob")


async def test_streak_grows_day_by_day(rituals, recorder, clock):
    ritual = await rituals.create("alice", ritual_payload(steps=[]))
    for _ in range(3):
        await recorder.complete(ritual.id, "alice", {})
        clock.advance(days=1)
    clock.advance(days=-1)
    refreshed = await rituals.get(ritual.id, "alice")
    assert (refreshed.streak_count, refreshed.best_streak, refreshed.total_completions) == (3, 3, 3)


async def test_timestamps_round_trip_as_naive_utc(rituals, recorder, database, clock):
    ritual = await rituals.create("alice", ritual_payload(reminder_time="07:30"))
    clock.advance(hours=2)
    await recorder.complete(ritual.id, "alice", {})

    async with database.session() as session:
        stored = await session.get(Ritual, ritual.id)
        completion = (await session.scalars(select(RitualCompletion))).one()

    assert stored.created_at == START
    assert stored.last_completed_at == clock.now
    assert stored.updated_at == clock.now
    assert stored.reminder_time == time(7, 30)
    assert completion.completed_at == clock.now
    assert all(
        value.tzinfo is None
        for value in (stored.created_at, stored.updated_at, stored.last_completed_at, completion.completed_at)
    )

    listed = await recorder.list_completions(ritual.id, "alice")
    assert listed.items[0].completed_at == clock.now
