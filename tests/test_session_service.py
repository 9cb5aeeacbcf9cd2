import asyncio

import pytest
from sqlalchemy import update

from core.exceptions import SaveFailed, SessionClosed, StorageUnavailable
from db.session import build_engine, build_session_factory
from models.identity import SessionFilter, ExamKind
from models.session import ExamSession
from services.live_session import SessionState
from services.session_service import SessionService
from services.session_store import SessionStore


def _fresh_process(session_factory):
    """A new service over the same database, as after an app restart."""
    return SessionService(store=SessionStore(session_factory), tick_seconds=3600)


class SaveCounter:
    def __init__(self, store):
        self.calls = []
        self._save = store.save
        store.save = self

    async def __call__(self, snapshot):
        self.calls.append(snapshot)
        return await self._save(snapshot)


async def test_open_creates_and_persists_new_session(service, quant_2024_fall):
    live = await service.open_session(quant_2024_fall, timer_enabled=False)

    assert live.current_question_number == 1
    assert live.time_remaining == 3300
    assert live.answers == []
    assert live.state == SessionState.ACTIVE

    row = await service.find_open_session(quant_2024_fall)
    assert row.id == live.id


async def test_open_twice_returns_same_live_session(service, quant_generated):
    first = await service.open_session(quant_generated, timer_enabled=False)
    second = await service.open_session(quant_generated, timer_enabled=False)
    assert first is second
    assert len(await service.list_sessions()) == 1


async def test_resumed_session_keeps_timer_mode(service, session_factory, quant_generated):
    live = await service.open_session(quant_generated, timer_enabled=False)
    await service.close(live)

    resumed = await _fresh_process(session_factory).open_session(quant_generated, timer_enabled=True)
    assert resumed.id == live.id
    assert resumed.timer_enabled is False


async def test_resume_scenario(service, session_factory, quant_2024_fall):
    live = await service.open_session(quant_2024_fall, timer_enabled=True)
    assert live.current_question_number == 1

    await service.record_answer(live, 1, "B")
    assert await service.advance(live, 1) == 2

    other = _fresh_process(session_factory)
    resumed = await other.open_session(quant_2024_fall, timer_enabled=True)
    try:
        assert resumed.id == live.id
        assert resumed.current_question_number == 2
        assert resumed.answers == [(1, "B")]
    finally:
        await other.close(resumed)


async def test_full_pass_round_trip(service, session_factory, verbal_generated):
    live = await service.open_session(verbal_generated, timer_enabled=False)
    recorded = []
    for question in range(1, 41):
        option = "ABCDE"[question % 5]
        await service.record_answer(live, question, option)
        recorded.append((question, option))
        if question < 40:
            await service.advance(live, 1)
    await service.advance(live, -1)

    resumed = await _fresh_process(session_factory).open_session(verbal_generated, timer_enabled=False)
    assert resumed.answers == recorded
    assert resumed.current_question_number == 39


async def test_record_answer_toggle(service, quant_generated):
    live = await service.open_session(quant_generated, timer_enabled=False)

    assert await service.record_answer(live, 4, "A") == "A"
    assert await service.record_answer(live, 4, "C") == "C"
    assert live.ledger.get(4) == "C"

    assert await service.record_answer(live, 4, "C") is None
    assert live.ledger.get(4) is None
    row = await service.find_open_session(quant_generated)
    assert row.answers == []


async def test_record_answer_option_is_opaque(service, quant_generated):
    live = await service.open_session(quant_generated, timer_enabled=False)
    # Quant question 1 has four options; the engine stores what it is given
    assert await service.record_answer(live, 1, "E") == "E"


async def test_record_answer_question_out_of_range(service, quant_generated):
    live = await service.open_session(quant_generated, timer_enabled=False)
    with pytest.raises(ValueError):
        await service.record_answer(live, 41, "A")


async def test_advance_clamps_and_restores_selection(service, quant_generated):
    live = await service.open_session(quant_generated, timer_enabled=False)
    assert await service.advance(live, -1) == 1

    await service.record_answer(live, 1, "D")
    await service.advance(live, 1)
    assert live.selected_option is None
    await service.advance(live, -1)
    assert live.selected_option == "D"


async def test_advance_past_last_question_needs_an_answer(service, quant_generated):
    live = await service.open_session(quant_generated, timer_enabled=False)
    await service.jump_to(live, 40)

    assert await service.advance(live, 1) == 40
    assert live.is_active

    await service.record_answer(live, 40, "B")
    await service.advance(live, 1)
    assert live.is_completed

    assert await service.find_open_session(quant_generated) is None
    rows = await service.list_sessions(SessionFilter(identity=quant_generated, is_completed=True))
    assert len(rows) == 1
    assert [(a.question_number, a.selected_option) for a in rows[0].answers] == [(40, "B")]


async def test_jump_to_clamps(service, quant_generated):
    live = await service.open_session(quant_generated, timer_enabled=False)
    assert await service.jump_to(live, 17) == 17
    assert await service.jump_to(live, 0) == 1
    assert await service.jump_to(live, 99) == 40


async def test_complete_is_idempotent(service, store, quant_generated):
    live = await service.open_session(quant_generated, timer_enabled=False)
    await service.record_answer(live, 1, "A")
    counter = SaveCounter(store)

    assert await service.complete(live) is True
    assert await service.complete(live) is False
    assert len(counter.calls) == 1
    assert counter.calls[0].is_completed


async def test_completed_session_rejects_mutation(service, quant_generated):
    live = await service.open_session(quant_generated, timer_enabled=False)
    await service.complete(live)

    with pytest.raises(SessionClosed):
        await service.record_answer(live, 1, "A")
    with pytest.raises(SessionClosed):
        await service.advance(live, 1)


async def test_open_after_completion_starts_new_attempt(service, quant_generated):
    first = await service.open_session(quant_generated, timer_enabled=False)
    await service.complete(first)

    second = await service.open_session(quant_generated, timer_enabled=False)
    assert second.id != first.id
    assert second.current_question_number == 1


async def test_restart_removes_open_session(service, quant_2024_fall):
    live = await service.open_session(quant_2024_fall, timer_enabled=False)
    await service.record_answer(live, 3, "A")

    assert await service.restart(quant_2024_fall) == 1
    assert await service.find_open_session(quant_2024_fall) is None
    assert live.state == SessionState.DISCARDED
    with pytest.raises(SessionClosed):
        await service.record_answer(live, 3, "B")


async def test_restart_includes_completed_sessions(service, quant_2024_fall):
    live = await service.open_session(quant_2024_fall, timer_enabled=False)
    await service.complete(live)

    assert await service.restart(quant_2024_fall) == 1
    assert await service.list_sessions() == []


async def test_restart_without_sessions_is_noop(service, quant_2024_fall):
    assert await service.restart(quant_2024_fall) == 0


async def test_restart_all_generated(service, store, verbal_generated, quant_generated, quant_2024_fall):
    await store.create(verbal_generated, timer_enabled=True)
    await store.create(verbal_generated, timer_enabled=False)
    quant = await service.open_session(quant_generated, timer_enabled=False)
    historical = await service.open_session(quant_2024_fall, timer_enabled=False)

    assert await service.restart_all(ExamKind.VERBAL, 0) == 2

    remaining = {row.id for row in await service.list_sessions()}
    assert remaining == {quant.id, historical.id}
    assert quant.is_active


async def test_has_any_open_session(service, verbal_generated):
    assert not await service.has_any_open_session(lambda identity: identity.test_kind == ExamKind.VERBAL)
    await service.open_session(verbal_generated, timer_enabled=False)
    assert await service.has_any_open_session(lambda identity: identity.test_kind == ExamKind.VERBAL)


async def test_malformed_record_replaced_by_fresh_session(service, session_factory, quant_generated):
    live = await service.open_session(quant_generated, timer_enabled=False)
    await service.close(live)
    async with session_factory() as db:
        async with db.begin():
            await db.execute(update(ExamSession).where(ExamSession.id == live.id).values(time_remaining=-5))

    other = _fresh_process(session_factory)
    fresh = await other.open_session(quant_generated, timer_enabled=False)
    assert fresh.id != live.id
    assert [row.id for row in await other.list_sessions()] == [fresh.id]


async def test_save_failure_is_not_fatal(service, store, quant_generated):
    live = await service.open_session(quant_generated, timer_enabled=False)
    real_save = store.save

    async def failing_save(snapshot):
        raise SaveFailed("disk full")

    store.save = failing_save
    assert await service.record_answer(live, 2, "C") == "C"
    assert live.ledger.get(2) == "C"

    store.save = real_save
    await service.record_answer(live, 3, "A")
    row = await service.find_open_session(quant_generated)
    assert [(a.question_number, a.selected_option) for a in row.answers] == [(2, "C"), (3, "A")]


async def test_close_saves_position(service, session_factory, quant_generated):
    live = await service.open_session(quant_generated, timer_enabled=False)
    await service.jump_to(live, 12)
    await service.close(live)

    assert live.state == SessionState.CLOSED
    assert service.live_sessions == []
    with pytest.raises(SessionClosed):
        await service.advance(live, 1)

    resumed = await _fresh_process(session_factory).open_session(quant_generated, timer_enabled=False)
    assert resumed.current_question_number == 12


async def test_answer_options_follow_section(service, verbal_generated):
    live = await service.open_session(verbal_generated, timer_enabled=False)
    assert service.answer_options(live) == ["A", "B", "C", "D", "E"]
    await service.jump_to(live, 15)
    assert service.answer_options(live) == ["A", "B", "C", "D"]


async def test_open_fails_when_store_unavailable(tmp_path, quant_generated):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'nope' / 'sessions.db'}")
    service = SessionService(store=SessionStore(build_session_factory(engine)))
    try:
        with pytest.raises(StorageUnavailable):
            await service.open_session(quant_generated)
    finally:
        await engine.dispose()


async def test_concurrent_opens_share_one_session(service, quant_2024_fall):
    first, second = await asyncio.gather(
        service.open_session(quant_2024_fall, timer_enabled=True),
        service.open_session(quant_2024_fall, timer_enabled=True),
    )

    assert first is second
    rows = await service.list_sessions(SessionFilter(identity=quant_2024_fall, is_completed=False))
    assert [row.id for row in rows] == [first.id]


async def test_failed_completing_save_is_retried_on_open(service, store, quant_generated):
    live = await service.open_session(quant_generated, timer_enabled=False)
    await service.record_answer(live, 1, "A")
    real_save = store.save

    async def failing_save(snapshot):
        raise SaveFailed("disk full")

    store.save = failing_save
    assert await service.complete(live) is True
    assert live.is_completed

    # Store still unavailable: the completed attempt must not come back as open
    with pytest.raises(StorageUnavailable):
        await service.open_session(quant_generated, timer_enabled=False)

    store.save = real_save
    reopened = await service.open_session(quant_generated, timer_enabled=False)
    assert reopened.id != live.id
    assert reopened.answers == []

    done = await service.list_sessions(SessionFilter(identity=quant_generated, is_completed=True))
    assert [(row.id, [(a.question_number, a.selected_option) for a in row.answers]) for row in done] == [(live.id, [(1, "A")])]


async def test_restart_drops_unsaved_completion(service, store, quant_generated):
    live = await service.open_session(quant_generated, timer_enabled=False)
    real_save = store.save

    async def failing_save(snapshot):
        raise SaveFailed("disk full")

    store.save = failing_save
    await service.complete(live)
    store.save = real_save

    assert await service.restart(quant_generated) == 1
    fresh = await service.open_session(quant_generated, timer_enabled=False)
    assert fresh.id != live.id
