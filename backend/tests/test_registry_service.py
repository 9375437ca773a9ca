import asyncio

import pytest

from driving_school.errors import SessionNotFoundError, TestLoadError
from driving_school.schemas.session_schema import SessionPhase, SubmissionStatus
from driving_school.services.registry_service import SessionRegistry
from driving_school.services.snapshot_service import Snapshot

from conftest import INACTIVE_TEST_ID, STUDENT_ID, TEST_ID


@pytest.fixture
def registry(backend, snapshots):
    return SessionRegistry(backend, snapshots, timer_interval=3600)


def test_open_twice_attaches_to_live_session(registry):
    async def run():
        first = await registry.open(STUDENT_ID, TEST_ID)
        await first.select_option("b")
        second = await registry.open(STUDENT_ID, TEST_ID)
        await registry.shutdown()
        return first, second

    first, second = asyncio.run(run())
    assert first is second
    assert second.tracker.answers == {"q1": "option_b"}


def test_concurrent_opens_load_once(registry, backend):
    async def run():
        sessions = await asyncio.gather(*(registry.open(STUDENT_ID, TEST_ID) for _ in range(3)))
        await registry.shutdown()
        return sessions

    sessions = asyncio.run(run())
    assert all(s is sessions[0] for s in sessions)


def test_students_get_separate_sessions(registry):
    async def run():
        mine = await registry.open(STUDENT_ID, TEST_ID)
        theirs = await registry.open("someone-else", TEST_ID)
        await registry.shutdown()
        return mine, theirs

    mine, theirs = asyncio.run(run())
    assert mine is not theirs
    assert mine.key != theirs.key


def test_submitted_session_is_replaced_by_new_attempt(registry, backend):
    async def run():
        first = await registry.open(STUDENT_ID, TEST_ID)
        first.finalize()
        await first.confirm()
        second = await registry.open(STUDENT_ID, TEST_ID)
        await registry.shutdown()
        return first, second

    first, second = asyncio.run(run())
    assert first is not second
    assert first.phase == SessionPhase.SUBMITTED
    assert second.phase == SessionPhase.IN_PROGRESS
    assert second.tracker.answers == {}
    assert len(backend.records) == 1


def test_close_then_open_resumes_from_snapshot(registry):
    async def run():
        first = await registry.open(STUDENT_ID, TEST_ID)
        await first.go_to(2)
        await first.select_option("c")
        registry.close(STUDENT_ID, TEST_ID)
        second = await registry.open(STUDENT_ID, TEST_ID)
        await registry.shutdown()
        return first, second

    first, second = asyncio.run(run())
    assert first is not second
    assert second.current_index == 2
    assert second.tracker.answers == {"q3": "option_c"}


def test_get_and_close_unknown_session(registry):
    with pytest.raises(SessionNotFoundError):
        registry.get(STUDENT_ID, TEST_ID)
    with pytest.raises(SessionNotFoundError):
        registry.close(STUDENT_ID, TEST_ID)


def test_failed_load_registers_nothing(registry):
    with pytest.raises(TestLoadError):
        asyncio.run(registry.open(STUDENT_ID, INACTIVE_TEST_ID))
    with pytest.raises(SessionNotFoundError):
        registry.get(STUDENT_ID, INACTIVE_TEST_ID)


def test_shutdown_stops_every_timer(registry):
    async def run():
        session = await registry.open(STUDENT_ID, TEST_ID)
        assert session.timer.running
        await registry.shutdown()
        return session

    session = asyncio.run(run())
    assert session.timer.stopped
    assert registry.sessions() == []


def test_close_during_expiry_submission_still_finishes(backend, snapshots):
    # one second left and a fast clock; the student update is slow
    asyncio.run(snapshots.save(STUDENT_ID, TEST_ID, Snapshot(answers={"q1": "option_a"}, time=1)))
    backend.delay = 0.05
    registry = SessionRegistry(backend, snapshots, timer_interval=0.01)

    async def run():
        session = await registry.open(STUDENT_ID, TEST_ID)
        for _ in range(200):
            if session.submission_status == SubmissionStatus.SUBMITTING:
                break
            await asyncio.sleep(0.005)
        assert session.submission_status == SubmissionStatus.SUBMITTING
        registry.close(STUDENT_ID, TEST_ID)
        await session.timer.wait()
        return session, await snapshots.load(STUDENT_ID, TEST_ID)

    session, leftover = asyncio.run(run())
    assert session.submission_status == SubmissionStatus.SUBMITTED
    assert list(backend.students[STUDENT_ID]["test_history"]) == ["rec-1"]
    assert leftover is None


def test_shutdown_waits_for_expiry_submission(backend, snapshots):
    asyncio.run(snapshots.save(STUDENT_ID, TEST_ID, Snapshot(time=1)))
    backend.delay = 0.05
    registry = SessionRegistry(backend, snapshots, timer_interval=0.01)

    async def run():
        session = await registry.open(STUDENT_ID, TEST_ID)
        for _ in range(200):
            if session.submission_status == SubmissionStatus.SUBMITTING:
                break
            await asyncio.sleep(0.005)
        await registry.shutdown()
        return session

    session = asyncio.run(run())
    assert session.submission_status == SubmissionStatus.SUBMITTED
    assert backend.apply_calls == 1


def test_finished_sessions_are_evicted_on_next_open(registry):
    async def run():
        done = await registry.open(STUDENT_ID, TEST_ID)
        done.finalize()
        await done.confirm()
        other = await registry.open("someone-else", TEST_ID)
        keys = set(registry._sessions)
        locks = set(registry._locks)
        await registry.shutdown()
        return other, keys, locks

    other, keys, locks = asyncio.run(run())
    assert keys == {("someone-else", TEST_ID)}
    assert locks == keys


def test_failed_submission_is_not_evicted(registry, backend):
    backend.fail_apply = 1

    async def run():
        failed = await registry.open(STUDENT_ID, TEST_ID)
        failed.finalize()
        await failed.confirm()
        await registry.open("someone-else", TEST_ID)
        kept = registry.get(STUDENT_ID, TEST_ID)
        await registry.shutdown()
        return failed, kept

    failed, kept = asyncio.run(run())
    assert kept is failed
    assert failed.submission_status == SubmissionStatus.FAILED


def test_failed_load_leaves_no_lock(registry):
    with pytest.raises(TestLoadError):
        asyncio.run(registry.open(STUDENT_ID, INACTIVE_TEST_ID))
    assert registry._locks == {}
    assert registry._waiting == {}


def test_close_drops_the_lock(registry):
    async def run():
        await registry.open(STUDENT_ID, TEST_ID)
        registry.close(STUDENT_ID, TEST_ID)

    asyncio.run(run())
    assert registry._sessions == {}
    assert registry._locks == {}
