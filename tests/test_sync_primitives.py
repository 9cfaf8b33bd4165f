"""
Tests for the cosync synchronization primitives: Completion, Semaphore, Lock,
Event and BroadcastEvent.

These tests verify:
- Basic functionality (resolve, acquire, release, set, wait, clear)
- Concurrent behavior (multiple waiters, registration-order wakeups)
- Fast paths (settled completions, already-set events, free slots)
- Misuse errors (AlreadySetError, DirtyClearError)
"""

import logging

import pytest
from cosync import (
    AlreadySetError,
    BroadcastEvent,
    Completion,
    DirtyClearError,
    Event,
    EventLoop,
    Lock,
    Semaphore,
    first_completed,
    make_event,
    sleep,
    spawn,
)
from cosync.core.emitter import DEFAULT_MAX_LISTENERS


@pytest.fixture
def event_loop():
    """Provide a fresh EventLoop for each test"""
    return EventLoop()


# ============================================================================
# Completion Tests
# ============================================================================

def test_completion_wakes_all_waiters_in_order(event_loop):
    async def main():
        done = Completion()
        results = []

        async def waiter(name):
            value = await done.wait()
            results.append((name, value))

        tasks = [await spawn(waiter(name)) for name in ("a", "b", "c")]
        done.resolve(7)
        for task in tasks:
            await task.join()
        return results

    result = event_loop.run_until_complete(main(), join=True)
    assert result == [("a", 7), ("b", 7), ("c", 7)]


def test_completion_settles_once(event_loop):
    async def main():
        done = Completion()
        done.resolve("first")
        done.resolve("second")
        done.reject(RuntimeError("ignored"))
        return await done.wait()

    assert event_loop.run_until_complete(main(), join=True) == "first"


def test_completion_reject_raises_in_waiter(event_loop):
    async def main():
        done = Completion()

        async def fail():
            done.reject(ValueError("bad"))

        await spawn(fail())
        with pytest.raises(ValueError, match="bad"):
            await done.wait()
        return done.exception()

    assert isinstance(event_loop.run_until_complete(main(), join=True), ValueError)


def test_completion_result_while_pending():
    with pytest.raises(RuntimeError):
        Completion().result()


def test_first_completed_returns_earliest(event_loop):
    async def main():
        slow, fast = Completion(), Completion()

        async def settle(completion, delay, value):
            await sleep(delay)
            completion.resolve(value)

        await spawn(settle(slow, 0.05, "slow"))
        await spawn(settle(fast, 0.01, "fast"))
        winner = await first_completed(slow, fast)
        return winner is fast, winner.result()

    assert event_loop.run_until_complete(main(), join=True) == (True, "fast")


def test_first_completed_prefers_argument_order_when_settled(event_loop):
    async def main():
        a, b = Completion(), Completion()
        b.resolve("b")
        a.resolve("a")
        winner = await first_completed(a, b)
        return winner.result()

    assert event_loop.run_until_complete(main(), join=True) == "a"


def test_first_completed_does_not_raise_winner_failure(event_loop):
    async def main():
        failed = Completion()
        failed.reject(KeyError("k"))
        winner = await first_completed(failed, Completion())
        return winner.exception()

    assert isinstance(event_loop.run_until_complete(main(), join=True), KeyError)


def test_first_completed_losers_do_not_accumulate_waiters(event_loop):
    async def main():
        never = Completion()

        async def settle(completion):
            await sleep(0)
            completion.resolve()

        for _ in range(50):
            tick = Completion()
            await spawn(settle(tick))
            winner = await first_completed(never, tick)
            assert winner is tick
        return len(never._waiters)

    assert event_loop.run_until_complete(main(), join=True) <= 1


def test_first_completed_requires_completions(event_loop):
    async def main():
        await first_completed()

    with pytest.raises(ValueError):
        event_loop.run_until_complete(main(), join=True)


# ============================================================================
# Semaphore Tests
# ============================================================================

@pytest.mark.parametrize("n", [1, 2, 3])
def test_semaphore_admits_exactly_n(event_loop, n):
    async def main():
        semaphore = Semaphore(n)
        active = 0
        peak = 0

        async def holder():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await sleep(0.01)
            active -= 1

        tasks = [await spawn(semaphore.with_slot(holder)) for _ in range(n * 2 + 1)]
        for task in tasks:
            await task.join()
        return peak, semaphore.count

    assert event_loop.run_until_complete(main(), join=True) == (n, n)


def test_semaphore_n_plus_one_acquire_suspends(event_loop):
    async def main():
        semaphore = Semaphore(2)
        log = []

        assert await semaphore.acquire() == 1
        assert await semaphore.acquire() == 0

        async def third():
            log.append("third waiting")
            await semaphore.acquire()
            log.append("third admitted")

        task = await spawn(third())
        log.append("releasing")
        semaphore.release()
        await task.join()
        return log

    result = event_loop.run_until_complete(main(), join=True)
    assert result == ["third waiting", "releasing", "third admitted"]


def test_semaphore_release_rechecks_every_waiter(event_loop):
    async def main():
        semaphore = Semaphore(0)
        admitted = []

        async def acquirer(name):
            await semaphore.acquire()
            admitted.append(name)

        for name in ("a", "b", "c"):
            await spawn(acquirer(name))
        semaphore.release()
        await sleep(0)
        first_round = list(admitted)
        semaphore.release()
        semaphore.release()
        await sleep(0)
        return first_round, admitted

    first_round, admitted = event_loop.run_until_complete(main(), join=True)
    assert first_round == ["a"]
    assert admitted == ["a", "b", "c"]


def test_semaphore_release_without_waiters_raises_capacity():
    semaphore = Semaphore(1)
    semaphore.release()
    assert semaphore.count == 2
    assert not semaphore.locked()


def test_semaphore_with_slot_releases_on_failure(event_loop):
    async def main():
        semaphore = Semaphore(1)

        async def broken():
            raise RuntimeError("inside")

        with pytest.raises(RuntimeError):
            await semaphore.with_slot(broken)
        return semaphore.count

    assert event_loop.run_until_complete(main(), join=True) == 1


def test_semaphore_rejects_negative_value():
    with pytest.raises(ValueError):
        Semaphore(-1)


# ============================================================================
# Lock Tests
# ============================================================================

def test_lock_mutual_exclusion(event_loop):
    """Critical sections never overlap"""

    async def main():
        lock = Lock()
        log = []

        async def critical_section(name):
            async with lock:
                log.append(f"{name} enter")
                await sleep(0.01)
                log.append(f"{name} exit")

        tasks = [await spawn(critical_section(name)) for name in ("t1", "t2", "t3")]
        for task in tasks:
            await task.join()
        return log

    log = event_loop.run_until_complete(main(), join=True)
    assert len(log) == 6
    for i in range(0, 6, 2):
        name = log[i].split()[0]
        assert log[i] == f"{name} enter"
        assert log[i + 1] == f"{name} exit"


def test_lock_with_slot_returns_result(event_loop):
    async def main():
        lock = Lock()

        async def compute():
            assert lock.is_locked()
            return 99

        value = await lock.with_slot(compute)
        return value, lock.is_locked()

    assert event_loop.run_until_complete(main(), join=True) == (99, False)


# ============================================================================
# Event Tests (both strategies)
# ============================================================================

EVENT_CLASSES = [Event, BroadcastEvent]


@pytest.mark.parametrize("event_cls", EVENT_CLASSES)
def test_event_basic_set_wait(event_loop, event_cls):
    """Test that event.wait() blocks until event.set() is called"""

    async def main():
        event = event_cls()
        results = []

        async def waiter():
            results.append("waiting")
            await event.wait()
            results.append("done")

        task = await spawn(waiter())
        results.append("setting")
        event.set()
        await task.join()

        return results

    result = event_loop.run_until_complete(main(), join=True)
    assert result == ["waiting", "setting", "done"]


@pytest.mark.parametrize("event_cls", EVENT_CLASSES)
def test_event_wakes_in_registration_order(event_loop, event_cls):
    async def main():
        event = event_cls()
        results = []

        async def waiter(name):
            await event.wait()
            results.append(name)

        tasks = [await spawn(waiter(i)) for i in range(5)]
        event.set()
        for task in tasks:
            await task.join()
        return results

    assert event_loop.run_until_complete(main(), join=True) == [0, 1, 2, 3, 4]


@pytest.mark.parametrize("event_cls", EVENT_CLASSES)
def test_event_already_set_passes_through(event_loop, event_cls):
    async def main():
        event = event_cls()
        event.set()
        await event.wait()
        await event.wait()
        return event.has_waiters()

    assert event_loop.run_until_complete(main(), join=True) is False


@pytest.mark.parametrize("event_cls", EVENT_CLASSES)
def test_event_assert_not_set(event_cls):
    event = event_cls()
    event.set(assert_not_set=True)
    event.set()
    with pytest.raises(AlreadySetError):
        event.set(assert_not_set=True)


@pytest.mark.parametrize("event_cls", EVENT_CLASSES)
def test_event_clear_without_waiters(event_cls):
    event = event_cls()
    event.clear()
    event.set()
    event.clear()
    assert not event.is_set()


@pytest.mark.parametrize("event_cls", EVENT_CLASSES)
def test_event_pulse_set_then_clear(event_loop, event_cls):
    async def main():
        event = event_cls()
        resumed = []

        async def waiter(name):
            await event.wait()
            resumed.append(name)

        tasks = [await spawn(waiter(i)) for i in range(3)]
        event.set()
        # set() already removed the woken waiters from the registry
        assert not event.has_waiters()
        event.clear()
        for task in tasks:
            await task.join()
        return resumed, event.is_set()

    assert event_loop.run_until_complete(main(), join=True) == ([0, 1, 2], False)


@pytest.mark.parametrize("event_cls", EVENT_CLASSES)
def test_event_dirty_clear(event_loop, event_cls):
    async def main():
        event = event_cls()
        task = await spawn(event.wait())
        # flag flipped without waking: the waiter is still registered
        event._set = True
        with pytest.raises(DirtyClearError):
            event.clear()
        assert event.is_set()
        event.set()
        await task.join()
        event.clear()
        return event.is_set()

    assert event_loop.run_until_complete(main(), join=True) is False


@pytest.mark.parametrize("event_cls", EVENT_CLASSES)
def test_event_reusable_after_clear(event_loop, event_cls):
    async def main():
        event = event_cls()
        rounds = []

        async def waiter(round_no):
            await event.wait()
            rounds.append(round_no)

        for round_no in range(3):
            task = await spawn(waiter(round_no))
            event.set()
            await task.join()
            event.clear()
        return rounds

    assert event_loop.run_until_complete(main(), join=True) == [0, 1, 2]


def test_broadcast_event_has_no_listener_limit(event_loop, caplog):
    async def main():
        event = BroadcastEvent()
        tasks = [await spawn(event.wait()) for _ in range(DEFAULT_MAX_LISTENERS * 3)]
        event.set()
        for task in tasks:
            await task.join()
        return len(tasks)

    with caplog.at_level(logging.WARNING, logger="cosync"):
        assert event_loop.run_until_complete(main(), join=True) == DEFAULT_MAX_LISTENERS * 3
    assert "listener leak" not in caplog.text


def test_make_event_strategies(monkeypatch):
    from cosync.config import get_settings

    assert type(make_event("waiters")) is Event
    assert type(make_event("broadcast")) is BroadcastEvent
    assert type(make_event()) is Event

    monkeypatch.setenv("COSYNC_EVENT_STRATEGY", "broadcast")
    get_settings.cache_clear()
    assert type(make_event()) is BroadcastEvent

    with pytest.raises(ValueError):
        make_event("polling")


def test_event_repr():
    event = Event()
    assert repr(event) == "Event(not set)"
    event.set()
    assert repr(event) == "Event(set)"
