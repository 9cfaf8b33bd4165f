"""
Tests for task cancellation.

A task is cancelled with ``await handle.cancel()``. The cancelled task
receives TaskCancelled at its current suspension point, may clean up and
return a value, and that value is what the canceller receives. Tasks blocked
on a synchronization primitive are detached from it first.
"""

import pytest
from cosync import Channel, Completion, Event, Semaphore, sleep, spawn
from cosync.core.event_loop.event_loop import EventLoop
from cosync.core.event_loop.synchronization import BroadcastEvent
from cosync.core.event_loop.tasks import TaskCancelled


class TestAwaitableCancel:
    """Tests for the awaitable cancel() method."""

    def test_cancel_returns_value_from_finally(self):
        """Cancelled task can return a value from finally block."""

        async def worker():
            try:
                await sleep(10.0)
            except TaskCancelled:
                pass
            finally:
                return 42

        async def main():
            handle = await spawn(worker())
            await sleep(0.01)
            return await handle.cancel()

        loop = EventLoop()
        assert loop.run_until_complete(main(), join=True) == 42

    def test_cancel_returns_none_when_cancellation_propagates(self):
        async def worker():
            await sleep(10.0)

        async def main():
            handle = await spawn(worker())
            value = await handle.cancel()
            return value, handle.is_cancelled, handle.is_error

        loop = EventLoop()
        assert loop.run_until_complete(main(), join=True) == (None, True, False)

    def test_cancel_propagates_exception_from_handler(self):
        """If cancelled task raises during cleanup, it propagates to canceller."""

        async def worker():
            try:
                await sleep(10.0)
            except TaskCancelled:
                raise ValueError("cleanup failed")

        async def main():
            handle = await spawn(worker())
            await sleep(0.01)
            await handle.cancel()

        loop = EventLoop()
        with pytest.raises(ValueError, match="cleanup failed"):
            loop.run_until_complete(main(), join=True)

    def test_cancel_already_finished_task(self):
        """Cancelling a finished task returns its result."""

        async def worker():
            return "done"

        async def main():
            handle = await spawn(worker())
            await sleep(0.01)
            return await handle.cancel()

        loop = EventLoop()
        assert loop.run_until_complete(main(), join=True) == "done"

    def test_join_cancelled_task_raises(self):
        async def worker():
            await sleep(10.0)

        async def main():
            handle = await spawn(worker())
            await handle.cancel()
            with pytest.raises(TaskCancelled):
                await handle.join()
            return "ok"

        loop = EventLoop()
        assert loop.run_until_complete(main(), join=True) == "ok"

    def test_cancelled_sleeper_does_not_hold_the_loop(self):
        """A cancelled sleeper is removed from the sleep heap."""

        async def worker():
            await sleep(10.0)

        async def main():
            handle = await spawn(worker())
            await handle.cancel()

        loop = EventLoop()
        loop.run_until_complete(main(), join=True)
        assert loop.sleeping == []


class TestCancelWithCleanup:
    """Tests for cleanup behavior during cancellation."""

    def test_multiple_finally_blocks_run(self):
        """All finally blocks in the call stack should run."""
        cleanup_order = []

        async def inner():
            try:
                await sleep(10.0)
            finally:
                cleanup_order.append("inner")

        async def worker():
            try:
                await inner()
            finally:
                cleanup_order.append("outer")

        async def main():
            handle = await spawn(worker())
            await sleep(0.01)
            await handle.cancel()

        loop = EventLoop()
        loop.run_until_complete(main(), join=True)
        assert cleanup_order == ["inner", "outer"]


class TestCancelBlockedOnPrimitives:
    """A task blocked on a primitive is detached from it when cancelled."""

    @pytest.mark.parametrize("event_cls", [Event, BroadcastEvent])
    def test_cancelled_event_waiter_is_retired(self, event_cls):
        async def main():
            event = event_cls()
            handle = await spawn(event.wait())
            assert event.has_waiters()
            await handle.cancel()
            assert not event.has_waiters()
            event.set()
            # nobody is left to resume, so the event can be reset
            event.clear()
            return event.is_set()

        loop = EventLoop()
        assert loop.run_until_complete(main(), join=True) is False

    def test_cancelled_acquirer_is_not_admitted(self):
        admitted = []

        async def acquirer(semaphore: Semaphore, name: str):
            await semaphore.acquire()
            admitted.append(name)

        async def main():
            semaphore = Semaphore(1)
            await semaphore.acquire()
            first = await spawn(acquirer(semaphore, "cancelled"))
            second = await spawn(acquirer(semaphore, "second"))
            await first.cancel()
            semaphore.release()
            await second.join()
            return semaphore.count

        loop = EventLoop()
        assert loop.run_until_complete(main(), join=True) == 0
        assert admitted == ["second"]

    def test_cancelled_completion_waiter_is_not_woken(self):
        async def main():
            done = Completion()
            handle = await spawn(done.wait())
            await handle.cancel()
            done.resolve("late")
            await sleep(0)
            return handle.is_cancelled, handle.is_finished

        loop = EventLoop()
        assert loop.run_until_complete(main(), join=True) == (True, False)

    def test_cancelled_consumer_leaves_items_for_others(self):
        async def main():
            channel = Channel[str]()
            stuck = await spawn(channel.consume())
            await stuck.cancel()
            await channel.push("kept")
            return len(channel), await channel.consume()

        loop = EventLoop()
        assert loop.run_until_complete(main(), join=True) == (1, "kept")
