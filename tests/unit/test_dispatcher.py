"""
Unit tests for core/dispatcher.py.

Tests cover worker-pool draining, per-event failure isolation, bounded-queue
backpressure, abandoned-event logging on stop, and fatal propagation of
failures that escape the handler boundary.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chain.events import EventKind
from core.dispatcher import EventDispatcher


def _make_dispatcher(handlers, queue_size: int = 10, worker_count: int = 2) -> EventDispatcher:
    with patch("core.dispatcher.setup_module_logger") as mock_logger:
        mock_logger.return_value = MagicMock()
        return EventDispatcher(handlers, queue_size=queue_size, worker_count=worker_count)


async def _stop(dispatcher: EventDispatcher, task: asyncio.Task) -> None:
    dispatcher.stop()
    await asyncio.gather(task, return_exceptions=True)


class TestConstruction:
    def test_rejects_zero_workers(self):
        with pytest.raises(ValueError):
            _make_dispatcher(MagicMock(), worker_count=0)


class TestDraining:
    @pytest.mark.asyncio
    async def test_all_events_handled(self, make_event):
        handlers = MagicMock()
        handlers.handle = AsyncMock(return_value=True)
        dispatcher = _make_dispatcher(handlers)
        task = asyncio.create_task(dispatcher.run())

        for i in range(5):
            await dispatcher.submit(make_event(EventKind.HOSPITAL_REVOKED, hospitalId=i))
        await asyncio.wait_for(dispatcher.join(), timeout=2)

        assert handlers.handle.await_count == 5
        assert dispatcher.processed == 5
        assert dispatcher.dropped == 0
        await _stop(dispatcher, task)

    @pytest.mark.asyncio
    async def test_failed_event_does_not_block_others(self, handlers, store, make_event):
        """A store failure on one event is dropped; later events still apply."""
        dispatcher = _make_dispatcher(handlers, worker_count=1)
        task = asyncio.create_task(dispatcher.run())

        # Missing arguments -> handler raises inside the boundary
        await dispatcher.submit(make_event(EventKind.RECORD_ADDED, recordId=1))
        await dispatcher.submit(
            make_event(
                EventKind.REGISTRATION_REQUESTED,
                requestId=7,
                hospitalName="Acme Clinic",
                requester="0xAAAaaAaAAaAaAAaAAaaAaaaAAaAAaaAaAaAAAaAa",
            )
        )
        await asyncio.wait_for(dispatcher.join(), timeout=2)

        assert dispatcher.dropped == 1
        assert dispatcher.processed == 1
        assert await store.get_registration_request(7) is not None
        assert not task.done()
        await _stop(dispatcher, task)

    @pytest.mark.asyncio
    async def test_events_interleave_across_workers(self, make_event):
        started = asyncio.Event()
        release = asyncio.Event()
        order: list[int] = []

        async def handle(event):
            hospital_id = event.args["hospitalId"]
            if hospital_id == 1:
                started.set()
                await release.wait()
            order.append(hospital_id)
            return True

        handlers = MagicMock()
        handlers.handle = handle
        dispatcher = _make_dispatcher(handlers, worker_count=2)
        task = asyncio.create_task(dispatcher.run())

        await dispatcher.submit(make_event(EventKind.HOSPITAL_REVOKED, hospitalId=1))
        await started.wait()
        await dispatcher.submit(make_event(EventKind.HOSPITAL_REVOKED, hospitalId=2))
        while dispatcher.processed < 1:
            await asyncio.sleep(0)
        release.set()
        await asyncio.wait_for(dispatcher.join(), timeout=2)

        assert order == [2, 1]
        await _stop(dispatcher, task)


class TestBackpressure:
    @pytest.mark.asyncio
    async def test_submit_suspends_when_queue_full(self, make_event):
        handlers = MagicMock()
        handlers.handle = AsyncMock(return_value=True)
        dispatcher = _make_dispatcher(handlers, queue_size=1, worker_count=1)

        # No workers running: second submit must wait.
        await dispatcher.submit(make_event(EventKind.HOSPITAL_REVOKED, hospitalId=1))
        blocked = asyncio.create_task(
            dispatcher.submit(make_event(EventKind.HOSPITAL_REVOKED, hospitalId=2))
        )
        await asyncio.sleep(0.01)
        assert not blocked.done()
        assert dispatcher.pending == 1

        task = asyncio.create_task(dispatcher.run())
        await asyncio.wait_for(blocked, timeout=2)
        await asyncio.wait_for(dispatcher.join(), timeout=2)
        assert dispatcher.processed == 2
        await _stop(dispatcher, task)


class TestShutdown:
    @pytest.mark.asyncio
    async def test_stop_abandons_queued_events(self, make_event):
        gate = asyncio.Event()

        async def handle(event):
            await gate.wait()
            return True

        handlers = MagicMock()
        handlers.handle = handle
        dispatcher = _make_dispatcher(handlers, worker_count=1)
        task = asyncio.create_task(dispatcher.run())

        for i in range(3):
            await dispatcher.submit(make_event(EventKind.HOSPITAL_REVOKED, hospitalId=i))
        await asyncio.sleep(0.01)

        await _stop(dispatcher, task)

        assert task.done()
        assert dispatcher.pending == 2
        warnings = [c.args for c in dispatcher._logger.warning.call_args_list]
        assert any("abandoned" in args[0] and args[1] == 2 for args in warnings)

    @pytest.mark.asyncio
    async def test_escaping_exception_ends_run(self, make_event):
        handlers = MagicMock()
        handlers.handle = AsyncMock(side_effect=RuntimeError("bug outside boundary"))
        dispatcher = _make_dispatcher(handlers, worker_count=2)
        task = asyncio.create_task(dispatcher.run())

        await dispatcher.submit(make_event(EventKind.HOSPITAL_REVOKED, hospitalId=1))

        with pytest.raises(RuntimeError, match="bug outside boundary"):
            await asyncio.wait_for(task, timeout=2)
