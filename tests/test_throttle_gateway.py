"""Tests for the Throttle Gateway."""

import asyncio

import pytest

from storefront.config import settings
from storefront.services.throttle import FetchTimeoutError, ThrottleGateway, throttled_fetch


class SlowClient:
    """Stands in for httpx.AsyncClient; every request hangs."""

    def __init__(self):
        self.cancelled = False

    async def request(self, method, url, **kwargs):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            self.cancelled = True
            raise


class TestSubmit:
    """Tests for submit scheduling."""

    def test_idle_gateway_runs_immediately(self, make_gateway):
        gateway = make_gateway()

        async def scenario():
            async def task():
                return "done"
            return await gateway.submit(task, key="t")

        assert asyncio.run(scenario()) == "done"

    def test_bounds_concurrency_and_spacing(self):
        """20 tasks: never more than 5 in flight, executions spaced by the interval."""
        gateway = ThrottleGateway(min_interval=0.02, max_concurrent=5, drain_delay=0.005)
        in_flight = 0
        max_in_flight = 0
        started_at = []

        async def scenario():
            async def task():
                nonlocal in_flight, max_in_flight
                started_at.append(gateway.last_request_time)
                in_flight += 1
                max_in_flight = max(max_in_flight, in_flight)
                await asyncio.sleep(0.15)
                in_flight -= 1
                return True

            return await asyncio.gather(*(gateway.submit(task, key=f"t{i}") for i in range(20)))

        results = asyncio.run(scenario())

        assert results == [True] * 20
        assert max_in_flight <= 5
        gaps = [b - a for a, b in zip(started_at, started_at[1:])]
        assert all(gap >= 0.02 for gap in gaps)

    def test_queue_is_fifo(self):
        gateway = ThrottleGateway(min_interval=0.01, max_concurrent=1, drain_delay=0.0)
        order = []

        async def scenario():
            def make(i):
                async def task():
                    order.append(i)
                return task
            await asyncio.gather(*(gateway.submit(make(i)) for i in range(6)))

        asyncio.run(scenario())
        assert order == list(range(6))

    def test_new_arrival_waits_behind_queued_tasks(self, clock):
        """A call arriving once the interval has passed still runs after older queued calls."""
        gateway = ThrottleGateway(min_interval=0.05, max_concurrent=5, drain_delay=0.0, clock=clock)
        order = []

        def make(name):
            async def task():
                order.append(name)
                clock.advance(1.0)
            return task

        async def scenario():
            first = asyncio.ensure_future(gateway.submit(make("a")))
            second = asyncio.ensure_future(gateway.submit(make("b")))
            await asyncio.sleep(0)
            assert gateway.get_status()["queued_requests"] == 1

            clock.advance(1.0)
            third = asyncio.ensure_future(gateway.submit(make("c")))
            await asyncio.gather(first, second, third)

        asyncio.run(scenario())
        assert order == ["a", "b", "c"]

    def test_counters_return_to_idle(self, make_gateway):
        gateway = make_gateway()

        async def scenario():
            async def task():
                return 1
            await asyncio.gather(*(gateway.submit(task) for _ in range(8)))
            await asyncio.sleep(0.01)

        asyncio.run(scenario())
        status = gateway.get_status()
        assert status["active_requests"] == 0
        assert status["queued_requests"] == 0


class TestFailurePolicy:
    """Tests for suppressible vs propagated errors."""

    def test_network_error_is_suppressed(self, make_gateway):
        gateway = make_gateway()

        async def scenario():
            async def task():
                raise ConnectionError("Failed to fetch https://www.google-analytics.com/g/collect")
            return await gateway.submit(task)

        assert asyncio.run(scenario()) is None

    def test_timeout_type_is_suppressed(self, make_gateway):
        gateway = make_gateway()

        async def scenario():
            async def task():
                raise TimeoutError()
            return await gateway.submit(task)

        assert asyncio.run(scenario()) is None

    def test_other_errors_propagate(self, make_gateway):
        gateway = make_gateway()

        async def scenario():
            async def task():
                raise ValueError("bad payload")
            return await gateway.submit(task)

        with pytest.raises(ValueError, match="bad payload"):
            asyncio.run(scenario())

    def test_should_suppress_is_case_insensitive(self, make_gateway):
        gateway = make_gateway()
        assert gateway.should_suppress(RuntimeError("net::err_blocked_by_client"))
        assert not gateway.should_suppress(RuntimeError("KeyError in handler"))


class TestBatch:
    """Tests for debounced batch submissions."""

    def test_only_last_submission_runs(self, make_gateway):
        gateway = make_gateway()
        ran = []

        async def scenario():
            for i in range(3):
                async def task(i=i):
                    ran.append(i)
                gateway.batch(task, "pageview:/cart", delay=0.02)
            await asyncio.sleep(0.1)

        asyncio.run(scenario())
        assert ran == [2]
        assert gateway.get_status()["pending_batches"] == 0

    def test_different_keys_do_not_cancel_each_other(self, make_gateway):
        gateway = make_gateway()
        ran = []

        async def scenario():
            for key in ("pageview:/a", "pageview:/b"):
                async def task(key=key):
                    ran.append(key)
                gateway.batch(task, key, delay=0.01)
            await asyncio.sleep(0.1)

        asyncio.run(scenario())
        assert sorted(ran) == ["pageview:/a", "pageview:/b"]

    def test_default_delay_comes_from_settings(self, make_gateway, monkeypatch):
        monkeypatch.setattr(settings, "throttle_batch_delay_seconds", 0.3)
        gateway = make_gateway()
        ran = []

        async def scenario():
            async def task():
                ran.append("fired")
            gateway.batch(task, "pageview:/")
            await asyncio.sleep(0.1)
            assert ran == []
            assert gateway.get_status()["pending_batches"] == 1
            await asyncio.sleep(0.4)

        asyncio.run(scenario())
        assert ran == ["fired"]

    def test_batched_failure_is_not_raised(self, make_gateway):
        gateway = make_gateway()

        async def scenario():
            async def task():
                raise ValueError("sink down")
            gateway.batch(task, "k", delay=0.01)
            await asyncio.sleep(0.05)

        asyncio.run(scenario())


class TestThrottledFetch:
    """Tests for the fetch wrapper."""

    def test_timeout_aborts_request_and_is_suppressed(self, make_gateway):
        gateway = make_gateway()
        client = SlowClient()

        async def scenario():
            return await throttled_fetch(client, "GET", "http://backend/verify/1", gateway=gateway, timeout=0.05)

        assert asyncio.run(scenario()) is None
        assert client.cancelled is True

    def test_timeout_propagates_when_not_suppressed(self, make_gateway):
        gateway = make_gateway(suppressed_errors=["nothing-matches-this"])

        async def scenario():
            return await throttled_fetch(SlowClient(), "GET", "http://backend/x", gateway=gateway, timeout=0.05)

        with pytest.raises(FetchTimeoutError):
            asyncio.run(scenario())


class TestReset:

    def test_reset_cancels_queued_tasks(self):
        gateway = ThrottleGateway(min_interval=5.0, max_concurrent=5)

        async def scenario():
            async def task():
                return "ran"

            first = await gateway.submit(task)
            queued = asyncio.ensure_future(gateway.submit(task))
            await asyncio.sleep(0.01)
            assert gateway.get_status()["queued_requests"] == 1

            gateway.reset()
            with pytest.raises(asyncio.CancelledError):
                await queued
            return first

        assert asyncio.run(scenario()) == "ran"
        status = gateway.get_status()
        assert status["queued_requests"] == 0
        assert status["last_request_time"] is None
