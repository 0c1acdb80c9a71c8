import asyncio
import threading
from datetime import timedelta

import pytest

from fakes import StubFetcher
from tsgateway.scheduler import PeriodicScheduler


def test_fires_repeatedly_and_survives_failures():
    fetcher = StubFetcher(fail=True)

    async def scenario():
        scheduler = PeriodicScheduler(fetcher, interval_seconds=0.05)
        await scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.4)
        await scheduler.stop()
        await scheduler.wait_idle(timeout=1)
        return scheduler

    scheduler = asyncio.run(scenario())
    assert not scheduler.running
    assert len(fetcher.calls) >= 3
    start, end = fetcher.calls[0]
    assert end - start == timedelta(seconds=0.05)


def test_stop_halts_future_firings():
    fetcher = StubFetcher()

    async def scenario():
        scheduler = PeriodicScheduler(fetcher, interval_seconds=0.05)
        await scheduler.start()
        await asyncio.sleep(0.2)
        await scheduler.stop()
        await scheduler.wait_idle(timeout=1)
        count = len(fetcher.calls)
        await asyncio.sleep(0.2)
        return count

    count = asyncio.run(scenario())
    assert count >= 1
    assert len(fetcher.calls) == count


def test_overlapping_firing_is_skipped():
    release = threading.Event()
    fetcher = StubFetcher(block=release)

    async def scenario():
        scheduler = PeriodicScheduler(fetcher, interval_seconds=0.05)
        await scheduler.start()
        try:
            await asyncio.sleep(0.3)
            calls_while_blocked = len(fetcher.calls)
        finally:
            release.set()
        await scheduler.stop()
        await scheduler.wait_idle(timeout=1)
        return scheduler, calls_while_blocked

    scheduler, calls_while_blocked = asyncio.run(scenario())
    assert calls_while_blocked == 1
    assert scheduler.skipped >= 2


def test_stop_does_not_cancel_inflight_firing():
    release = threading.Event()
    fetcher = StubFetcher(block=release)

    async def scenario():
        scheduler = PeriodicScheduler(fetcher, interval_seconds=0.05)
        await scheduler.start()
        await asyncio.sleep(0.15)
        await scheduler.stop()
        still_running = not await scheduler.wait_idle(timeout=0.05)
        release.set()
        finished = await scheduler.wait_idle(timeout=1)
        return still_running, finished

    still_running, finished = asyncio.run(scenario())
    assert still_running
    assert finished


def test_start_errors():
    async def scenario():
        with pytest.raises(RuntimeError):
            await PeriodicScheduler(StubFetcher(), interval_seconds=0).start()

        scheduler = PeriodicScheduler(StubFetcher(), interval_seconds=60)
        await scheduler.start()
        with pytest.raises(RuntimeError, match="already running"):
            await scheduler.start()
        await scheduler.stop()

    asyncio.run(scenario())
