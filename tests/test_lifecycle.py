import asyncio
import json
import os
import signal
import socket
import sys
import threading
from urllib.request import urlopen

import pytest

from fakes import InMemoryRepository, StubFetcher, failing_bootstrap
from tsgateway.config import Settings
from tsgateway.errors import LifecycleError, StoreError
from tsgateway.lifecycle import LifecycleCoordinator, LifecycleState


def _settings(**overrides):
    values = {
        "host": "127.0.0.1",
        "port": 0,
        "ingestion_interval_seconds": 3600,
        "shutdown_grace_seconds": 2,
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(**values)


class RecordingRepository(InMemoryRepository):
    def __init__(self, events):
        super().__init__()
        self.events = events

    def close(self):
        self.events.append("repository closed")
        super().close()


async def _wait_for(predicate, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise TimeoutError("condition not reached")
        await asyncio.sleep(0.02)


def _get_json(url):
    with urlopen(url, timeout=5) as response:
        return json.loads(response.read())


def test_repository_failure_exits_nonzero():
    def broken(settings):
        raise StoreError("failed to open repository: connection refused")

    coordinator = LifecycleCoordinator(_settings(), repository_factory=broken)
    assert asyncio.run(coordinator.run()) == 1
    assert coordinator.state == LifecycleState.STOPPED


def test_bind_failure_exits_nonzero_and_closes_repository():
    repo = InMemoryRepository()
    with socket.socket() as taken:
        taken.bind(("127.0.0.1", 0))
        taken.listen()
        coordinator = LifecycleCoordinator(
            _settings(port=taken.getsockname()[1]),
            repository_factory=lambda s: repo,
            fetcher_factory=lambda s, r, o: StubFetcher(),
        )
        assert asyncio.run(coordinator.run()) == 1

    assert repo.closed
    assert coordinator.state == LifecycleState.STOPPED


def test_bootstrap_failure_is_fatal():
    repo = InMemoryRepository()
    fetcher = failing_bootstrap()
    coordinator = LifecycleCoordinator(
        _settings(),
        repository_factory=lambda s: repo,
        fetcher_factory=lambda s, r, o: fetcher,
    )

    assert asyncio.run(coordinator.run()) == 1
    assert fetcher.bootstrap_calls == 1
    assert repo.closed
    assert not coordinator.scheduler.running
    assert coordinator.state == LifecycleState.STOPPED


def test_requested_shutdown_is_graceful_and_ordered():
    events = []
    repo = RecordingRepository(events)
    fetcher = StubFetcher()
    coordinator = LifecycleCoordinator(
        _settings(),
        repository_factory=lambda s: repo,
        fetcher_factory=lambda s, r, o: fetcher,
    )

    async def scenario():
        task = asyncio.create_task(coordinator.run())
        await _wait_for(lambda: coordinator.state == LifecycleState.RUNNING and coordinator.server.started)

        health = await asyncio.to_thread(_get_json, f"http://127.0.0.1:{coordinator.bound_port}/v1/health")
        assert health == {"status": "SERVING"}
        assert coordinator.scheduler.running

        coordinator.request_shutdown("test")
        code = await task
        events.append(f"scheduler running={coordinator.scheduler.running}")
        return code

    assert asyncio.run(scenario()) == 0
    assert fetcher.bootstrap_calls == 1
    assert coordinator.root_context.cancelled
    assert coordinator.state == LifecycleState.STOPPED
    assert events == ["repository closed", "scheduler running=False"]


def test_listener_exit_while_running_is_fatal():
    repo = InMemoryRepository()
    coordinator = LifecycleCoordinator(
        _settings(),
        repository_factory=lambda s: repo,
        fetcher_factory=lambda s, r, o: StubFetcher(),
    )

    async def scenario():
        task = asyncio.create_task(coordinator.run())
        await _wait_for(lambda: coordinator.state == LifecycleState.RUNNING and coordinator.server.started)
        # Stop the listener without going through request_shutdown.
        coordinator.server.should_exit = True
        return await task

    assert asyncio.run(scenario()) == 1
    assert isinstance(coordinator.fatal_error, LifecycleError)
    assert "server stopped unexpectedly" in str(coordinator.fatal_error)
    assert not coordinator.scheduler.running
    assert repo.closed
    assert coordinator.state == LifecycleState.STOPPED


@pytest.mark.skipif(
    sys.platform == "win32" or threading.current_thread() is not threading.main_thread(),
    reason="needs loop signal handlers on the main thread",
)
def test_sigterm_triggers_graceful_shutdown():
    repo = InMemoryRepository()
    coordinator = LifecycleCoordinator(
        _settings(),
        repository_factory=lambda s: repo,
        fetcher_factory=lambda s, r, o: StubFetcher(),
    )

    async def scenario():
        task = asyncio.create_task(coordinator.run())
        await _wait_for(lambda: coordinator.state == LifecycleState.RUNNING and coordinator.server.started)
        os.kill(os.getpid(), signal.SIGTERM)
        return await asyncio.wait_for(task, timeout=10)

    assert asyncio.run(scenario()) == 0
    assert coordinator.fatal_error is None
    assert not coordinator.scheduler.running
    assert repo.closed
    assert coordinator.state == LifecycleState.STOPPED
