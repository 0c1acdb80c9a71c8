"""
Process lifecycle and ordered shutdown.

STARTING -> BOOTSTRAP_PENDING -> RUNNING -> SHUTTING_DOWN -> STOPPED

The backfill, the scheduler and the HTTP listener start together. A signal,
a failed backfill or a listener failure moves to SHUTTING_DOWN, which drains the
listener, stops the scheduler and closes the repository, in that order.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import socket
from enum import Enum
from typing import Callable, Optional

import uvicorn

from tsgateway.api import GatewayComponents, create_app
from tsgateway.cache.lru_cache import LRUCache
from tsgateway.config import Settings
from tsgateway.context import RequestContext
from tsgateway.database import PostgresRepository, TimeSeriesRepository
from tsgateway.errors import LifecycleError
from tsgateway.health import SERVICE_NAME, HealthChecker, ServingStatus
from tsgateway.ingestion import SeriesFetcher
from tsgateway.internal_metrics import MetricsCollector
from tsgateway.middleware.pipeline import build_pipeline
from tsgateway.middleware.rate_limiter import TokenBucket
from tsgateway.observability import RuntimeObservability
from tsgateway.scheduler import PeriodicScheduler
from tsgateway.service import TimeSeriesService

logger = logging.getLogger(__name__)

RepositoryFactory = Callable[[Settings], TimeSeriesRepository]
FetcherFactory = Callable[[Settings, TimeSeriesRepository, RuntimeObservability], SeriesFetcher]


class LifecycleState(str, Enum):
    STARTING = "STARTING"
    BOOTSTRAP_PENDING = "BOOTSTRAP_PENDING"
    RUNNING = "RUNNING"
    SHUTTING_DOWN = "SHUTTING_DOWN"
    STOPPED = "STOPPED"


class GatewayServer(uvicorn.Server):
    """uvicorn server whose signals are handled by the coordinator."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def default_fetcher_factory(settings: Settings, repository: TimeSeriesRepository, observability: RuntimeObservability) -> SeriesFetcher:
    return SeriesFetcher(
        settings.upstream_url,
        repository,
        observability=observability,
        request_timeout_seconds=settings.upstream_timeout_seconds,
    )


class LifecycleCoordinator:
    """Owns startup, concurrent run and ordered shutdown of every component."""

    def __init__(
        self,
        settings: Settings,
        repository_factory: RepositoryFactory = PostgresRepository.connect,
        fetcher_factory: FetcherFactory = default_fetcher_factory,
    ):
        self.settings = settings
        self.repository_factory = repository_factory
        self.fetcher_factory = fetcher_factory
        self.state = LifecycleState.STARTING
        self.root_context = RequestContext.background()
        self.health = HealthChecker()
        self.repository: Optional[TimeSeriesRepository] = None
        self.scheduler: Optional[PeriodicScheduler] = None
        self.server: Optional[GatewayServer] = None
        self.bound_port: Optional[int] = None
        self.fatal_error: Optional[BaseException] = None
        self._shutdown_requested: Optional[asyncio.Event] = None

    def _transition(self, state: LifecycleState):
        logger.info(f"Lifecycle {self.state.value} -> {state.value}")
        self.state = state

    def request_shutdown(self, reason: str = "requested"):
        logger.info(f"Shutdown requested: {reason}")
        if self._shutdown_requested is not None:
            self._shutdown_requested.set()

    def _fail(self, error: BaseException):
        if self.fatal_error is None:
            self.fatal_error = error
        logger.error(f"Fatal lifecycle error: {error}", exc_info=error)

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop):
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, f"signal {sig.name}")
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig.name} not installed")

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop):
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

    def _bind_socket(self) -> socket.socket:
        try:
            sock = socket.create_server((self.settings.host, self.settings.port))
        except OSError as exc:
            raise LifecycleError(f"failed to listen on {self.settings.host}:{self.settings.port}: {exc}") from exc
        self.bound_port = sock.getsockname()[1]
        return sock

    def build_components(self, repository: TimeSeriesRepository, observability: RuntimeObservability) -> GatewayComponents:
        cache = LRUCache(self.settings.cache_size)
        limiter = TokenBucket(rate=self.settings.rate_limit, burst=self.settings.rate_limit_burst)
        collector = MetricsCollector()
        service = TimeSeriesService(repository)
        return GatewayComponents(
            pipeline=build_pipeline(service.query_time_series, cache, limiter, collector),
            health=self.health,
            metrics=collector,
            cache=cache,
            observability=observability,
            request_timeout_seconds=self.settings.request_timeout_seconds,
        )

    async def run(self) -> int:
        """Run until shutdown; returns the process exit code."""
        loop = asyncio.get_running_loop()
        self._shutdown_requested = asyncio.Event()

        try:
            self.repository = self.repository_factory(self.settings)
        except Exception as exc:
            self._fail(LifecycleError(f"failed to create repository: {exc}"))
            self._transition(LifecycleState.STOPPED)
            return 1

        try:
            observability = RuntimeObservability()
            components = self.build_components(self.repository, observability)
            fetcher = self.fetcher_factory(self.settings, self.repository, observability)
            self.scheduler = PeriodicScheduler(
                fetcher,
                interval_seconds=self.settings.ingestion_interval_seconds,
                fetch_timeout_seconds=self.settings.ingestion_fetch_timeout_seconds,
            )
            sock = self._bind_socket()
        except Exception as exc:
            self._fail(exc)
            self._close_repository()
            self._transition(LifecycleState.STOPPED)
            return 1

        config = uvicorn.Config(
            create_app(components),
            log_level=self.settings.log_level.lower(),
            timeout_graceful_shutdown=self.settings.shutdown_grace_seconds,
            access_log=True,
        )
        self.server = GatewayServer(config)
        self._install_signal_handlers(loop)

        self._transition(LifecycleState.BOOTSTRAP_PENDING)
        self.health.set_serving_status("", ServingStatus.SERVING)
        self.health.set_serving_status(SERVICE_NAME, ServingStatus.SERVING)

        bootstrap_task = asyncio.create_task(
            asyncio.to_thread(fetcher.bootstrap_historical_data, self.root_context),
            name="historical-bootstrap",
        )
        server_task = asyncio.create_task(self.server.serve(sockets=[sock]), name="http-listener")
        shutdown_task = asyncio.create_task(self._shutdown_requested.wait(), name="shutdown-signal")

        try:
            await self.scheduler.start()
        except Exception as exc:
            self._fail(LifecycleError(f"scheduler error: {exc}"))
            self._shutdown_requested.set()

        logger.info(f"Serving on {self.settings.host}:{self.bound_port}")
        pending = {bootstrap_task, server_task, shutdown_task}
        while shutdown_task in pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)

            if bootstrap_task in done:
                exc = bootstrap_task.exception()
                if exc is not None:
                    self._fail(LifecycleError(f"bootstrap error: {exc}"))
                    break
                logger.info("Bootstrap completed, continuing to run scheduler and server")
                self._transition(LifecycleState.RUNNING)

            if server_task in done:
                exc = server_task.exception()
                self._fail(LifecycleError(f"server error: {exc}" if exc else "server stopped unexpectedly"))
                break

        await self._shutdown(server_task, bootstrap_task, shutdown_task)
        self._remove_signal_handlers(loop)
        return 0 if self.fatal_error is None else 1

    async def _shutdown(self, server_task: asyncio.Task, bootstrap_task: asyncio.Task, shutdown_task: asyncio.Task):
        self._transition(LifecycleState.SHUTTING_DOWN)
        grace = self.settings.shutdown_grace_seconds
        self.health.set_all(ServingStatus.NOT_SERVING)
        self.root_context.cancel()

        logger.info("Gracefully stopping server...")
        self.server.should_exit = True
        if not server_task.done():
            try:
                await server_task
            except Exception as exc:
                self._fail(LifecycleError(f"server error during shutdown: {exc}"))
        logger.info("Server stopped")

        logger.info("Stopping scheduler...")
        await self.scheduler.stop()
        if not await self.scheduler.wait_idle(timeout=grace):
            logger.warning("In-flight ingestion run did not finish within the grace period")
        logger.info("Scheduler stopped")

        if not bootstrap_task.done():
            await asyncio.wait({bootstrap_task}, timeout=grace)
        if not bootstrap_task.done():
            logger.warning("Historical bootstrap still running at shutdown")
        elif bootstrap_task.exception() is not None and self.fatal_error is None:
            logger.warning(f"Bootstrap ended during shutdown: {bootstrap_task.exception()}")

        shutdown_task.cancel()
        self._close_repository()
        self._transition(LifecycleState.STOPPED)
        logger.info("Shutdown complete")

    def _close_repository(self):
        if self.repository is None:
            return
        try:
            self.repository.close()
        except Exception as exc:
            logger.error(f"Failed to close repository: {exc}", exc_info=True)
