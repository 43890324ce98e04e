"""Application bootstrap for KubeBan.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → K8s clients → Redis subscription
              → resolver/discovery/executor → report sinks
              → orchestrator → REST

Shutdown is graceful: components are stopped in reverse startup order and an
in-flight fan-out cycle is given a grace period to finish. Each component's
stop error is caught and logged independently.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from kubeban.config import load_config
from kubeban.models.config import KubeBanConfig
from kubeban.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from kubeban.broadcaster.orchestrator import FanOutOrchestrator
    from kubeban.broadcaster.source import RedisEventSource
    from kubeban.cluster.client import KubeClients
    from kubeban.reporting.manager import ReportDispatcher

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


def build_orchestrator(
    config: KubeBanConfig,
    clients: KubeClients,
    source: object,
    dispatcher: ReportDispatcher | None = None,
) -> FanOutOrchestrator:
    """Assemble the fan-out pipeline around an event source."""
    from kubeban.broadcaster.orchestrator import FanOutOrchestrator
    from kubeban.cluster.executor import ParallelExecutor, PodExecSession
    from kubeban.cluster.fleet import FleetDiscovery, KubeFleetDirectory
    from kubeban.cluster.resolver import KubeServiceDirectory, TargetResolver

    return FanOutOrchestrator(
        source=source,  # type: ignore[arg-type]
        resolver=TargetResolver(
            KubeServiceDirectory(clients.core_v1),
            cluster_domain=config.fleet.cluster_domain,
        ),
        discovery=FleetDiscovery(
            KubeFleetDirectory(clients.core_v1),
            namespace=config.fleet.namespace,
            role_name=config.fleet.container_name,
            label_selector=config.fleet.label_selector,
        ),
        executor=ParallelExecutor(
            PodExecSession(clients.exec_v1),
            timeout_seconds=config.exec.timeout_seconds,
            max_concurrency=config.exec.max_concurrency,
        ),
        commands=config.commands,
        reload_sentinel=config.reload_sentinel,
        dispatcher=dispatcher,
    )


class KubeBanApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    Calling ``stop()`` on an app that was never started (or already stopped)
    is safe.
    """

    def __init__(self) -> None:
        self.config: KubeBanConfig | None = None

        self._kube: KubeClients | None = None
        self._redis: object | None = None
        self._source: RedisEventSource | None = None
        self._dispatcher: ReportDispatcher | None = None
        self._orchestrator: FanOutOrchestrator | None = None
        self._rest_server: object | None = None

        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._stopping = False
        self._stopped = asyncio.Event()
        self.exit_code = 0
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def wait_stopped(self) -> None:
        """Block until ``stop()`` has completed."""
        await self._stopped.wait()

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        The caller (main()) turns this into a non-zero exit.
        """
        # --- 1. Configuration -------------------------------------------
        try:
            self.config = load_config()
        except ValueError as exc:
            raise _ComponentError("config", exc) from exc

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("kubeban starting", version=_kubeban_version())

        # --- 3. Kubernetes clients ---------------------------------------
        await self._start_k8s_clients()

        # --- 4. Redis subscription ---------------------------------------
        await self._start_event_source()

        # --- 5. Report sinks ---------------------------------------------
        await self._start_reporting()

        # --- 6. Fan-out orchestrator --------------------------------------
        await self._start_orchestrator()

        # --- 7. REST API -------------------------------------------------
        await self._start_rest()

        self._running = True
        self._log.info(
            "kubeban started",
            channel=self.config.channel,
            namespace=self.config.fleet.namespace,
            container=self.config.fleet.container_name,
        )

    async def _start_k8s_clients(self) -> None:
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting k8s clients")
        try:
            from kubeban.cluster.client import load_kube_clients

            self._kube = await load_kube_clients(self.config.kube.kubeconfig)
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_event_source(self) -> None:
        """Connect to Redis and wait for the subscription to be confirmed."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting event source", channel=self.config.channel)
        try:
            from kubeban.broadcaster.source import RedisEventSource, build_redis_client

            self._redis = build_redis_client(self.config.redis)
            source = RedisEventSource(
                self._redis,
                self.config.channel,
                reconnect_delay=self.config.redis.reconnect_delay_seconds,
            )
            await source.subscribe()
            self._source = source
        except Exception as exc:
            raise _ComponentError("event_source", exc) from exc

    async def _start_reporting(self) -> None:
        """Configure report sinks.  Non-fatal: cycles are always logged."""
        assert self._log is not None
        assert self.config is not None
        try:
            from kubeban.reporting import build_report_dispatcher

            self._dispatcher = build_report_dispatcher(self.config.report)
        except Exception as exc:
            self._log.warning(
                "report dispatcher failed to start; reports are log-only",
                error=str(exc),
            )
            self._dispatcher = None

    async def _start_orchestrator(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self._kube is not None
        assert self._source is not None
        try:
            orchestrator = build_orchestrator(self.config, self._kube, self._source, self._dispatcher)
            task = orchestrator.start()
            task.add_done_callback(self._on_consumer_done)
            self._orchestrator = orchestrator
            self._log.info("orchestrator started")
        except Exception as exc:
            raise _ComponentError("orchestrator", exc) from exc

    async def _start_rest(self) -> None:
        """Start the uvicorn status server."""
        assert self._log is not None
        assert self.config is not None
        if not self.config.api.enabled:
            self._log.info("rest api disabled (api.enabled=false)")
            return
        try:
            import uvicorn  # type: ignore[import-untyped]

            from kubeban.api import build_app

            fastapi_app = build_app(
                orchestrator=self._orchestrator,
                source=self._source,
                config=self.config,
            )
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    def _on_consumer_done(self, task: asyncio.Task[None]) -> None:
        """The consumer only ends on shutdown; anything else stops the app."""
        if task.cancelled() or not self._running:
            return
        log = self._log or get_logger("app")
        exc = task.exception()
        log.critical("consumer loop exited", error=str(exc) if exc else "event source exhausted")
        self.exit_code = 1
        asyncio.ensure_future(self.stop())

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if self._stopping:
            return
        if not self._running and self._log is None:
            self._stopped.set()
            return
        self._stopping = True

        log = self._log or get_logger("app")
        log.info("kubeban shutting down")
        self._running = False

        if self._rest_server is not None:
            self._rest_server.should_exit = True  # type: ignore[attr-defined]

        if self._orchestrator is not None:
            await self._orchestrator.stop(grace_seconds=_SHUTDOWN_GRACE_SECONDS)
            self._orchestrator = None

        for task in reversed(self._background_tasks):
            if not task.done():
                try:
                    await asyncio.wait_for(asyncio.shield(task), timeout=_SHUTDOWN_GRACE_SECONDS)
                except TimeoutError:
                    task.cancel()
                except Exception as exc:
                    log.debug("background task raised on shutdown", task=task.get_name(), error=str(exc))
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()
        self._rest_server = None

        await self._stop_component("reporting", self._dispatcher)
        self._dispatcher = None
        await self._stop_component("event_source", self._source, method="close")
        self._source = None
        await self._stop_component("redis", self._redis, method="aclose")
        self._redis = None
        await self._stop_component("k8s_client", self._kube, method="close")
        self._kube = None

        log.info("kubeban stopped")
        self._log = None
        self._stopping = False
        self._stopped.set()

    async def _stop_component(self, name: str, component: object | None, method: str = "stop") -> None:
        """Call *method* on a component if present, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, method, None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))


def _kubeban_version() -> str:
    from kubeban import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = KubeBanApp()
    loop = asyncio.get_running_loop()

    shutdown_triggered = False

    def _request_shutdown() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            return
        shutdown_triggered = True
        asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        # Block until shutdown has completed (background tasks run concurrently)
        await app.wait_stopped()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()

    if app.exit_code:
        raise SystemExit(app.exit_code)
