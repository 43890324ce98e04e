"""Fan-out orchestrator: one invalidation request at a time.

Each message drives a full cycle: classify → resolve (bans only) → build the
command → discover ready cache containers → execute on all of them in
parallel → aggregate a FanOutReport. The next message is not read until the
current cycle's report has been emitted, so cycles never overlap.

Failures never end the consumer loop: an unknown service drops the message,
an unreachable Kubernetes API abandons the cycle, and per-container failures
are recorded in the report.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterable
from enum import StrEnum
from typing import Protocol

import structlog

from kubeban.broadcaster.commands import build_command
from kubeban.errors import DirectoryUnavailableError, DiscoveryFailedError, ServiceNotFoundError
from kubeban.models.config import CommandConfig
from kubeban.models.invalidation import (
    CycleOutcome,
    ExecutionResult,
    ExecutionTarget,
    FanOutReport,
    InvalidationRequest,
    RequestKind,
)
from kubeban.observability.metrics import cycle_duration_seconds, cycles_total, fleet_targets

_log = structlog.get_logger(component="broadcaster.orchestrator")

_SHUTDOWN_GRACE_SECONDS = 15


class OrchestratorState(StrEnum):
    """Where the orchestrator is within a cycle."""

    IDLE = "idle"
    RESOLVING = "resolving"
    EXECUTING = "executing"


class Resolver(Protocol):
    async def resolve(self, service_name: str) -> str: ...


class Discovery(Protocol):
    async def discover(self, command: str) -> list[ExecutionTarget]: ...


class Executor(Protocol):
    async def execute(self, targets: list[ExecutionTarget]) -> list[ExecutionResult]: ...


class ReportEmitter(Protocol):
    def dispatch(self, report: FanOutReport) -> None: ...


class FanOutOrchestrator:
    """Sequential consumer that turns each payload into one fan-out cycle.

    All collaborators are injected; the orchestrator owns no clients.
    """

    def __init__(
        self,
        source: AsyncIterable[str] | None,
        resolver: Resolver,
        discovery: Discovery,
        executor: Executor,
        commands: CommandConfig | None = None,
        reload_sentinel: str = "configReload",
        dispatcher: ReportEmitter | None = None,
    ) -> None:
        self._source = source
        self._resolver = resolver
        self._discovery = discovery
        self._executor = executor
        self._commands = commands or CommandConfig()
        self._reload_sentinel = reload_sentinel
        self._dispatcher = dispatcher

        self._state = OrchestratorState.IDLE
        self._idle = asyncio.Event()
        self._idle.set()
        self._cycles_processed = 0
        self._last_report: FanOutReport | None = None
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def cycles_processed(self) -> int:
        return self._cycles_processed

    @property
    def last_report(self) -> FanOutReport | None:
        return self._last_report

    # ------------------------------------------------------------------
    # Consumer loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Consume the event source until it is exhausted or closed."""
        if self._source is None:
            raise RuntimeError("orchestrator has no event source; use handle() for one-shot cycles")
        _log.info("consumer_started")
        async for payload in self._source:
            await self.handle(payload)
        _log.info("consumer_finished", cycles=self._cycles_processed)

    def start(self) -> asyncio.Task[None]:
        """Run the consumer loop as a background task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="fanout-consumer")
        return self._task

    async def stop(self, grace_seconds: float = _SHUTDOWN_GRACE_SECONDS) -> None:
        """Let an in-flight cycle finish, then cancel the consumer task."""
        task = self._task
        if task is None:
            return
        if not task.done() and not self._idle.is_set():
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=grace_seconds)
            except TimeoutError:
                _log.warning("in-flight cycle did not finish before shutdown", timeout=grace_seconds)
        if not task.done():
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        self._task = None

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def handle(self, payload: str) -> FanOutReport:
        """Run one complete fan-out cycle for *payload* and emit its report."""
        request = InvalidationRequest.from_payload(payload, self._reload_sentinel)
        t_start = time.monotonic()
        self._idle.clear()
        try:
            with structlog.contextvars.bound_contextvars(request_id=request.request_id):
                try:
                    report = await self._run_cycle(request)
                except Exception as exc:  # noqa: BLE001
                    _log.exception("fanout_cycle_error", payload=payload[:200])
                    report = FanOutReport(
                        request=request,
                        outcome=CycleOutcome.ABANDONED,
                        reason=f"unexpected error: {type(exc).__name__}: {exc}",
                    )
                finally:
                    self._state = OrchestratorState.IDLE

                report.duration_ms = (time.monotonic() - t_start) * 1000.0
                self._emit(report)
        finally:
            self._idle.set()
        return report

    async def _run_cycle(self, request: InvalidationRequest) -> FanOutReport:
        self._state = OrchestratorState.RESOLVING
        _log.info("fanout_cycle_started", kind=request.kind.value, service=request.service_name)

        cache_key: str | None = None
        try:
            if request.kind == RequestKind.TARGETED_BAN:
                assert request.service_name is not None
                cache_key = await self._resolver.resolve(request.service_name)
            command = build_command(request, cache_key, self._commands)
            targets = await self._discovery.discover(command)
        except ServiceNotFoundError as exc:
            _log.warning("service_not_found", service=exc.service_name)
            return FanOutReport(request=request, outcome=CycleOutcome.NOT_FOUND, reason=str(exc))
        except DirectoryUnavailableError as exc:
            _log.error("service_directory_unavailable", error=str(exc))
            return FanOutReport(request=request, outcome=CycleOutcome.ABANDONED, reason=str(exc))
        except DiscoveryFailedError as exc:
            _log.error("fleet_discovery_failed", namespace=exc.namespace, error=str(exc))
            return FanOutReport(
                request=request,
                outcome=CycleOutcome.ABANDONED,
                cache_key=cache_key,
                reason=str(exc),
            )

        self._state = OrchestratorState.EXECUTING
        fleet_targets.set(len(targets))
        results = await self._executor.execute(targets)
        return FanOutReport.from_results(request, results, cache_key=cache_key, command=command)

    def _emit(self, report: FanOutReport) -> None:
        """Record, log and dispatch *report*: exactly once per cycle."""
        self._cycles_processed += 1
        self._last_report = report
        cycles_total.labels(outcome=report.outcome.value).inc()
        cycle_duration_seconds.observe(report.duration_ms / 1000.0)

        log_fn = _log.info
        if report.outcome in (CycleOutcome.FAILED, CycleOutcome.ABANDONED):
            log_fn = _log.error
        elif report.outcome != CycleOutcome.SUCCEEDED:
            log_fn = _log.warning
        log_fn(
            "fanout_cycle_complete",
            summary=report.summary,
            outcome=report.outcome.value,
            attempted=report.attempted,
            succeeded=report.succeeded,
            failures=[{"target": r.target.identity, "error": r.error} for r in report.failures],
            duration_ms=round(report.duration_ms, 1),
        )

        if self._dispatcher is not None:
            self._dispatcher.dispatch(report)
