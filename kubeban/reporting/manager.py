"""Report dispatcher for KubeBan.

ReportSink       -- ABC every sink must implement.
ReportDispatcher -- Fans each cycle report out to all registered sinks;
                    failures in one sink never block others or the
                    consumer loop.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

import structlog

from kubeban.models.invalidation import FanOutReport
from kubeban.observability.metrics import reports_total

_log = structlog.get_logger(component="reporting.manager")


class ReportSink(ABC):
    """Abstract base class for all report sinks.

    Every concrete sink must implement ``send``, which should not raise:
    return ``False`` instead.
    """

    @property
    @abstractmethod
    def sink_name(self) -> str:
        """Identifier used in metrics and logs."""

    def accepts(self, report: FanOutReport) -> bool:
        """Return False to skip *report* for this sink."""
        return True

    @abstractmethod
    async def send(self, report: FanOutReport) -> bool:
        """Deliver *report*.

        Returns:
            True  -- accepted by the remote endpoint.
            False -- delivery failed (already logged inside implementation).
        """


class ReportDispatcher:
    """Fan-out dispatcher that hands each report to every registered sink.

    * Never raises: exceptions from individual sinks are caught and logged.
    * Never blocks the caller: ``dispatch`` schedules delivery as a
      background task; ``stop`` waits for pending deliveries.
    """

    def __init__(self, sinks: list[ReportSink]) -> None:
        self._sinks = sinks
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def sinks(self) -> list[ReportSink]:
        return list(self._sinks)

    def dispatch(self, report: FanOutReport) -> None:
        """Schedule delivery of *report* to the sinks that accept it."""
        sinks = [sink for sink in self._sinks if sink.accepts(report)]
        if not sinks:
            return
        task = asyncio.ensure_future(self._fan_out(sinks, report))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def stop(self) -> None:
        """Wait for in-flight deliveries."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _fan_out(self, sinks: list[ReportSink], report: FanOutReport) -> None:
        tasks = [self._send_one(sink, report) for sink in sinks]
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _send_one(self, sink: ReportSink, report: FanOutReport) -> None:
        """Deliver to a single sink, recording metrics regardless of outcome."""
        try:
            success = await sink.send(report)
        except Exception as exc:  # noqa: BLE001
            _log.error(
                "report_sink_unexpected_error",
                sink=sink.sink_name,
                request_id=report.request.request_id,
                error=str(exc),
            )
            success = False

        label = "true" if success else "false"
        reports_total.labels(sink=sink.sink_name, success=label).inc()

        if success:
            _log.debug("report_sent", sink=sink.sink_name, request_id=report.request.request_id)
        else:
            _log.warning("report_failed", sink=sink.sink_name, request_id=report.request.request_id)
