"""Cycle report delivery for KubeBan.

Every cycle is always summarised on the structured log by the orchestrator;
sinks registered here receive the full FanOutReport in addition.

Exports:
    ReportSink         -- Abstract base for all sink implementations.
    ReportDispatcher   -- Sends a report to all registered sinks without
                          blocking the consumer loop.
    WebhookReportSink  -- Generic JSON POST webhook sink.
    build_report_dispatcher -- Factory used by the application bootstrap.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from kubeban.reporting.manager import ReportDispatcher, ReportSink
from kubeban.reporting.webhook import WebhookReportSink

if TYPE_CHECKING:
    from kubeban.models.config import ReportConfig

_log = structlog.get_logger(component="reporting")

__all__ = [
    "ReportDispatcher",
    "ReportSink",
    "WebhookReportSink",
    "build_report_dispatcher",
]


def build_report_dispatcher(config: ReportConfig) -> ReportDispatcher:
    """Build a ReportDispatcher from configuration.

    Webhook:
        KUBEBAN_REPORT_WEBHOOK_URL enables the sink;
        KUBEBAN_REPORT_WEBHOOK_FAILURES_ONLY limits it to non-successful cycles.
        KUBEBAN_REPORT_WEBHOOK_MAX_RETRIES bounds retries on 5xx and transport errors.
    """
    sinks: list[ReportSink] = []

    if config.webhook_url:
        sinks.append(
            WebhookReportSink(
                url=config.webhook_url,
                failures_only=config.webhook_failures_only,
                max_retries=config.webhook_max_retries,
            )
        )
        _log.info("webhook_sink_enabled", failures_only=config.webhook_failures_only)

    if not sinks:
        _log.info("no_report_sinks_configured")

    return ReportDispatcher(sinks=sinks)
