"""Cycle report webhook for KubeBan.

POSTs ``FanOutReport.to_dict()`` to an operator endpoint. Routing headers
(``X-KubeBan-Outcome``, ``X-KubeBan-Request-Id``, ``X-KubeBan-Kind``) let a
receiver filter or deduplicate without parsing the body.

Server errors (5xx) and transport failures are retried with exponential
backoff; a 4xx answer is final. The request id header stays the same across
retries so receivers can drop duplicates.
"""

from __future__ import annotations

import asyncio

import httpx
import structlog

from kubeban.models.invalidation import FanOutReport
from kubeban.reporting.manager import ReportSink

_log = structlog.get_logger(component="reporting.webhook")


def report_headers(report: FanOutReport) -> dict[str, str]:
    """Routing headers describing *report*."""
    return {
        "X-KubeBan-Outcome": report.outcome.value,
        "X-KubeBan-Request-Id": report.request.request_id,
        "X-KubeBan-Kind": report.request.kind.value,
    }


class WebhookReportSink(ReportSink):
    """Delivers cycle reports to a JSON webhook.

    Args:
        url:           Endpoint receiving the report.
        failures_only: Skip reports whose outcome is ``succeeded``.
        headers:       Extra headers sent with every request (e.g. Authorization).
        timeout:       Per-attempt HTTP timeout in seconds.
        max_retries:   Retries after the first attempt for 5xx and transport errors.
        backoff:       Delay before the first retry; doubled for each further one.
        transport:     Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        url: str,
        failures_only: bool = True,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
        max_retries: int = 2,
        backoff: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url:
            raise ValueError("report webhook url must not be empty")
        self._url = url
        self._failures_only = failures_only
        self._extra_headers = headers or {}
        self._timeout = timeout
        self._max_retries = max(max_retries, 0)
        self._backoff = backoff
        self._transport = transport

    @property
    def sink_name(self) -> str:
        return "webhook"

    def accepts(self, report: FanOutReport) -> bool:
        return not (self._failures_only and report.ok)

    async def send(self, report: FanOutReport) -> bool:
        """POST *report*; True once an attempt gets a 2xx answer."""
        headers = {**report_headers(report), **self._extra_headers}
        body = report.to_dict()
        request_id = report.request.request_id

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for attempt in range(1, self._max_retries + 2):
                retryable = await self._attempt(client, body, headers, request_id, attempt)
                if retryable is None:
                    return True
                if not retryable or attempt > self._max_retries:
                    return False
                await asyncio.sleep(self._backoff * 2 ** (attempt - 1))
        return False

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        body: dict[str, object],
        headers: dict[str, str],
        request_id: str,
        attempt: int,
    ) -> bool | None:
        """One POST. Returns None on success, else whether a retry may help."""
        try:
            response = await client.post(self._url, json=body, headers=headers)
        except httpx.TimeoutException:
            _log.warning("webhook_request_timeout", request_id=request_id, attempt=attempt)
            return True
        except httpx.HTTPError as exc:
            _log.warning("webhook_http_error", request_id=request_id, attempt=attempt, error=str(exc))
            return True

        if response.is_success:
            return None
        _log.warning(
            "webhook_rejected_report",
            request_id=request_id,
            attempt=attempt,
            status_code=response.status_code,
            body=response.text[:200],
        )
        return response.is_server_error
