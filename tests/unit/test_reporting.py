"""Tests for the report dispatcher and the webhook sink."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from kubeban.models.config import ReportConfig
from kubeban.models.invalidation import (
    CycleOutcome,
    ExecutionResult,
    FanOutReport,
    InvalidationRequest,
    RequestKind,
)
from kubeban.reporting import build_report_dispatcher
from kubeban.reporting.manager import ReportDispatcher, ReportSink
from kubeban.reporting.webhook import WebhookReportSink
from tests.fakes import make_target


def _report(ok: bool = False) -> FanOutReport:
    request = InvalidationRequest(kind=RequestKind.TARGETED_BAN, payload="web", service_name="web")
    results = [ExecutionResult(target=make_target("varnish-0"), success=True)]
    if not ok:
        results.append(
            ExecutionResult(target=make_target("varnish-1"), success=False, error="exit status 1", exit_code=1)
        )
    return FanOutReport.from_results(request, results, cache_key="web.prod.svc.cluster.local")


class _RecordingSink(ReportSink):
    def __init__(self, name: str = "recording", delay: float = 0.0, failures_only: bool = False) -> None:
        self._name = name
        self._delay = delay
        self._failures_only = failures_only
        self.received: list[FanOutReport] = []

    @property
    def sink_name(self) -> str:
        return self._name

    def accepts(self, report: FanOutReport) -> bool:
        return not (self._failures_only and report.ok)

    async def send(self, report: FanOutReport) -> bool:
        await asyncio.sleep(self._delay)
        self.received.append(report)
        return True


class _ExplodingSink(ReportSink):
    @property
    def sink_name(self) -> str:
        return "exploding"

    async def send(self, report: FanOutReport) -> bool:
        raise RuntimeError("sink bug")


class TestReportDispatcher:
    async def test_delivers_to_every_sink(self) -> None:
        first, second = _RecordingSink("a"), _RecordingSink("b")
        dispatcher = ReportDispatcher([first, second])
        report = _report()
        dispatcher.dispatch(report)
        await dispatcher.stop()
        assert first.received == [report]
        assert second.received == [report]

    async def test_dispatch_does_not_block(self) -> None:
        slow = _RecordingSink(delay=0.2)
        dispatcher = ReportDispatcher([slow])
        dispatcher.dispatch(_report())
        assert slow.received == []
        await dispatcher.stop()
        assert len(slow.received) == 1

    async def test_failing_sink_does_not_affect_others(self) -> None:
        good = _RecordingSink()
        dispatcher = ReportDispatcher([_ExplodingSink(), good])
        dispatcher.dispatch(_report())
        await dispatcher.stop()
        assert len(good.received) == 1

    async def test_accepts_filter(self) -> None:
        sink = _RecordingSink(failures_only=True)
        dispatcher = ReportDispatcher([sink])
        dispatcher.dispatch(_report(ok=True))
        dispatcher.dispatch(_report(ok=False))
        await dispatcher.stop()
        assert [r.outcome for r in sink.received] == [CycleOutcome.PARTIAL_FAILURE]

    async def test_stop_without_deliveries(self) -> None:
        await ReportDispatcher([]).stop()


class TestWebhookReportSink:
    async def test_posts_report_json(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(204)

        sink = WebhookReportSink(
            "https://hooks.example.com/kubeban",
            headers={"Authorization": "Bearer t0ken"},
            transport=httpx.MockTransport(handler),
        )
        assert await sink.send(_report()) is True

        body = json.loads(captured[0].content)
        assert captured[0].headers["Authorization"] == "Bearer t0ken"
        assert body["outcome"] == "partial_failure"
        assert body["failures"][0]["target"] == "varnish/varnish-1:cache-service"
        assert body["cache_key"] == "web.prod.svc.cluster.local"

    async def test_non_2xx_returns_false(self) -> None:
        sink = WebhookReportSink(
            "https://hooks.example.com/kubeban",
            max_retries=0,
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
        )
        assert await sink.send(_report()) is False

    async def test_transport_error_returns_false(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        sink = WebhookReportSink("https://hooks.example.com/kubeban", backoff=0, transport=httpx.MockTransport(handler))
        assert await sink.send(_report()) is False

    async def test_timeout_returns_false(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        sink = WebhookReportSink("https://hooks.example.com/kubeban", backoff=0, transport=httpx.MockTransport(handler))
        assert await sink.send(_report()) is False

    async def test_outcome_headers(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200)

        report = _report()
        sink = WebhookReportSink("https://hooks.example.com/kubeban", transport=httpx.MockTransport(handler))
        assert await sink.send(report) is True

        headers = captured[0].headers
        assert headers["X-KubeBan-Outcome"] == "partial_failure"
        assert headers["X-KubeBan-Request-Id"] == report.request.request_id
        assert headers["X-KubeBan-Kind"] == report.request.kind.value

    async def test_server_error_is_retried(self) -> None:
        statuses = iter([503, 502, 200])
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(next(statuses))

        sink = WebhookReportSink("https://hooks.example.com/kubeban", backoff=0, transport=httpx.MockTransport(handler))
        assert await sink.send(_report()) is True
        assert len(captured) == 3
        assert len({r.headers["X-KubeBan-Request-Id"] for r in captured}) == 1

    async def test_connect_error_is_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(204)

        sink = WebhookReportSink("https://hooks.example.com/kubeban", backoff=0, transport=httpx.MockTransport(handler))
        assert await sink.send(_report()) is True
        assert calls == 2

    async def test_client_error_is_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(422, text="unknown field")

        sink = WebhookReportSink("https://hooks.example.com/kubeban", backoff=0, transport=httpx.MockTransport(handler))
        assert await sink.send(_report()) is False
        assert calls == 1

    async def test_retries_are_bounded(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(500)

        sink = WebhookReportSink(
            "https://hooks.example.com/kubeban",
            max_retries=3,
            backoff=0,
            transport=httpx.MockTransport(handler),
        )
        assert await sink.send(_report()) is False
        assert calls == 4

    async def test_backoff_doubles_between_attempts(self, monkeypatch: pytest.MonkeyPatch) -> None:
        delays: list[float] = []

        async def fake_sleep(delay: float) -> None:
            delays.append(delay)

        monkeypatch.setattr("kubeban.reporting.webhook.asyncio.sleep", fake_sleep)
        sink = WebhookReportSink(
            "https://hooks.example.com/kubeban",
            max_retries=2,
            backoff=0.5,
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        assert await sink.send(_report()) is False
        assert delays == [0.5, 1.0]

    def test_failures_only_filter(self) -> None:
        sink = WebhookReportSink("https://hooks.example.com/kubeban")
        assert sink.accepts(_report(ok=False))
        assert not sink.accepts(_report(ok=True))
        assert WebhookReportSink("https://hooks.example.com/kubeban", failures_only=False).accepts(_report(ok=True))

    def test_empty_url_rejected(self) -> None:
        with pytest.raises(ValueError):
            WebhookReportSink("")


class TestBuildReportDispatcher:
    def test_no_url_means_no_sinks(self) -> None:
        assert build_report_dispatcher(ReportConfig()).sinks == []

    def test_webhook_configured(self) -> None:
        dispatcher = build_report_dispatcher(ReportConfig(webhook_url="https://hooks.example.com/kubeban"))
        assert [s.sink_name for s in dispatcher.sinks] == ["webhook"]
