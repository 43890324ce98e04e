"""Status API routes."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from kubeban.api.schemas import (
    ErrorResponse,
    FailureView,
    HealthResponse,
    ReadyResponse,
    ReportView,
    StatusResponse,
)
from kubeban.models.invalidation import FanOutReport

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness: the process is up and serving."""
    from kubeban import __version__

    return HealthResponse(version=__version__)


@router.get("/ready", response_model=ReadyResponse, responses={503: {"model": ErrorResponse}})
async def ready(request: Request) -> ReadyResponse | JSONResponse:
    """Readiness: the pub/sub subscription is live."""
    source = request.app.state.source
    if source is None or not source.subscribed:
        return JSONResponse(
            status_code=503,
            content=ErrorResponse(error="NOT_SUBSCRIBED", detail="event source is not subscribed").model_dump(),
        )
    return ReadyResponse(channel=source.channel)


@router.get("/status", response_model=StatusResponse)
async def status(request: Request) -> StatusResponse:
    """Orchestrator state and the most recent cycle report."""
    from kubeban import __version__

    orchestrator = request.app.state.orchestrator
    source = request.app.state.source
    config = request.app.state.config

    last = orchestrator.last_report
    return StatusResponse(
        version=__version__,
        state=orchestrator.state.value,
        channel=config.channel,
        subscribed=bool(source is not None and source.subscribed),
        namespace=config.fleet.namespace,
        container=config.fleet.container_name,
        cycles_processed=orchestrator.cycles_processed,
        last_report=_report_view(last) if last is not None else None,
    )


def _report_view(report: FanOutReport) -> ReportView:
    return ReportView(
        request_id=report.request.request_id,
        kind=report.request.kind.value,
        service_name=report.request.service_name,
        outcome=report.outcome.value,
        attempted=report.attempted,
        succeeded=report.succeeded,
        failures=[
            FailureView(target=r.target.identity, error=r.error, exit_code=r.exit_code) for r in report.failures
        ],
        cache_key=report.cache_key,
        reason=report.reason,
        duration_ms=round(report.duration_ms, 1),
        summary=report.summary,
    )
