"""Pydantic response models for the status API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    error: str
    detail: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str


class ReadyResponse(BaseModel):
    status: str = "ready"
    channel: str


class FailureView(BaseModel):
    target: str
    error: str
    exit_code: int | None = None


class ReportView(BaseModel):
    request_id: str
    kind: str
    service_name: str | None = None
    outcome: str
    attempted: int
    succeeded: int
    failures: list[FailureView] = Field(default_factory=list)
    cache_key: str | None = None
    reason: str = ""
    duration_ms: float = 0.0
    summary: str


class StatusResponse(BaseModel):
    version: str
    state: str
    channel: str
    subscribed: bool
    namespace: str
    container: str
    cycles_processed: int
    last_report: ReportView | None = None
