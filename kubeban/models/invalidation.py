"""Invalidation request, fan-out target and report data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from uuid import uuid4


class RequestKind(StrEnum):
    """What a cache node is asked to do."""

    FULL_RELOAD = "full_reload"
    TARGETED_BAN = "targeted_ban"


class CycleOutcome(StrEnum):
    """Terminal outcome of one fan-out cycle."""

    SUCCEEDED = "succeeded"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"
    NO_TARGETS = "no_targets"
    NOT_FOUND = "not_found"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class InvalidationRequest:
    """Decoded payload of one pub/sub message.

    Immutable: created on receipt, consumed by exactly one fan-out cycle.
    """

    kind: RequestKind
    payload: str
    service_name: str | None = None
    request_id: str = field(default_factory=lambda: str(uuid4()))
    received_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @classmethod
    def from_payload(cls, payload: str, reload_sentinel: str) -> InvalidationRequest:
        """Classify a raw payload: the sentinel reloads, anything else bans."""
        if payload == reload_sentinel:
            return cls(kind=RequestKind.FULL_RELOAD, payload=payload)
        return cls(kind=RequestKind.TARGETED_BAN, payload=payload, service_name=payload)


@dataclass(frozen=True)
class ServiceRef:
    """One entry of the cluster service directory."""

    name: str
    namespace: str

    def cache_key(self, cluster_domain: str) -> str:
        return f"{self.name}.{self.namespace}.{cluster_domain}"


@dataclass(frozen=True)
class CacheNodeInstance:
    """Point-in-time view of one cache pod.

    ``ready`` is positionally aligned with ``roles``; a missing position
    counts as not ready.
    """

    name: str
    namespace: str
    roles: tuple[str, ...] = ()
    ready: tuple[bool, ...] = ()

    def first_ready_role(self, role_name: str) -> str | None:
        for index, role in enumerate(self.roles):
            if role != role_name:
                continue
            if index < len(self.ready) and self.ready[index]:
                return role
        return None


@dataclass(frozen=True)
class ExecutionTarget:
    """A (pod, container, command) triple selected for one cycle."""

    instance: CacheNodeInstance
    role: str
    command: str

    @property
    def identity(self) -> str:
        return f"{self.instance.namespace}/{self.instance.name}:{self.role}"


@dataclass(frozen=True)
class ExecOutput:
    """Raw output of a remote exec session that ran to completion."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one remote session."""

    target: ExecutionTarget
    success: bool
    stdout: str = ""
    stderr: str = ""
    error: str = ""
    exit_code: int | None = None
    duration_ms: float = 0.0


@dataclass
class FanOutReport:
    """Aggregate of every ExecutionResult produced for one request.

    ``attempted == succeeded + len(failures)`` holds for every report,
    including dropped and abandoned cycles where all three are zero.
    """

    request: InvalidationRequest
    outcome: CycleOutcome
    attempted: int = 0
    succeeded: int = 0
    failures: list[ExecutionResult] = field(default_factory=list)
    cache_key: str | None = None
    command: str = ""
    reason: str = ""
    duration_ms: float = 0.0

    @classmethod
    def from_results(
        cls,
        request: InvalidationRequest,
        results: list[ExecutionResult],
        cache_key: str | None = None,
        command: str = "",
        duration_ms: float = 0.0,
    ) -> FanOutReport:
        failures = [r for r in results if not r.success]
        succeeded = len(results) - len(failures)
        if not results:
            outcome = CycleOutcome.NO_TARGETS
        elif not failures:
            outcome = CycleOutcome.SUCCEEDED
        elif succeeded:
            outcome = CycleOutcome.PARTIAL_FAILURE
        else:
            outcome = CycleOutcome.FAILED
        return cls(
            request=request,
            outcome=outcome,
            attempted=len(results),
            succeeded=succeeded,
            failures=failures,
            cache_key=cache_key,
            command=command,
            duration_ms=duration_ms,
        )

    @property
    def ok(self) -> bool:
        return self.outcome == CycleOutcome.SUCCEEDED

    @property
    def subject(self) -> str:
        if self.request.kind == RequestKind.FULL_RELOAD:
            return "config reload"
        return f"ban of {self.request.service_name!r}"

    @property
    def summary(self) -> str:
        """Single operator-facing line describing the cycle."""
        if self.outcome == CycleOutcome.NOT_FOUND:
            return f"{self.subject} dropped: service not found"
        if self.outcome == CycleOutcome.ABANDONED:
            return f"{self.subject} abandoned: {self.reason}"
        if self.outcome == CycleOutcome.NO_TARGETS:
            return f"{self.subject} skipped: no ready cache nodes"
        line = f"{self.subject} {self.outcome.value}: {self.succeeded}/{self.attempted} cache nodes succeeded"
        if self.failures:
            details = "; ".join(f"{r.target.identity} ({r.error})" for r in self.failures)
            line = f"{line}; failed: {details}"
        return line

    def to_dict(self) -> dict[str, object]:
        return {
            "request_id": self.request.request_id,
            "kind": self.request.kind.value,
            "service_name": self.request.service_name,
            "received_at": self.request.received_at.isoformat(),
            "outcome": self.outcome.value,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failures": [
                {
                    "target": r.target.identity,
                    "error": r.error,
                    "exit_code": r.exit_code,
                    "stderr": r.stderr[:500],
                }
                for r in self.failures
            ],
            "cache_key": self.cache_key,
            "command": self.command,
            "reason": self.reason,
            "duration_ms": round(self.duration_ms, 1),
            "summary": self.summary,
        }
