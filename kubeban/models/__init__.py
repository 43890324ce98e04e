"""Core data structures for KubeBan."""

from kubeban.models.config import KubeBanConfig
from kubeban.models.invalidation import (
    CacheNodeInstance,
    CycleOutcome,
    ExecOutput,
    ExecutionResult,
    ExecutionTarget,
    FanOutReport,
    InvalidationRequest,
    RequestKind,
    ServiceRef,
)

__all__ = [
    "CacheNodeInstance",
    "CycleOutcome",
    "ExecOutput",
    "ExecutionResult",
    "ExecutionTarget",
    "FanOutReport",
    "InvalidationRequest",
    "KubeBanConfig",
    "RequestKind",
    "ServiceRef",
]
