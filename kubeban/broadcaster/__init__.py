"""Invalidation fan-out: event source, command builder and orchestrator."""

from kubeban.broadcaster.commands import build_command
from kubeban.broadcaster.orchestrator import FanOutOrchestrator, OrchestratorState
from kubeban.broadcaster.source import RedisEventSource, build_redis_client

__all__ = [
    "FanOutOrchestrator",
    "OrchestratorState",
    "RedisEventSource",
    "build_command",
    "build_redis_client",
]
