"""Shared fixtures for KubeBan integration tests.

Wires the real resolver, fleet discovery, parallel executor and orchestrator
around in-memory directories and exec sessions, so full fan-out cycles run
without a Kubernetes cluster or a Redis server.
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

from kubeban.broadcaster.orchestrator import FanOutOrchestrator
from kubeban.cluster.executor import ParallelExecutor
from kubeban.cluster.fleet import FleetDiscovery
from kubeban.cluster.resolver import TargetResolver
from kubeban.models.config import CommandConfig
from kubeban.models.invalidation import ServiceRef
from tests.fakes import (
    CACHE_NAMESPACE,
    CACHE_ROLE,
    FakeExecSession,
    FakeFleetDirectory,
    FakeServiceDirectory,
    RecordingDispatcher,
    make_instance,
)

RELOAD_COMMAND = "varnishreload /etc/varnish/default.vcl"
BAN_TEMPLATE = "varnishadm ban req.http.host == {host}"

# ---------------------------------------------------------------------------
# Cluster fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def services() -> FakeServiceDirectory:
    """Service directory with a handful of application services."""
    return FakeServiceDirectory(
        [
            ServiceRef("billing-api", "prod"),
            ServiceRef("web", "prod"),
            ServiceRef("kube-dns", "kube-system"),
        ]
    )


@pytest.fixture
def fleet() -> FakeFleetDirectory:
    """Three cache pods, the middle one not ready, plus an unrelated pod."""
    return FakeFleetDirectory(
        [
            make_instance("varnish-0", roles=("varnish-exporter", CACHE_ROLE)),
            make_instance("varnish-1", roles=("varnish-exporter", CACHE_ROLE), ready=(True, False)),
            make_instance("varnish-2", roles=("varnish-exporter", CACHE_ROLE)),
            make_instance("web-7d9f", roles=("web",), namespace="prod"),
        ]
    )


@pytest.fixture
def session() -> FakeExecSession:
    return FakeExecSession()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


# ---------------------------------------------------------------------------
# Orchestrator factory
# ---------------------------------------------------------------------------


@pytest.fixture
def make_orchestrator(
    services: FakeServiceDirectory,
    fleet: FakeFleetDirectory,
    session: FakeExecSession,
    dispatcher: RecordingDispatcher,
) -> Callable[..., FanOutOrchestrator]:
    """Return a factory building an orchestrator over the fixture cluster."""

    def _build(
        source: object = None,
        timeout_seconds: float = 5.0,
        resolver: object | None = None,
        executor: object | None = None,
        report_dispatcher: object | None = None,
    ) -> FanOutOrchestrator:
        return FanOutOrchestrator(
            source=source,  # type: ignore[arg-type]
            resolver=resolver or TargetResolver(services),  # type: ignore[arg-type]
            discovery=FleetDiscovery(fleet, namespace=CACHE_NAMESPACE, role_name=CACHE_ROLE),
            executor=executor or ParallelExecutor(session, timeout_seconds=timeout_seconds),  # type: ignore[arg-type]
            commands=CommandConfig(reload_command=RELOAD_COMMAND, ban_command=BAN_TEMPLATE),
            reload_sentinel="configReload",
            dispatcher=report_dispatcher or dispatcher,  # type: ignore[arg-type]
        )

    return _build
