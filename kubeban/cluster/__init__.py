"""Cluster collaborators: service directory, cache fleet and remote exec.

Submodules:
    client    -- kubernetes-asyncio bootstrap (in-cluster or kubeconfig).
    resolver  -- Service name to cluster DNS cache key.
    fleet     -- Cache pod listing and readiness filtering.
    executor  -- Concurrent pod exec sessions joined by a barrier.
"""

from kubeban.cluster.executor import ParallelExecutor, PodExecSession
from kubeban.cluster.fleet import FleetDiscovery, KubeFleetDirectory, select_targets
from kubeban.cluster.resolver import KubeServiceDirectory, TargetResolver

__all__ = [
    "FleetDiscovery",
    "KubeFleetDirectory",
    "KubeServiceDirectory",
    "ParallelExecutor",
    "PodExecSession",
    "TargetResolver",
    "select_targets",
]
