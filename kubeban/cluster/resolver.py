"""Service name to cache key resolution.

The resolver reads a full snapshot of the cluster service directory on every
call and matches the requested name exactly. Nothing is cached between
cycles: services may be created or deleted between two invalidations.
"""

from __future__ import annotations

from typing import Any, Protocol

import aiohttp
import structlog

from kubeban.errors import DirectoryUnavailableError, ServiceNotFoundError
from kubeban.models.invalidation import ServiceRef

_log = structlog.get_logger(component="cluster.resolver")


class ServiceDirectory(Protocol):
    """Cluster-wide service listing."""

    async def list_services(self) -> list[ServiceRef]: ...


class KubeServiceDirectory:
    """ServiceDirectory backed by ``CoreV1Api.list_service_for_all_namespaces``."""

    def __init__(self, core_v1: Any) -> None:
        self._v1 = core_v1

    async def list_services(self) -> list[ServiceRef]:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        try:
            service_list = await self._v1.list_service_for_all_namespaces()
        except ApiException as exc:
            raise DirectoryUnavailableError(f"service list failed: {exc.status} {exc.reason}") from exc
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise DirectoryUnavailableError(f"service list failed: {exc}") from exc

        return [
            ServiceRef(name=svc.metadata.name, namespace=svc.metadata.namespace)
            for svc in service_list.items
            if svc.metadata is not None
        ]


class TargetResolver:
    """Resolves a logical service name to its cluster DNS host."""

    def __init__(self, directory: ServiceDirectory, cluster_domain: str = "svc.cluster.local") -> None:
        self._directory = directory
        self._cluster_domain = cluster_domain

    async def resolve(self, service_name: str) -> str:
        """Return ``<name>.<namespace>.<cluster_domain>`` for *service_name*.

        Raises:
            ServiceNotFoundError: no service carries exactly this name.
            DirectoryUnavailableError: the directory query failed.
        """
        services = await self._directory.list_services()
        matches = [svc for svc in services if svc.name == service_name]
        if not matches:
            raise ServiceNotFoundError(service_name)

        chosen = matches[0]
        if len(matches) > 1:
            _log.warning(
                "service_name_ambiguous",
                service=service_name,
                namespaces=[svc.namespace for svc in matches],
                chosen=chosen.namespace,
            )
        return chosen.cache_key(self._cluster_domain)
