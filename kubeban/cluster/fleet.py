"""Cache fleet discovery and readiness filtering."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol

import aiohttp
import structlog

from kubeban.errors import DiscoveryFailedError
from kubeban.models.invalidation import CacheNodeInstance, ExecutionTarget

_log = structlog.get_logger(component="cluster.fleet")


class FleetDirectory(Protocol):
    """Lists cache pods in one namespace."""

    async def list_instances(self, namespace: str, label_selector: str = "") -> list[CacheNodeInstance]: ...


class KubeFleetDirectory:
    """FleetDirectory backed by ``CoreV1Api.list_namespaced_pod``."""

    def __init__(self, core_v1: Any) -> None:
        self._v1 = core_v1

    async def list_instances(self, namespace: str, label_selector: str = "") -> list[CacheNodeInstance]:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

        kwargs: dict[str, Any] = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        try:
            pod_list = await self._v1.list_namespaced_pod(namespace, **kwargs)
        except ApiException as exc:
            raise DiscoveryFailedError(namespace, f"{exc.status} {exc.reason}") from exc
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise DiscoveryFailedError(namespace, str(exc)) from exc

        return [pod_to_instance(pod) for pod in pod_list.items]


def pod_to_instance(pod: Any) -> CacheNodeInstance:
    """Project a V1Pod onto a CacheNodeInstance.

    Readiness is looked up by container name so the ready tuple lines up with
    the declared container order even when the status list is ordered
    differently or still incomplete.
    """
    containers = (pod.spec.containers or []) if pod.spec is not None else []
    statuses = (pod.status.container_statuses or []) if pod.status is not None else []
    ready_by_name = {status.name: bool(status.ready) for status in statuses}

    roles = tuple(container.name for container in containers)
    return CacheNodeInstance(
        name=pod.metadata.name,
        namespace=pod.metadata.namespace,
        roles=roles,
        ready=tuple(ready_by_name.get(role, False) for role in roles),
    )


def select_targets(
    instances: Iterable[CacheNodeInstance],
    role_name: str,
    command: str,
) -> list[ExecutionTarget]:
    """Return one ExecutionTarget per instance whose *role_name* is ready."""
    targets = []
    for instance in instances:
        role = instance.first_ready_role(role_name)
        if role is None:
            _log.debug("cache_node_skipped", pod=instance.name, namespace=instance.namespace, role=role_name)
            continue
        targets.append(ExecutionTarget(instance=instance, role=role, command=command))
    return targets


class FleetDiscovery:
    """Point-in-time selection of the cache containers to run a command on."""

    def __init__(
        self,
        directory: FleetDirectory,
        namespace: str,
        role_name: str,
        label_selector: str = "",
    ) -> None:
        self._directory = directory
        self._namespace = namespace
        self._role_name = role_name
        self._label_selector = label_selector

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def role_name(self) -> str:
        return self._role_name

    async def discover(self, command: str) -> list[ExecutionTarget]:
        """List the fleet and select ready targets for *command*.

        Raises:
            DiscoveryFailedError: the pod listing failed.
        """
        instances = await self._directory.list_instances(self._namespace, self._label_selector)
        targets = select_targets(instances, self._role_name, command)
        _log.debug(
            "fleet_discovered",
            namespace=self._namespace,
            instances=len(instances),
            ready_targets=len(targets),
        )
        return targets
