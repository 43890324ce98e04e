"""Kubernetes client bootstrap shared by the daemon and the CLI."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

_log = structlog.get_logger(component="cluster.client")


@dataclass
class KubeClients:
    """API handles used by the fan-out pipeline.

    ``core_v1`` issues list calls; ``exec_v1`` is bound to a websocket
    client for the pod ``exec`` subresource.
    """

    api_client: Any
    ws_client: Any
    core_v1: Any
    exec_v1: Any

    async def close(self) -> None:
        await self.ws_client.close()
        await self.api_client.close()


async def load_kube_clients(kubeconfig: str = "") -> KubeClients:
    """Configure kubernetes-asyncio from the service account, falling back to kubeconfig."""
    from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
    from kubernetes_asyncio import config as k8s_config  # type: ignore[import-untyped]
    from kubernetes_asyncio.stream import WsApiClient  # type: ignore[import-untyped]

    try:
        # load_incluster_config() is synchronous in kubernetes-asyncio
        k8s_config.load_incluster_config()
        _log.info("k8s client configured from in-cluster service account")
    except k8s_config.ConfigException:
        # load_kube_config() is async in kubernetes-asyncio
        await k8s_config.load_kube_config(config_file=kubeconfig or None)
        _log.info("k8s client configured from kubeconfig", path=kubeconfig or "default")

    api_client = k8s_client.ApiClient()
    ws_client = WsApiClient()
    return KubeClients(
        api_client=api_client,
        ws_client=ws_client,
        core_v1=k8s_client.CoreV1Api(api_client=api_client),
        exec_v1=k8s_client.CoreV1Api(api_client=ws_client),
    )
