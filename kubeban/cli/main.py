"""``kubeban`` command-line interface.

Commands:
    run         -- Run the pub/sub daemon (same as ``python -m kubeban``).
    invalidate  -- Ban one service's cached content on every ready cache node.
    reload      -- Reload the VCL configuration on every ready cache node.
    targets     -- List the cache containers a cycle would run on.

One-shot commands run a single fan-out cycle directly, without Redis, using
the same KUBEBAN_* configuration as the daemon.
"""

from __future__ import annotations

import asyncio
import json

import click

from kubeban import __version__
from kubeban.models.config import KubeBanConfig
from kubeban.models.invalidation import FanOutReport


def _load(log_level: str | None) -> KubeBanConfig:
    from kubeban.config import load_config
    from kubeban.observability.logging import setup_logging

    try:
        config = load_config()
    except ValueError as exc:
        raise click.ClickException(f"invalid configuration: {exc}") from exc
    setup_logging(log_level or config.log.level)
    return config


async def _run_once(config: KubeBanConfig, payload: str) -> FanOutReport:
    from kubeban.app import build_orchestrator
    from kubeban.cluster.client import load_kube_clients

    clients = await load_kube_clients(config.kube.kubeconfig)
    try:
        orchestrator = build_orchestrator(config, clients, source=None)
        return await orchestrator.handle(payload)
    finally:
        await clients.close()


async def _list_targets(config: KubeBanConfig) -> list[str]:
    from kubeban.cluster.client import load_kube_clients
    from kubeban.cluster.fleet import FleetDiscovery, KubeFleetDirectory

    clients = await load_kube_clients(config.kube.kubeconfig)
    try:
        discovery = FleetDiscovery(
            KubeFleetDirectory(clients.core_v1),
            namespace=config.fleet.namespace,
            role_name=config.fleet.container_name,
            label_selector=config.fleet.label_selector,
        )
        targets = await discovery.discover(config.commands.reload_command)
    finally:
        await clients.close()
    return [target.identity for target in targets]


def _echo_report(report: FanOutReport, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        click.echo(report.summary)
    if not report.ok:
        raise SystemExit(1)


_log_level_option = click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default=None,
    help="Override KUBEBAN_LOG_LEVEL.",
)
_json_option = click.option("--json", "as_json", is_flag=True, help="Print the full report as JSON.")


@click.group()
@click.version_option(__version__, prog_name="kubeban")
def cli() -> None:
    """Broadcast Varnish cache invalidations across a Kubernetes fleet."""


@cli.command()
def run() -> None:
    """Subscribe to the Redis channel and process invalidations until stopped."""
    from kubeban.app import main

    asyncio.run(main())


@cli.command()
@click.argument("service")
@_log_level_option
@_json_option
def invalidate(service: str, log_level: str | None, as_json: bool) -> None:
    """Ban cached responses for SERVICE on every ready cache node."""
    config = _load(log_level)
    if service == config.reload_sentinel:
        raise click.BadParameter(f"{service!r} is the reload sentinel; use `kubeban reload`", param_hint="SERVICE")
    report = asyncio.run(_run_once(config, service))
    _echo_report(report, as_json)


@cli.command()
@_log_level_option
@_json_option
def reload(log_level: str | None, as_json: bool) -> None:
    """Reload the cache configuration on every ready cache node."""
    config = _load(log_level)
    report = asyncio.run(_run_once(config, config.reload_sentinel))
    _echo_report(report, as_json)


@cli.command()
@_log_level_option
def targets(log_level: str | None) -> None:
    """List the ready cache containers in the configured namespace."""
    config = _load(log_level)
    identities = asyncio.run(_list_targets(config))
    if not identities:
        click.echo(f"no ready '{config.fleet.container_name}' containers in namespace '{config.fleet.namespace}'")
        return
    for identity in identities:
        click.echo(identity)
