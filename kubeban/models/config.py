"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class RedisConfig:
    """Redis pub/sub connection configuration."""

    host: str = "127.0.0.1"
    port: int = 6379
    password: str = ""
    db: int = 0
    reconnect_delay_seconds: int = 5


@dataclass
class FleetConfig:
    """Cache fleet discovery configuration."""

    namespace: str = "varnish"
    container_name: str = "cache-service"
    label_selector: str = ""
    cluster_domain: str = "svc.cluster.local"


@dataclass
class ExecConfig:
    """Remote exec session configuration."""

    timeout_seconds: int = 20
    max_concurrency: int = 0


@dataclass
class CommandConfig:
    """Shell directives run inside each cache container."""

    reload_command: str = "varnishreload /etc/varnish/default.vcl"
    ban_command: str = "varnishadm ban req.http.host == {host}"


@dataclass
class ReportConfig:
    """Cycle report sink configuration."""

    webhook_url: str = ""
    webhook_failures_only: bool = True
    webhook_max_retries: int = 2


@dataclass
class KubeConfig:
    """Kubernetes client configuration."""

    kubeconfig: str = ""


@dataclass
class APIConfig:
    """Health/status API configuration."""

    enabled: bool = True
    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class KubeBanConfig:
    """Top-level KubeBan configuration."""

    channel: str = "cleanCache"
    reload_sentinel: str = "configReload"
    redis: RedisConfig = field(default_factory=RedisConfig)
    fleet: FleetConfig = field(default_factory=FleetConfig)
    exec: ExecConfig = field(default_factory=ExecConfig)
    commands: CommandConfig = field(default_factory=CommandConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    kube: KubeConfig = field(default_factory=KubeConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
