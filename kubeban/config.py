"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from kubeban.models.config import (
    APIConfig,
    CommandConfig,
    ExecConfig,
    FleetConfig,
    KubeBanConfig,
    KubeConfig,
    LogConfig,
    RedisConfig,
    ReportConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBEBAN_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_ban_template(value: str) -> str:
    if "{host}" not in value:
        raise ValueError(f"Invalid ban command: {value!r} must contain a {{host}} placeholder")
    return value


def _validate_non_empty(key: str, value: str) -> str:
    if not value:
        raise ValueError(f"KUBEBAN_{key} must not be empty")
    return value


def load_config() -> KubeBanConfig:
    """Load configuration from KUBEBAN_* environment variables."""
    return KubeBanConfig(
        channel=_validate_non_empty("CHANNEL", _env("CHANNEL", "cleanCache")),
        reload_sentinel=_validate_non_empty("RELOAD_SENTINEL", _env("RELOAD_SENTINEL", "configReload")),
        redis=RedisConfig(
            host=_env("REDIS_HOST", "127.0.0.1"),
            port=_env_int("REDIS_PORT", 6379, min_val=1, max_val=65535),
            password=_env("REDIS_PASSWORD", ""),
            db=_env_int("REDIS_DB", 0, min_val=0),
            reconnect_delay_seconds=_env_int("REDIS_RECONNECT_DELAY", 5, min_val=1, max_val=300),
        ),
        fleet=FleetConfig(
            namespace=_validate_non_empty("FLEET_NAMESPACE", _env("FLEET_NAMESPACE", "varnish")),
            container_name=_validate_non_empty("FLEET_CONTAINER", _env("FLEET_CONTAINER", "cache-service")),
            label_selector=_env("FLEET_LABEL_SELECTOR", ""),
            cluster_domain=_env("CLUSTER_DOMAIN", "svc.cluster.local"),
        ),
        exec=ExecConfig(
            timeout_seconds=_env_int("EXEC_TIMEOUT", 20, min_val=1, max_val=300),
            max_concurrency=_env_int("EXEC_MAX_CONCURRENCY", 0, min_val=0),
        ),
        commands=CommandConfig(
            reload_command=_env("RELOAD_COMMAND", "varnishreload /etc/varnish/default.vcl"),
            ban_command=_validate_ban_template(_env("BAN_COMMAND", "varnishadm ban req.http.host == {host}")),
        ),
        report=ReportConfig(
            webhook_url=_env("REPORT_WEBHOOK_URL", ""),
            webhook_failures_only=_env_bool("REPORT_WEBHOOK_FAILURES_ONLY", True),
            webhook_max_retries=_env_int("REPORT_WEBHOOK_MAX_RETRIES", 2, min_val=0, max_val=10),
        ),
        kube=KubeConfig(
            kubeconfig=_env("KUBECONFIG", ""),
        ),
        api=APIConfig(
            enabled=_env_bool("API_ENABLED", True),
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
