"""Shell directives sent to cache containers."""

from __future__ import annotations

from kubeban.models.config import CommandConfig
from kubeban.models.invalidation import InvalidationRequest, RequestKind

_DEFAULT_COMMANDS = CommandConfig()


def build_command(
    request: InvalidationRequest,
    cache_key: str | None = None,
    commands: CommandConfig = _DEFAULT_COMMANDS,
) -> str:
    """Return the command a cache node runs for *request*.

    Full reloads ignore *cache_key*. Bans interpolate it as the request host
    to evict; cluster-validated DNS labels need no quoting.
    """
    if request.kind == RequestKind.FULL_RELOAD:
        return commands.reload_command
    if not cache_key:
        raise ValueError(f"ban of {request.service_name!r} requires a resolved cache key")
    return commands.ban_command.format(host=cache_key)
