"""Exception hierarchy for the fan-out pipeline.

Resolution and discovery errors abandon a single cycle; execution errors are
converted into failed ExecutionResults by the executor and never escape it.
"""

from __future__ import annotations


class KubeBanError(Exception):
    """Base class for every recoverable KubeBan error."""


class ServiceNotFoundError(KubeBanError):
    """No service in the directory carries the requested name."""

    def __init__(self, service_name: str) -> None:
        super().__init__(f"service {service_name!r} not found")
        self.service_name = service_name


class DirectoryUnavailableError(KubeBanError):
    """The service directory could not be queried."""


class DiscoveryFailedError(KubeBanError):
    """The cache fleet could not be listed."""

    def __init__(self, namespace: str, cause: str) -> None:
        super().__init__(f"listing pods in namespace {namespace!r} failed: {cause}")
        self.namespace = namespace


class ExecutionFailedError(KubeBanError):
    """A remote exec session failed to open, stream, or exited non-zero."""

    def __init__(self, message: str, exit_code: int | None = None, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
