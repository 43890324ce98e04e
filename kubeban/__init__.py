"""KubeBan: Redis-driven Varnish cache invalidation for Kubernetes."""

__version__ = "0.1.0"
