"""Health/status API layer for KubeBan.

Exposes:
    create_app -- FastAPI application factory.
    build_app  -- Alias for create_app (used by kubeban.app bootstrap).
"""

from kubeban.api.app import create_app

build_app = create_app

__all__ = ["build_app", "create_app"]
