"""KubeBan command-line interface.

Exposes:
    cli -- Click group entry point (registered as ``kubeban`` script).
"""

from kubeban.cli.main import cli

__all__ = ["cli"]
