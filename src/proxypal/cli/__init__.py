"""Command-line interface for proxypal.

Provides the daemon entry point (serve) and thin clients for its control API.
"""

from .main import cli, main

__all__ = ["cli", "main"]
