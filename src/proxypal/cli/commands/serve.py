"""Serve command: run the proxypal daemon in the foreground."""

from __future__ import annotations

__all__ = ["serve"]

import asyncio

import click

from proxypal.daemon import run_daemon


@click.command()
def serve() -> None:
    """Run the daemon in the foreground.

    Loads configuration, auto-starts the proxy (and the Copilot bridge when
    enabled), and serves the control API until interrupted (Ctrl+C / SIGTERM).
    """
    try:
        asyncio.run(run_daemon())
    except RuntimeError as e:
        # Another daemon owns the PID file or socket
        raise click.ClickException(str(e)) from e
    except OSError as e:
        raise click.ClickException(f"Cannot serve the control API: {e}") from e
