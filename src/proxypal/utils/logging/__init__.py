"""Logging utilities and helpers.

This package provides logging infrastructure for proxypal:
- iso_formatter: ISO 8601 timestamp formatting for JSONL logs
- logger_setup: Console and JSONL handler configuration for the daemon

Import directly from submodules to avoid circular imports:
    from proxypal.utils.logging.logger_setup import configure_logging
"""

__all__: list[str] = []  # Direct submodule imports required (see docstring)
