"""Output styling shared by the CLI commands.

Colors: cyan for headers and labels, green for success, red for errors,
yellow for warnings and stopped processes, dim for empty states.
"""

from __future__ import annotations

__all__ = [
    "style_condition",
    "style_dim",
    "style_error",
    "style_header",
    "style_label",
    "style_success",
    "style_warning",
]

import click


def style_header(title: str) -> str:
    """Section header, e.g. "--- Processes ---"."""
    return click.style(f"--- {title} ---", fg="cyan", bold=True)


def style_label(label: str) -> str:
    return click.style(f"{label}:", fg="cyan", bold=True)


def style_success(message: str) -> str:
    return click.style(f"✓ {message}", fg="green")


def style_error(message: str) -> str:
    return click.style(f"✗ {message}", fg="red")


def style_dim(message: str) -> str:
    return click.style(message, dim=True)


def style_warning(message: str) -> str:
    """Prefix with "Warning: " (used for saved-but-not-applied changes)."""
    return click.style(f"Warning: {message}", fg="yellow", bold=True)


def style_condition(condition: str) -> str:
    """Color a process condition: running green, stopped yellow, not started dim."""
    if condition == "running":
        return click.style(condition, fg="green")
    if condition == "stopped":
        return click.style(condition, fg="yellow")
    return click.style(condition.replace("_", " "), dim=True)
