"""Schema migration for the configuration document.

migrate_config() is a pure function: it never touches disk and never
mutates its input. ConfigStore.load() runs it once and persists the result
when anything changed, so a migrated document is never migrated again.

Steps (applied in order):
1. promote_amp_openai_provider: the deprecated single `ampOpenaiProvider`
   becomes the first entry of `ampOpenaiProviders` when that list is empty.
2. assign_provider_ids: every `ampOpenaiProviders` entry without an id gets
   one, so the id is persisted and stays stable across loads.
3. bump_config_version: raise `configVersion` to the current schema version.
"""

from __future__ import annotations

__all__ = [
    "MigrationResult",
    "migrate_config",
]

from collections.abc import Callable
from dataclasses import dataclass

from proxypal.config import AppConfig, generate_provider_id
from proxypal.constants import CURRENT_CONFIG_VERSION


@dataclass(frozen=True, slots=True)
class MigrationResult:
    """Outcome of migrating one document.

    Attributes:
        config: The migrated document (a new object when changed).
        changed: Whether any step modified the document.
        steps: Names of the steps that applied, in order.
    """

    config: AppConfig
    changed: bool
    steps: tuple[str, ...] = ()


def _promote_amp_openai_provider(config: AppConfig, id_factory: Callable[[], str]) -> AppConfig | None:
    legacy = config.amp_openai_provider
    if legacy is None:
        return None

    providers = list(config.amp_openai_providers)
    if not providers:
        providers.append(legacy)

    # Cleared either way: once the list is populated the single value is dead
    return config.model_copy(update={"amp_openai_provider": None, "amp_openai_providers": providers})


def _assign_provider_ids(config: AppConfig, id_factory: Callable[[], str]) -> AppConfig | None:
    if all(p.id for p in config.amp_openai_providers):
        return None
    providers = [p if p.id else p.model_copy(update={"id": id_factory()}) for p in config.amp_openai_providers]
    return config.model_copy(update={"amp_openai_providers": providers})


def _bump_config_version(config: AppConfig, id_factory: Callable[[], str]) -> AppConfig | None:
    if config.config_version >= CURRENT_CONFIG_VERSION:
        return None
    return config.model_copy(update={"config_version": CURRENT_CONFIG_VERSION})


_STEPS: tuple[tuple[str, Callable[[AppConfig, Callable[[], str]], AppConfig | None]], ...] = (
    ("promote_amp_openai_provider", _promote_amp_openai_provider),
    ("assign_provider_ids", _assign_provider_ids),
    ("bump_config_version", _bump_config_version),
)


def migrate_config(
    config: AppConfig,
    id_factory: Callable[[], str] = generate_provider_id,
) -> MigrationResult:
    """Bring a loaded document up to the current schema.

    Args:
        config: Document as validated from storage.
        id_factory: Generates identifiers for provider entries lacking one.

    Returns:
        MigrationResult; `changed` is False when the document was current.
    """
    current = config.model_copy(deep=True)
    applied: list[str] = []

    for name, step in _STEPS:
        migrated = step(current, id_factory)
        if migrated is not None:
            current = migrated
            applied.append(name)

    if not applied:
        return MigrationResult(config=config, changed=False)
    return MigrationResult(config=current, changed=True, steps=tuple(applied))
