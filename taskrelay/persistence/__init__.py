"""Persistence layer for taskrelay workflow documents."""

from __future__ import annotations

from typing import Optional

from ..config import TaskRelayConfig, load_config
from ..exceptions import ConfigurationError
from .inmemory import InMemoryGraphStore
from .jsonfile import JsonFileGraphStore
from .repository import GraphStore


def get_store(
    path: Optional[str] = None, config: Optional[TaskRelayConfig] = None
) -> GraphStore:
    """Factory function to obtain a graph store.

    ``path`` overrides the configured document location. The special path
    ``:memory:`` selects the in-memory backend.
    """

    config = config or load_config()
    path = path or config.store.path

    if config.store.backend == "inmemory" or path == ":memory:":
        return InMemoryGraphStore()
    if config.store.backend == "file":
        return JsonFileGraphStore(path, lock_timeout=config.store.lock_timeout_seconds)
    raise ConfigurationError(f"Unsupported store backend: {config.store.backend}")


__all__ = [
    "GraphStore",
    "InMemoryGraphStore",
    "JsonFileGraphStore",
    "get_store",
]
