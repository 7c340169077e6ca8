"""Read-only access to the external task registry.

The registry stores longer-lived project task metadata. taskrelay owns none of
its schema; it only looks tasks up by id when a handoff names one.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol

from pydantic import BaseModel

from .exceptions import TaskRegistryError

logger = logging.getLogger(__name__)


class RegistryTask(BaseModel):
    """Minimal view of a registry task."""

    id: str
    title: Optional[str] = None
    status: Optional[str] = None


class TaskRegistry(Protocol):
    """Protocol for task registry lookups."""

    def get(self, task_id: str) -> Optional[RegistryTask]:
        """Return the task or ``None`` when the registry does not know it."""


class InMemoryTaskRegistry:
    """Registry backed by a dict. Useful for tests."""

    def __init__(self, tasks: Iterable[RegistryTask] = ()) -> None:
        self._tasks: Dict[str, RegistryTask] = {}
        for task in tasks:
            self.add(task)

    def add(self, task: RegistryTask) -> None:
        self._tasks[task.id] = task

    def get(self, task_id: str) -> Optional[RegistryTask]:
        return self._tasks.get(task_id)


class JsonTaskRegistry:
    """Registry read from a ``tasks.json`` style file.

    Accepts either ``{"tasks": [...]}`` or tagged documents such as
    ``{"master": {"tasks": [...]}}``. Subtasks are addressed as
    ``<parent>.<child>``. The file is re-read on every lookup.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def get(self, task_id: str) -> Optional[RegistryTask]:
        for task in self._iter_tasks():
            if task.id == task_id:
                return task
        return None

    def _iter_tasks(self) -> Iterator[RegistryTask]:
        if not self.path.exists():
            logger.warning(f"Task registry file not found: {self.path}")
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise TaskRegistryError(f"Cannot read task registry {self.path}: {exc}") from exc
        for raw in _task_lists(data):
            yield from _flatten(raw, parent=None)


def _task_lists(data: Any) -> List[List[dict]]:
    if not isinstance(data, dict):
        return []
    if isinstance(data.get("tasks"), list):
        return [data["tasks"]]
    return [
        tag["tasks"]
        for tag in data.values()
        if isinstance(tag, dict) and isinstance(tag.get("tasks"), list)
    ]


def _flatten(tasks: List[dict], parent: Optional[str]) -> Iterator[RegistryTask]:
    for raw in tasks:
        if not isinstance(raw, dict) or "id" not in raw:
            continue
        task_id = str(raw["id"]) if parent is None else f"{parent}.{raw['id']}"
        yield RegistryTask(id=task_id, title=raw.get("title"), status=raw.get("status"))
        subtasks = raw.get("subtasks")
        if isinstance(subtasks, list):
            yield from _flatten(subtasks, parent=task_id)
