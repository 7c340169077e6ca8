"""In-memory implementation of the graph store."""

from __future__ import annotations

import json
from typing import Optional

from ..contracts import Workflow
from ..exceptions import ConcurrentModificationError, TaskRelayError, WorkflowNotFoundError
from ..scheduler import ExecutionScheduler
from .repository import GraphStore


class InMemoryGraphStore(GraphStore):
    """Keep the workflow document in local memory.

    Useful for tests. The document is held serialized so callers never share
    mutable state with the store, mirroring the file backend.
    """

    def __init__(self, scheduler: Optional[ExecutionScheduler] = None) -> None:
        self._document: Optional[str] = None
        self._scheduler = scheduler or ExecutionScheduler()

    def exists(self) -> bool:
        return self._document is not None

    def load(self) -> Workflow:
        if self._document is None:
            raise WorkflowNotFoundError("No workflow stored in memory")
        return Workflow.from_json(self._document)

    def save(self, workflow: Workflow) -> Workflow:
        current = json.loads(self._document).get("version", 0) if self._document else None
        if current is not None and current != workflow.version:
            raise ConcurrentModificationError(
                f"Stored version {current} does not match loaded version {workflow.version}"
            )
        stored = self._scheduler.refresh(workflow).model_copy(
            update={"version": workflow.version + 1}
        )
        self._document = stored.to_json()
        return stored

    def create(self, workflow: Workflow) -> Workflow:
        if self.exists():
            raise TaskRelayError("A workflow is already stored in memory")
        return self.save(workflow.model_copy(update={"version": 0}))
