"""Store abstraction for the workflow document."""

from __future__ import annotations

from typing import Protocol

from ..contracts import Workflow


class GraphStore(Protocol):
    """Protocol for workflow document persistence backends.

    ``save`` is a compare-and-swap on ``Workflow.version``: it raises
    ``ConcurrentModificationError`` when the stored version differs from the
    version the caller loaded.
    """

    def exists(self) -> bool:
        """Return ``True`` when a document is stored."""

    def load(self) -> Workflow:
        """Read and validate the stored document."""

    def save(self, workflow: Workflow) -> Workflow:
        """Persist ``workflow`` and return it as stored (version bumped)."""

    def create(self, workflow: Workflow) -> Workflow:
        """Persist a new document; fails when one already exists."""
