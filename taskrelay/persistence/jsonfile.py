"""JSON file implementation of the graph store."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from ..constants import DEFAULT_LOCK_TIMEOUT_SECONDS
from ..contracts import Workflow
from ..exceptions import (
    ConcurrentModificationError,
    TaskRelayError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from ..scheduler import ExecutionScheduler
from .repository import GraphStore

logger = logging.getLogger(__name__)


class JsonFileGraphStore(GraphStore):
    """Persist one workflow document as a JSON file.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so readers never see a partial document. The
    version compare and the replace run under an exclusive lock file.
    Nothing is cached between calls.
    """

    def __init__(
        self,
        path: str | Path,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        scheduler: Optional[ExecutionScheduler] = None,
    ) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.lock_timeout = lock_timeout
        self._scheduler = scheduler or ExecutionScheduler()

    # ------------------------------------------------------------------
    # Store API
    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Workflow:
        if not self.path.exists():
            raise WorkflowNotFoundError(f"No workflow document at {self.path}")
        return Workflow.from_json(self.path.read_text(encoding="utf-8"))

    def save(self, workflow: Workflow) -> Workflow:
        refreshed = self._scheduler.refresh(workflow)
        with self._lock():
            current = self._stored_version()
            if current is not None and current != workflow.version:
                raise ConcurrentModificationError(
                    f"{self.path} is at version {current}, "
                    f"but the update was based on version {workflow.version}"
                )
            stored = refreshed.model_copy(update={"version": workflow.version + 1})
            self._write_atomic(stored.to_json())
        logger.debug(f"Saved {self.path} at version {stored.version}")
        return stored

    def create(self, workflow: Workflow) -> Workflow:
        if self.exists():
            raise TaskRelayError(f"Workflow document already exists at {self.path}")
        return self.save(workflow.model_copy(update={"version": 0}))

    # ------------------------------------------------------------------
    # Helpers
    def _stored_version(self) -> Optional[int]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise WorkflowValidationError(
                f"Workflow document at {self.path} is not valid JSON: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise WorkflowValidationError(f"Workflow document at {self.path} must be an object")
        return int(data.get("version", 0))

    def _write_atomic(self, content: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    @contextmanager
    def _lock(self) -> Iterator[None]:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        start = time.monotonic()
        while True:
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.write(fd, str(os.getpid()).encode("utf-8"))
                os.close(fd)
                break
            except FileExistsError as exc:
                if time.monotonic() - start > self.lock_timeout:
                    raise TaskRelayError(
                        f"Timed out waiting for workflow lock {self.lock_path}"
                    ) from exc
                time.sleep(0.02)
        try:
            yield
        finally:
            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                pass
