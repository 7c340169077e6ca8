"""Core data contracts for the taskrelay workflow document."""

from __future__ import annotations

import json
from collections import deque
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, computed_field, model_validator

from .constants import DEFAULT_MAX_PARALLEL
from .exceptions import WorkflowValidationError


StepId = Union[int, str]


def step_id_sort_key(step_id: StepId) -> Tuple[int, int, str]:
    """Order integer ids numerically ahead of string ids ordered lexically."""
    if isinstance(step_id, int):
        return (0, step_id, "")
    return (1, 0, str(step_id))


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    StepStatus.PENDING: 0,
    StepStatus.IN_PROGRESS: 1,
    StepStatus.COMPLETED: 2,
}


class HandoffState(str, Enum):
    FRESH = "fresh"
    RETRYING = "retrying"
    ESCALATED = "escalated"


class Step(BaseModel):
    """One unit of work bound to a single external agent."""

    id: StepId
    agent: str
    task: str
    status: StepStatus
    depends_on: List[StepId]
    can_run_parallel: bool = False
    result: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class ExecutionState(BaseModel):
    """Cached scheduling view, refreshed on every save."""

    max_parallel: int = Field(default=DEFAULT_MAX_PARALLEL, ge=1)
    in_progress_count: int = 0
    available_tasks: List[StepId] = Field(default_factory=list)
    can_start_more: int = 0
    next_recommended: List[StepId] = Field(default_factory=list)


class HandoffSite(BaseModel):
    """Retry bookkeeping for one handoff site."""

    state: HandoffState = HandoffState.FRESH
    attempts: int = 0
    last_reasons: List[str] = Field(default_factory=list)
    updated_at: Optional[str] = None


class Workflow(BaseModel):
    """A task graph plus its execution metadata.

    ``status`` is always derived from the steps. A ``status`` key present in
    an incoming document is ignored and recomputed on serialization.
    """

    goal: str
    steps: List[Step]
    execution_state: ExecutionState = Field(default_factory=ExecutionState)
    version: int = Field(default=0, ge=0)
    handoff_sites: Dict[str, HandoffSite] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> StepStatus:
        statuses = {step.status for step in self.steps}
        if not statuses & {StepStatus.PENDING, StepStatus.IN_PROGRESS}:
            return StepStatus.COMPLETED
        if statuses & {StepStatus.IN_PROGRESS, StepStatus.COMPLETED}:
            return StepStatus.IN_PROGRESS
        return StepStatus.PENDING

    @property
    def is_completed(self) -> bool:
        return self.status == StepStatus.COMPLETED

    @model_validator(mode="after")
    def _check_graph(self) -> "Workflow":
        seen: set = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"Duplicate step id: {step.id!r}")
            seen.add(step.id)

        for step in self.steps:
            for dep in step.depends_on:
                if dep == step.id:
                    raise ValueError(f"Step {step.id!r} depends on itself")
                if dep not in seen:
                    raise ValueError(
                        f"Step {step.id!r} depends on unknown step {dep!r}"
                    )

        cycle = _find_cycle_members(self.steps)
        if cycle:
            members = ", ".join(repr(i) for i in cycle)
            raise ValueError(f"Dependency cycle detected between steps: {members}")

        in_progress = self.count(StepStatus.IN_PROGRESS)
        if in_progress > self.execution_state.max_parallel:
            raise ValueError(
                f"{in_progress} steps in progress exceeds max_parallel="
                f"{self.execution_state.max_parallel}"
            )
        return self

    def find_step(self, step_id: StepId) -> Optional[Step]:
        return next((step for step in self.steps if step.id == step_id), None)

    def count(self, status: StepStatus) -> int:
        return sum(1 for step in self.steps if step.status == status)

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the persisted JSON document shape."""
        data = self.model_dump(mode="json", exclude_none=True)
        if not self.handoff_sites:
            data.pop("handoff_sites", None)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_document(), indent=2, ensure_ascii=False)

    @classmethod
    def from_document(cls, data: Any) -> "Workflow":
        """Validate an ingested plan or stored document.

        Raises:
            WorkflowValidationError: On any structural problem.
        """
        if not isinstance(data, dict):
            raise WorkflowValidationError("Workflow document must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise WorkflowValidationError(str(exc)) from exc

    @classmethod
    def from_json(cls, data: str) -> "Workflow":
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError as exc:
            raise WorkflowValidationError(f"Workflow document is not valid JSON: {exc}") from exc
        return cls.from_document(parsed)


def _find_cycle_members(steps: List[Step]) -> List[StepId]:
    """Return ids left over after a topological sort; empty when acyclic."""
    indegree = {step.id: len(set(step.depends_on)) for step in steps}
    dependents: Dict[StepId, List[StepId]] = {step.id: [] for step in steps}
    for step in steps:
        for dep in set(step.depends_on):
            if dep in dependents:
                dependents[dep].append(step.id)

    queue = deque(step_id for step_id, degree in indegree.items() if degree == 0)
    resolved = 0
    while queue:
        current = queue.popleft()
        resolved += 1
        for child in dependents[current]:
            indegree[child] -= 1
            if indegree[child] == 0:
                queue.append(child)

    if resolved == len(steps):
        return []
    return sorted(
        (step_id for step_id, degree in indegree.items() if degree > 0),
        key=step_id_sort_key,
    )
