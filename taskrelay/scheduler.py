"""Concurrency-budgeted scheduling of available steps."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from .contracts import ExecutionState, StepId, StepStatus, Workflow, step_id_sort_key
from .resolver import DependencyResolver

logger = logging.getLogger(__name__)


class SchedulePlan(BaseModel):
    """Next batch the host should dispatch."""

    available: List[StepId] = Field(default_factory=list)
    in_progress_count: int = 0
    can_start_more: int = 0
    next_recommended: List[StepId] = Field(default_factory=list)


class ExecutionScheduler:
    """Combines resolver output with the workflow's ``max_parallel`` budget."""

    def __init__(self, resolver: Optional[DependencyResolver] = None) -> None:
        self.resolver = resolver or DependencyResolver()

    def plan(self, workflow: Workflow) -> SchedulePlan:
        available = self.resolver.available(workflow)
        in_progress = workflow.count(StepStatus.IN_PROGRESS)
        can_start_more = max(0, workflow.execution_state.max_parallel - in_progress)
        return SchedulePlan(
            available=available,
            in_progress_count=in_progress,
            can_start_more=can_start_more,
            next_recommended=available[:can_start_more],
        )

    def refresh(self, workflow: Workflow) -> Workflow:
        """Return a copy whose ``execution_state`` cache reflects ``plan``."""
        plan = self.plan(workflow)
        state = ExecutionState(
            max_parallel=workflow.execution_state.max_parallel,
            in_progress_count=plan.in_progress_count,
            available_tasks=plan.available,
            can_start_more=plan.can_start_more,
            next_recommended=plan.next_recommended,
        )
        return workflow.model_copy(update={"execution_state": state})

    def can_start(self, workflow: Workflow, step_id: StepId) -> bool:
        plan = self.plan(workflow)
        return plan.can_start_more > 0 and step_id in plan.available

    def find_stale(
        self,
        workflow: Workflow,
        max_age: timedelta,
        now: Optional[datetime] = None,
    ) -> List[StepId]:
        """Return in-progress steps started longer than ``max_age`` ago.

        Steps are only flagged. Status is never reverted.
        """
        now = now or datetime.now(timezone.utc)
        stale: List[StepId] = []
        for step in workflow.steps:
            if step.status != StepStatus.IN_PROGRESS or not step.started_at:
                continue
            try:
                started = datetime.fromisoformat(step.started_at)
            except ValueError:
                logger.warning(
                    f"Step {step.id!r} has unparseable started_at={step.started_at!r}"
                )
                continue
            if started.tzinfo is None:
                started = started.replace(tzinfo=timezone.utc)
            if now - started > max_age:
                stale.append(step.id)
        return sorted(stale, key=step_id_sort_key)
