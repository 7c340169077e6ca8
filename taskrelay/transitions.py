"""Step status transitions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from .contracts import Step, StepId, StepStatus, Workflow
from .exceptions import StepNotFoundError, TransitionError, WorkflowClosedError
from .resolver import DependencyResolver

logger = logging.getLogger(__name__)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class StatusTransitioner:
    """Applies one step status change at a time.

    Status only moves pending -> in_progress -> completed. A pending step may
    be completed directly once its prerequisites are done. Both operations
    work on a copy and leave the given workflow untouched, so a rejected
    transition never leaks into a later save. The ``max_parallel`` budget is
    checked by the caller through ``ExecutionScheduler.can_start``.
    """

    def __init__(self, resolver: Optional[DependencyResolver] = None) -> None:
        self.resolver = resolver or DependencyResolver()

    def start(self, workflow: Workflow, step_id: StepId) -> Workflow:
        updated = self._open_copy(workflow)
        step = self._get_step(updated, step_id)
        if step.status != StepStatus.PENDING:
            raise TransitionError(
                f"Cannot start step {step_id!r}: status is {step.status.value}"
            )
        unmet = self.resolver.unmet_dependencies(updated, step)
        if unmet:
            raise TransitionError(
                f"Cannot start step {step_id!r}: waiting on {', '.join(repr(d) for d in unmet)}"
            )
        step.status = StepStatus.IN_PROGRESS
        step.started_at = _utcnow_iso()
        logger.info(f"Started step {step_id!r} ({step.agent})")
        return updated

    def complete(self, workflow: Workflow, step_id: StepId, result: str) -> Workflow:
        updated = self._open_copy(workflow)
        step = self._get_step(updated, step_id)
        if step.status == StepStatus.COMPLETED:
            raise TransitionError(
                f"Step {step_id!r} is already completed; duplicate completion report"
            )
        if step.status == StepStatus.PENDING:
            unmet = self.resolver.unmet_dependencies(updated, step)
            if unmet:
                raise TransitionError(
                    f"Cannot complete step {step_id!r}: waiting on "
                    f"{', '.join(repr(d) for d in unmet)}"
                )
        step.status = StepStatus.COMPLETED
        step.result = result
        step.completed_at = _utcnow_iso()
        logger.info(f"Completed step {step_id!r} ({step.agent})")
        if updated.is_completed:
            logger.info(f"Workflow completed: {updated.goal}")
        return updated

    @staticmethod
    def _open_copy(workflow: Workflow) -> Workflow:
        if workflow.is_completed:
            raise WorkflowClosedError("Workflow is completed; no further transitions allowed")
        return workflow.model_copy(deep=True)

    @staticmethod
    def _get_step(workflow: Workflow, step_id: StepId) -> Step:
        step = workflow.find_step(step_id)
        if step is None:
            raise StepNotFoundError(f"Unknown step id: {step_id!r}")
        return step
