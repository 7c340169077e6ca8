"""Dependency resolution over the workflow task graph."""

from __future__ import annotations

from typing import List

from .contracts import Step, StepId, StepStatus, Workflow, step_id_sort_key


class DependencyResolver:
    """Computes which pending steps have every prerequisite completed.

    Each step is tested on its own against the set of completed ids. No
    traversal is needed because status only moves forward and ``depends_on``
    never changes once the workflow is created.
    """

    def available(self, workflow: Workflow) -> List[StepId]:
        """Return available step ids ordered by id ascending."""
        completed = self._completed_ids(workflow)
        ready = [
            step.id
            for step in workflow.steps
            if step.status == StepStatus.PENDING
            and all(dep in completed for dep in step.depends_on)
        ]
        return sorted(ready, key=step_id_sort_key)

    def unmet_dependencies(self, workflow: Workflow, step: Step) -> List[StepId]:
        completed = self._completed_ids(workflow)
        return [dep for dep in step.depends_on if dep not in completed]

    @staticmethod
    def _completed_ids(workflow: Workflow) -> set:
        return {step.id for step in workflow.steps if step.status == StepStatus.COMPLETED}
