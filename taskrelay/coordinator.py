"""Workflow coordinator: turns completion events into dispositions."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Tuple, TypeVar, Union

from pydantic import BaseModel, Field

from .config import TaskRelayConfig, load_config
from .constants import DEFAULT_CAS_RETRIES
from .contracts import StepId, StepStatus, Workflow, step_id_sort_key
from .escalation import RetryEscalationController, handoff_site
from .exceptions import ConcurrentModificationError, StepNotFoundError, TransitionError
from .handoff import HandoffOutcome, HandoffValidator, Outcome
from .persistence import GraphStore, get_store
from .registry import JsonTaskRegistry
from .scheduler import ExecutionScheduler, SchedulePlan
from .transitions import StatusTransitioner

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Dispatch(BaseModel):
    """Invoke the agents of these steps next. Empty means nothing to do."""

    kind: Literal["dispatch"] = "dispatch"
    step_ids: List[StepId] = Field(default_factory=list)


class Retry(BaseModel):
    """Replay ``instruction`` to the agent that produced the report."""

    kind: Literal["retry"] = "retry"
    instruction: str


class Escalate(BaseModel):
    """Stop retrying; run the fallback instruction and tell a human."""

    kind: Literal["escalate"] = "escalate"
    instruction: str
    explanation: str


Disposition = Annotated[Union[Dispatch, Retry, Escalate], Field(discriminator="kind")]

EXIT_CODES = {"dispatch": 0, "retry": 1, "escalate": 2}


class EventResult(BaseModel):
    """Everything the host needs after one completion event."""

    disposition: Disposition
    outcome: Outcome
    step_id: Optional[StepId] = None
    workflow: Workflow

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.disposition.kind]


def build_validator(config: TaskRelayConfig) -> HandoffValidator:
    """Create a handoff validator from the ``handoff`` config section."""
    handoff = config.handoff
    registry = JsonTaskRegistry(handoff.registry_path) if handoff.registry_path else None
    return HandoffValidator(
        completion_phrases=handoff.completion_phrases,
        task_id_required_suffixes=handoff.task_id_required_suffixes,
        registry=registry,
    )


class WorkflowCoordinator:
    """Orchestrates transitions, scheduling and handoff validation.

    Every public mutation runs a full load-modify-save cycle. When the store
    reports a concurrent modification the whole cycle is replayed against the
    fresh document, up to ``cas_retries`` times.
    """

    def __init__(
        self,
        store: GraphStore,
        scheduler: Optional[ExecutionScheduler] = None,
        transitioner: Optional[StatusTransitioner] = None,
        validator: Optional[HandoffValidator] = None,
        controller: Optional[RetryEscalationController] = None,
        auto_start: bool = True,
        cas_retries: int = DEFAULT_CAS_RETRIES,
        stale_after: Optional[timedelta] = None,
    ) -> None:
        self.store = store
        self.scheduler = scheduler or ExecutionScheduler()
        self.transitioner = transitioner or StatusTransitioner(self.scheduler.resolver)
        self.validator = validator or HandoffValidator()
        self.controller = controller or RetryEscalationController()
        self.auto_start = auto_start
        self.cas_retries = cas_retries
        self.stale_after = stale_after

    @classmethod
    def from_config(
        cls,
        config: Optional[TaskRelayConfig] = None,
        store: Optional[GraphStore] = None,
        path: Optional[str] = None,
    ) -> "WorkflowCoordinator":
        config = config or load_config()
        stale_seconds = config.scheduler.stale_after_seconds
        return cls(
            store or get_store(path, config),
            validator=build_validator(config),
            controller=RetryEscalationController(
                max_attempts=config.handoff.max_attempts,
                fallback_agent=config.handoff.fallback_agent,
            ),
            auto_start=config.scheduler.auto_start,
            cas_retries=config.store.cas_retries,
            stale_after=timedelta(seconds=stale_seconds) if stale_seconds else None,
        )

    # ------------------------------------------------------------------
    # Workflow lifecycle
    def create(
        self, plan: Union[Dict[str, Any], Workflow], max_parallel: Optional[int] = None
    ) -> Workflow:
        """Validate an external plan and persist it as a new workflow."""
        document = plan.to_document() if isinstance(plan, Workflow) else dict(plan)
        if max_parallel is not None:
            state = dict(document.get("execution_state") or {})
            state["max_parallel"] = max_parallel
            document["execution_state"] = state
        workflow = Workflow.from_document(document)
        stored = self.store.create(workflow)
        logger.info(f"Created workflow with {len(stored.steps)} steps: {stored.goal}")
        return stored

    def load(self) -> Workflow:
        return self.store.load()

    def plan(self) -> SchedulePlan:
        return self.scheduler.plan(self.store.load())

    def start(self, step_id: StepId) -> Workflow:
        """Start one step, enforcing the concurrency budget."""

        def mutate(workflow: Workflow) -> Tuple[Workflow, None]:
            updated = self.transitioner.start(workflow, step_id)
            if not self.scheduler.can_start(workflow, step_id):
                raise TransitionError(
                    f"Cannot start step {step_id!r}: max_parallel="
                    f"{workflow.execution_state.max_parallel} steps already in progress"
                )
            return updated, None

        saved, _ = self._update(mutate)
        return saved

    def complete(self, step_id: StepId, result: str) -> Workflow:
        saved, _ = self._update(
            lambda workflow: (self.transitioner.complete(workflow, step_id, result), None)
        )
        return saved

    def start_next(self) -> List[StepId]:
        """Start every step in the current recommended batch."""

        def mutate(workflow: Workflow) -> Tuple[Optional[Workflow], List[StepId]]:
            if workflow.is_completed:
                return None, []
            updated, started = self._start_recommended(workflow)
            return (updated if started else None), started

        _, started = self._update(mutate)
        return started

    def stale_steps(self, max_age: Optional[timedelta] = None) -> List[StepId]:
        if max_age is None:
            max_age = self.stale_after
        if max_age is None:
            return []
        return self.scheduler.find_stale(self.store.load(), max_age)

    # ------------------------------------------------------------------
    # Event handling
    def handle_event(
        self, agent: str, report: str, step_id: Optional[StepId] = None
    ) -> EventResult:
        """Process one completion report from ``agent``.

        Malformed handoffs leave the step untouched so the corrected report can
        complete it. Escalation completes the step but dispatches nothing; the
        fallback instruction decides what runs next.
        """
        outcome = self.validator.validate(report)
        logger.info(f"Report from {agent} classified as {outcome.kind}")

        def mutate(workflow: Workflow) -> Tuple[Optional[Workflow], Dict[str, Any]]:
            if workflow.is_completed:
                logger.info(f"Workflow already completed; ignoring report from {agent}")
                return None, {"disposition": Dispatch(), "step_id": None}

            target = self._resolve_step(workflow, agent, step_id)
            site = handoff_site(agent, target)
            updated, decision = self.controller.record(workflow, site, outcome)
            if decision.action == "retry":
                return updated, {
                    "disposition": Retry(instruction=decision.instruction),
                    "step_id": target,
                }

            if target is not None:
                updated = self.transitioner.complete(updated, target, report)
            else:
                logger.warning(f"No in-progress or available step for agent {agent}")

            if decision.action == "escalate":
                return updated, {
                    "disposition": Escalate(
                        instruction=decision.instruction,
                        explanation=decision.explanation,
                    ),
                    "step_id": target,
                }

            dispatched: List[StepId] = []
            if not updated.is_completed:
                updated, dispatched = self._dispatch(updated)
            if isinstance(outcome, HandoffOutcome):
                self._check_target(updated, outcome, dispatched)
            return updated, {"disposition": Dispatch(step_ids=dispatched), "step_id": target}

        saved, fields = self._update(mutate)
        result = EventResult(outcome=outcome, workflow=saved, **fields)
        if saved.is_completed:
            logger.info(f"Workflow completed: {saved.goal}")
        return result

    # ------------------------------------------------------------------
    # Helpers
    def _update(
        self, mutate: Callable[[Workflow], Tuple[Optional[Workflow], T]]
    ) -> Tuple[Workflow, T]:
        conflicts = 0
        while True:
            workflow = self.store.load()
            updated, value = mutate(workflow)
            if updated is None:
                return workflow, value
            try:
                return self.store.save(updated), value
            except ConcurrentModificationError as exc:
                conflicts += 1
                if conflicts > self.cas_retries:
                    logger.error(f"Giving up after {conflicts} concurrent modifications: {exc}")
                    raise
                logger.warning(f"Concurrent modification detected, replaying update: {exc}")

    def _dispatch(self, workflow: Workflow) -> Tuple[Workflow, List[StepId]]:
        if self.auto_start:
            return self._start_recommended(workflow)
        return workflow, self.scheduler.plan(workflow).next_recommended

    def _start_recommended(self, workflow: Workflow) -> Tuple[Workflow, List[StepId]]:
        batch = self.scheduler.plan(workflow).next_recommended
        for next_id in batch:
            workflow = self.transitioner.start(workflow, next_id)
        if batch:
            logger.info(f"Dispatching steps {batch}")
        return workflow, list(batch)

    def _resolve_step(
        self, workflow: Workflow, agent: str, step_id: Optional[StepId]
    ) -> Optional[StepId]:
        """Pick the step a report belongs to.

        Pending steps only qualify once their dependencies are completed.
        """
        if step_id is not None:
            if workflow.find_step(step_id) is None:
                raise StepNotFoundError(f"Unknown step id: {step_id!r}")
            return step_id
        running = sorted(
            (
                s.id
                for s in workflow.steps
                if s.agent == agent and s.status == StepStatus.IN_PROGRESS
            ),
            key=step_id_sort_key,
        )
        if running:
            return running[0]
        available = self.scheduler.resolver.available(workflow)
        return next(
            (i for i in available if workflow.find_step(i).agent == agent), None
        )

    @staticmethod
    def _check_target(
        workflow: Workflow, outcome: HandoffOutcome, dispatched: List[StepId]
    ) -> None:
        agents = {workflow.find_step(i).agent for i in dispatched}
        if dispatched and outcome.target not in agents:
            logger.warning(
                f"Handoff named @{outcome.target} but the graph dispatches "
                f"{sorted(agents)}; following the graph"
            )
