"""Bounded retry and escalation for malformed handoffs."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel

from .constants import DEFAULT_FALLBACK_AGENT, DEFAULT_MAX_HANDOFF_ATTEMPTS
from .contracts import HandoffSite, HandoffState, StepId, Workflow
from .handoff import MalformedOutcome

logger = logging.getLogger(__name__)


def handoff_site(agent: str, step_id: Optional[StepId] = None) -> str:
    """Identity a retry counter is scoped to: one agent handing off one step."""
    if step_id is None:
        return agent
    return f"{agent}#{step_id}"


class HandoffDecision(BaseModel):
    """What the host should do after a report was validated."""

    action: Literal["proceed", "retry", "escalate"]
    site: str
    attempts: int = 0
    instruction: Optional[str] = None
    explanation: Optional[str] = None


class RetryEscalationController:
    """Per-site state machine: FRESH -> RETRYING(n) -> ESCALATED.

    The counter is scoped to a single handoff attempt. Any well-formed
    outcome resets the site to FRESH. Once escalated, further malformed
    reports re-escalate immediately and are never retried. State lives in the
    workflow document so it survives between host invocations.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_HANDOFF_ATTEMPTS,
        fallback_agent: str = DEFAULT_FALLBACK_AGENT,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.fallback_agent = fallback_agent

    @staticmethod
    def state_of(workflow: Workflow, site: str) -> HandoffSite:
        return workflow.handoff_sites.get(site) or HandoffSite()

    def record(
        self, workflow: Workflow, site: str, outcome: BaseModel
    ) -> Tuple[Workflow, HandoffDecision]:
        """Apply ``outcome`` to ``site`` and return the updated workflow copy."""
        sites = dict(workflow.handoff_sites)

        if not isinstance(outcome, MalformedOutcome):
            if site in sites:
                logger.info(f"Handoff site {site} recovered; resetting retry state")
                sites.pop(site)
            updated = workflow.model_copy(update={"handoff_sites": sites})
            return updated, HandoffDecision(action="proceed", site=site)

        current = self.state_of(workflow, site)
        attempts = current.attempts + 1
        now = datetime.now(timezone.utc).replace(microsecond=0).isoformat()

        if current.state == HandoffState.ESCALATED or attempts >= self.max_attempts:
            sites[site] = HandoffSite(
                state=HandoffState.ESCALATED,
                attempts=attempts,
                last_reasons=outcome.reasons,
                updated_at=now,
            )
            explanation = self._explain_escalation(
                site, attempts, outcome.reasons, repeated=current.state == HandoffState.ESCALATED
            )
            logger.warning(explanation)
            decision = HandoffDecision(
                action="escalate",
                site=site,
                attempts=attempts,
                instruction=self._fallback_instruction(site, attempts, outcome.reasons),
                explanation=explanation,
            )
        else:
            sites[site] = HandoffSite(
                state=HandoffState.RETRYING,
                attempts=attempts,
                last_reasons=outcome.reasons,
                updated_at=now,
            )
            logger.warning(
                f"Malformed handoff from {site} (attempt {attempts}/{self.max_attempts}): "
                + "; ".join(outcome.reasons)
            )
            decision = HandoffDecision(
                action="retry",
                site=site,
                attempts=attempts,
                instruction=self.corrective_instruction(attempts, outcome.reasons),
            )

        updated = workflow.model_copy(update={"handoff_sites": sites})
        return updated, decision

    @staticmethod
    def corrective_instruction(attempt: int, reasons: List[str]) -> str:
        """Instruction replayed to the same agent; more explicit on each attempt."""
        problems = "; ".join(reasons) if reasons else "no recognizable handoff"
        if attempt <= 1:
            return (
                "Your report did not contain a valid handoff. Finish with a line "
                "'HANDOFF_TOKEN: <ID>' and name the next agent as @<agent-name>, "
                "or state 'TASK COMPLETE' if nothing needs to be handed off."
            )
        if attempt == 2:
            return (
                f"Your report still has no valid handoff ({problems}). Required format:\n"
                "  HANDOFF_TOKEN: <ID using only A-Z, 0-9 and _>\n"
                "  ROUTE TO: @<agent-name>\n"
                "If the work is finished and no other agent is needed, write 'TASK COMPLETE'."
            )
        return (
            f"Final attempt: the handoff is still malformed ({problems}). "
            "End your report with exactly these two lines, replacing the placeholders:\n"
            "HANDOFF_TOKEN: NEXT_STEP_1\n"
            "ROUTE TO: @next-agent-name\n"
            "Any other format will be escalated to the operator."
        )

    def _fallback_instruction(self, site: str, attempts: int, reasons: List[str]) -> str:
        return (
            f"Structured handoff from {site} failed after {attempts} attempts. "
            f"Invoke @{self.fallback_agent} directly with the last report from {site} "
            f"and decide the next step manually. Last problems: {'; '.join(reasons) or 'unknown'}."
        )

    def _explain_escalation(
        self, site: str, attempts: int, reasons: List[str], repeated: bool
    ) -> str:
        prefix = "Handoff site already escalated" if repeated else "Escalating handoff"
        return (
            f"{prefix}: site={site}, attempts={attempts}, "
            f"fallback=invoke @{self.fallback_agent} directly. "
            f"Reasons: {'; '.join(reasons) or 'unknown'}"
        )
