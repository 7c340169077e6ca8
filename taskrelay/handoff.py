"""Handoff validation for free-text agent completion reports.

Reports come from a non-deterministic text generator, so matching is lenient:
surrounding prose and markdown emphasis are tolerated. The result is a tagged
outcome so a stricter structured-output contract can replace this matcher
without touching callers.
"""

from __future__ import annotations

import logging
import re
from typing import Annotated, Iterable, List, Literal, Optional, Pattern, Union

from pydantic import BaseModel, Field

from .constants import DEFAULT_COMPLETION_PHRASES, DEFAULT_TASK_ID_REQUIRED_SUFFIXES
from .registry import TaskRegistry

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"HANDOFF_TOKEN[*_`\s]*:[*_`\s]*([^\s*`]+)", re.IGNORECASE)
TOKEN_CHARS = re.compile(r"[A-Z0-9_]+")
AGENT_MENTION = re.compile(r"(?<![\w.@])@([A-Za-z](?:[A-Za-z0-9_-]*[A-Za-z0-9])?)")
ROUTE_LINE = re.compile(r"(?:ROUTE|HANDOFF)\s+TO[*_\s]*:(.*)", re.IGNORECASE)
TASK_ID_PATTERN = re.compile(r"\bTask\s+ID\s*:?\s*([0-9]+(?:\.[0-9]+)*)", re.IGNORECASE)

_TRAILING_PUNCTUATION = ".,;:!?)]}'\""


class CompleteOutcome(BaseModel):
    """The agent reported that the work is finished; nothing to route."""

    kind: Literal["complete"] = "complete"
    phrase: str


class HandoffOutcome(BaseModel):
    """A well-formed handoff naming the next agent."""

    kind: Literal["handoff"] = "handoff"
    target: str
    token: str
    task_id: Optional[str] = None


class MalformedOutcome(BaseModel):
    """Neither a completion nor a usable handoff was found."""

    kind: Literal["malformed"] = "malformed"
    reasons: List[str] = Field(default_factory=list)


Outcome = Annotated[
    Union[CompleteOutcome, HandoffOutcome, MalformedOutcome],
    Field(discriminator="kind"),
]


def _phrase_pattern(phrases: Iterable[str]) -> Pattern[str]:
    alternatives = []
    for phrase in phrases:
        words = re.findall(r"[A-Za-z0-9]+", phrase)
        if words:
            alternatives.append(r"\b" + r"\W+".join(re.escape(w) for w in words) + r"\b")
    if not alternatives:
        # Matches nothing.
        return re.compile(r"(?!x)x")
    return re.compile("|".join(alternatives), re.IGNORECASE)


class HandoffValidator:
    """Classifies a completion report as complete, handoff or malformed."""

    def __init__(
        self,
        completion_phrases: Iterable[str] = DEFAULT_COMPLETION_PHRASES,
        task_id_required_suffixes: Iterable[str] = DEFAULT_TASK_ID_REQUIRED_SUFFIXES,
        registry: Optional[TaskRegistry] = None,
    ) -> None:
        self._completion = _phrase_pattern(completion_phrases)
        self._task_id_suffixes = tuple(task_id_required_suffixes)
        self._registry = registry

    def validate(self, report: str) -> Union[CompleteOutcome, HandoffOutcome, MalformedOutcome]:
        report = report or ""
        completion = self._completion.search(report)
        if completion:
            logger.debug(f"Completion phrase found: {completion.group(0)!r}")
            return CompleteOutcome(phrase=completion.group(0))

        reasons: List[str] = []
        token = self._extract_token(report, reasons)
        target = self._extract_target(report)
        if target is None:
            reasons.append("no target agent reference of the form @<agent-name>")
        if token is None or target is None:
            return MalformedOutcome(reasons=reasons)

        task_id = self._extract_task_id(report)
        if task_id is None and target.endswith(self._task_id_suffixes):
            return MalformedOutcome(
                reasons=[f"handoff to @{target} must include 'Task ID: <id>'"]
            )
        if task_id is not None and self._registry is not None:
            if self._registry.get(task_id) is None:
                return MalformedOutcome(
                    reasons=[f"Task ID {task_id} is not known to the task registry"]
                )
        return HandoffOutcome(target=target, token=token, task_id=task_id)

    @staticmethod
    def _extract_token(report: str, reasons: List[str]) -> Optional[str]:
        candidates = [
            match.group(1).rstrip(_TRAILING_PUNCTUATION)
            for match in TOKEN_PATTERN.finditer(report)
        ]
        for candidate in candidates:
            if TOKEN_CHARS.fullmatch(candidate):
                return candidate
        if candidates:
            reasons.append(
                f"handoff token {candidates[0]!r} must contain only uppercase letters, "
                "digits or underscores"
            )
        else:
            reasons.append("no 'HANDOFF_TOKEN: <ID>' marker")
        return None

    @staticmethod
    def _extract_target(report: str) -> Optional[str]:
        for line in report.splitlines():
            route = ROUTE_LINE.search(line)
            if route:
                mention = AGENT_MENTION.search(route.group(1))
                if mention:
                    return mention.group(1)
        mentions = [match.group(1) for match in AGENT_MENTION.finditer(report)]
        if not mentions:
            return None
        return next((name for name in mentions if name.endswith("-agent")), mentions[0])

    @staticmethod
    def _extract_task_id(report: str) -> Optional[str]:
        match = TASK_ID_PATTERN.search(report)
        return match.group(1) if match else None
