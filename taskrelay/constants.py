"""Shared defaults for taskrelay."""

from __future__ import annotations

DEFAULT_MAX_PARALLEL = 2
DEFAULT_MAX_HANDOFF_ATTEMPTS = 3
DEFAULT_CAS_RETRIES = 3
DEFAULT_LOCK_TIMEOUT_SECONDS = 3.0
DEFAULT_WORKFLOW_PATH = ".taskrelay/workflow.json"
DEFAULT_FALLBACK_AGENT = "general-purpose-agent"

# Phrases an agent uses to say the work is finished and nothing needs routing.
# Words are matched case-insensitively with any punctuation or whitespace between them.
DEFAULT_COMPLETION_PHRASES = (
    "TASK COMPLETE",
    "WORKFLOW COMPLETE",
    "PROJECT COMPLETE",
    "FINAL COMPLETE",
    "ALL TASKS COMPLETE",
    "COMPLETE - NO HANDOFF",
    "NO HANDOFF REQUIRED",
)

# Handoffs to these agents must name the registry task they implement.
DEFAULT_TASK_ID_REQUIRED_SUFFIXES = ("-implementation-agent",)

SUBAGENT_STOP_EVENT = "SubagentStop"
