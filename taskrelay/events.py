"""Parsing of host hook payloads into completion events."""

from __future__ import annotations

import json
import logging
import re
from collections import deque
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from .constants import SUBAGENT_STOP_EVENT
from .contracts import StepId
from .exceptions import TaskRelayError

logger = logging.getLogger(__name__)

_EVENT_KEYS = ("event", "hook_event_name", "type")
_AGENT_KEYS = ("subagent_name", "agent_name", "agent", "subagent")
_REPORT_KEYS = ("content", "text", "output", "response")
_HANDOFF_HINT = re.compile(r"HANDOFF_TOKEN|ROUTE TO|HANDOFF TO", re.IGNORECASE)
TRANSCRIPT_TAIL_LINES = 50


class HostEvent(BaseModel):
    """An externally observed agent completion."""

    event: str = ""
    agent: str = ""
    report: str = ""
    step_id: Optional[StepId] = None
    transcript_path: Optional[str] = None

    @property
    def is_subagent_stop(self) -> bool:
        return self.event == SUBAGENT_STOP_EVENT

    @classmethod
    def from_json(cls, raw: str) -> "HostEvent":
        try:
            payload = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            raise TaskRelayError(f"Hook payload is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise TaskRelayError("Hook payload must be a JSON object")
        return cls.from_payload(payload)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "HostEvent":
        """Build an event, accepting the field spellings different hosts use."""
        transcript_path = payload.get("transcript_path") or None
        report = _first_text(payload, ("agent_output",))
        if not report:
            report = _tool_response_text(payload)
        if not report:
            report = _first_text(payload, _REPORT_KEYS)
        if not report and transcript_path:
            report = report_from_transcript(Path(transcript_path))

        return cls(
            event=_first_text(payload, _EVENT_KEYS),
            agent=_first_text(payload, _AGENT_KEYS),
            report=report,
            step_id=payload.get("step_id"),
            transcript_path=transcript_path,
        )


def report_from_transcript(path: Path, tail: int = TRANSCRIPT_TAIL_LINES) -> str:
    """Return the latest assistant text from a JSONL transcript.

    Texts carrying a handoff marker win over plain assistant output.
    """
    if not path.is_file():
        logger.debug(f"Transcript not found: {path}")
        return ""
    try:
        with path.open(encoding="utf-8") as handle:
            lines = deque(handle, maxlen=tail)
    except (OSError, UnicodeDecodeError) as exc:
        raise TaskRelayError(f"Cannot read transcript {path}: {exc}") from exc

    texts: List[str] = []
    for line in lines:
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict) or entry.get("type") != "assistant":
            continue
        texts.extend(_message_texts(entry.get("message")))

    marked = [text for text in texts if _HANDOFF_HINT.search(text)]
    if marked:
        return marked[-1]
    return texts[-1] if texts else ""


def _first_text(payload: Dict[str, Any], keys: tuple) -> str:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _tool_response_text(payload: Dict[str, Any]) -> str:
    response = payload.get("tool_response")
    if not isinstance(response, dict):
        return ""
    content = response.get("content")
    if isinstance(content, list) and content and isinstance(content[0], dict):
        text = content[0].get("text")
        if isinstance(text, str):
            return text
    return ""


def _message_texts(message: Any) -> List[str]:
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if isinstance(content, str):
        return [content]
    texts: List[str] = []
    if isinstance(content, list):
        for item in content:
            if isinstance(item, str):
                texts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                texts.append(item["text"])
    return texts
