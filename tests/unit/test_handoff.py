"""Tests for handoff report classification."""

import pytest

from taskrelay.handoff import (
    CompleteOutcome,
    HandoffOutcome,
    HandoffValidator,
    MalformedOutcome,
)
from taskrelay.registry import InMemoryTaskRegistry, RegistryTask


@pytest.fixture
def validator():
    return HandoffValidator()


def test_completion_phrase_is_complete(validator):
    outcome = validator.validate("All sections written and reviewed. TASK COMPLETE.")

    assert isinstance(outcome, CompleteOutcome)
    assert outcome.phrase == "TASK COMPLETE"


@pytest.mark.parametrize(
    "report",
    [
        "task complete",
        "**Workflow Complete**",
        "Status: complete - no handoff",
        "Done.\nNo handoff required.",
    ],
)
def test_completion_phrases_are_case_and_markup_tolerant(validator, report):
    assert isinstance(validator.validate(report), CompleteOutcome)


def test_completion_wins_over_handoff_markers(validator):
    report = "HANDOFF_TOKEN: LEFTOVER_1 @writer-agent\nTASK COMPLETE"

    assert isinstance(validator.validate(report), CompleteOutcome)


def test_well_formed_handoff(validator):
    report = "Research finished.\nHANDOFF_TOKEN: AB12_X\nNext: @writer-agent"

    outcome = validator.validate(report)

    assert outcome == HandoffOutcome(target="writer-agent", token="AB12_X")


def test_markdown_emphasis_is_tolerated(validator):
    report = (
        "## Summary\nSources collected.\n\n"
        "**HANDOFF_TOKEN**: `RESEARCH_DONE_1`\n"
        "**ROUTE TO**: @docs-agent please"
    )

    outcome = validator.validate(report)

    assert isinstance(outcome, HandoffOutcome)
    assert outcome.token == "RESEARCH_DONE_1"
    assert outcome.target == "docs-agent"


def test_route_line_mention_wins(validator):
    report = "Reviewed @alice's notes and @design-agent output.\nHANDOFF_TOKEN: X1\nROUTE TO: @qa-agent"

    assert validator.validate(report).target == "qa-agent"


def test_agent_suffixed_mention_preferred_without_route_line(validator):
    report = "Thanks @bob. HANDOFF_TOKEN: X2 for @review-agent"

    assert validator.validate(report).target == "review-agent"


def test_trailing_punctuation_is_stripped_from_token(validator):
    outcome = validator.validate("Handing over with HANDOFF_TOKEN: DONE_7. Next @qa-agent")

    assert isinstance(outcome, HandoffOutcome)
    assert outcome.token == "DONE_7"


def test_lowercase_token_is_malformed(validator):
    outcome = validator.validate("HANDOFF_TOKEN: research-done\nROUTE TO: @writer-agent")

    assert isinstance(outcome, MalformedOutcome)
    assert any("uppercase" in reason for reason in outcome.reasons)


def test_missing_token_is_malformed(validator):
    outcome = validator.validate("I finished the research, over to @writer-agent")

    assert isinstance(outcome, MalformedOutcome)
    assert outcome.reasons == ["no 'HANDOFF_TOKEN: <ID>' marker"]


def test_missing_target_is_malformed(validator):
    outcome = validator.validate("HANDOFF_TOKEN: R1\nSend questions to me@example.com")

    assert isinstance(outcome, MalformedOutcome)
    assert outcome.reasons == ["no target agent reference of the form @<agent-name>"]


def test_empty_report_collects_every_reason(validator):
    outcome = validator.validate("")

    assert isinstance(outcome, MalformedOutcome)
    assert len(outcome.reasons) == 2


def test_implementation_handoff_requires_task_id(validator):
    report = "HANDOFF_TOKEN: IMPL_1\nROUTE TO: @feature-implementation-agent"

    outcome = validator.validate(report)

    assert isinstance(outcome, MalformedOutcome)
    assert "Task ID" in outcome.reasons[0]

    outcome = validator.validate(report + "\nTask ID: 12.3")
    assert outcome == HandoffOutcome(
        target="feature-implementation-agent", token="IMPL_1", task_id="12.3"
    )


def test_registry_rejects_unknown_task_ids():
    registry = InMemoryTaskRegistry([RegistryTask(id="12", title="Login form")])
    validator = HandoffValidator(registry=registry)

    known = validator.validate("HANDOFF_TOKEN: T1 @qa-agent Task ID: 12")
    unknown = validator.validate("HANDOFF_TOKEN: T1 @qa-agent Task ID: 99")

    assert isinstance(known, HandoffOutcome)
    assert known.task_id == "12"
    assert isinstance(unknown, MalformedOutcome)
    assert "not known" in unknown.reasons[0]


def test_custom_completion_phrases_replace_defaults():
    validator = HandoffValidator(completion_phrases=["ALL GOOD"])

    assert isinstance(validator.validate("all good!"), CompleteOutcome)
    assert isinstance(validator.validate("TASK COMPLETE"), MalformedOutcome)


def test_empty_phrase_list_never_completes():
    validator = HandoffValidator(completion_phrases=[])

    assert isinstance(validator.validate("TASK COMPLETE"), MalformedOutcome)
