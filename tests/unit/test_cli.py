"""Tests for the taskrelay command line interface."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from taskrelay.cli import app
from taskrelay.contracts import StepStatus
from taskrelay.persistence import JsonFileGraphStore

PLANS = Path(__file__).parent.parent / "fixtures" / "plans"

runner = CliRunner()


@pytest.fixture
def workflow_path(tmp_path, monkeypatch):
    for name in ("TASKRELAY_CONFIG", "TASKRELAY_WORKFLOW_PATH", "TASKRELAY_MAX_PARALLEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path / "workflow.json"


def _invoke(path, *args, stdin=None):
    return runner.invoke(app, ["--path", str(path), *args], input=stdin)


def _event(agent, report):
    return json.dumps({"event": "SubagentStop", "subagent_name": agent, "agent_output": report})


def test_init_and_show(workflow_path):
    result = _invoke(workflow_path, "init", str(PLANS / "scenario_a.json"))
    assert result.exit_code == 0, f"init failed: {result.output}"
    assert "Created workflow with 3 steps (max_parallel=2)" in result.output
    assert "Next recommended: 1, 2" in result.output

    result = _invoke(workflow_path, "show")
    assert result.exit_code == 0, f"show failed: {result.output}"
    assert "Workflow: Publish a researched article [pending]" in result.output
    assert "- 3 [pending] writer-agent: Write the article (after 1, 2)" in result.output


def test_init_yaml_plan_uses_configured_budget(workflow_path):
    result = _invoke(workflow_path, "init", str(PLANS / "release.yaml"))

    assert result.exit_code == 0, f"init failed: {result.output}"
    assert "max_parallel=2" in result.output
    assert JsonFileGraphStore(workflow_path).load().find_step(2).depends_on == [1]


def test_init_rejects_cyclic_plan(workflow_path):
    result = _invoke(workflow_path, "init", str(PLANS / "cyclic.json"))

    assert result.exit_code == 2
    assert "Error:" in result.output
    assert "cycle" in result.output
    assert not workflow_path.exists()


def test_show_without_workflow_fails(workflow_path):
    result = _invoke(workflow_path, "show")

    assert result.exit_code == 2
    assert "No workflow document" in result.output


def test_plan_outputs_json(workflow_path):
    _invoke(workflow_path, "init", str(PLANS / "scenario_a.json"), "--max-parallel", "1")

    result = _invoke(workflow_path, "plan")

    assert result.exit_code == 0, f"plan failed: {result.output}"
    plan = json.loads(result.output)
    assert plan["available"] == [1, 2]
    assert plan["next_recommended"] == [1]


def test_full_run_through_hook_events(workflow_path):
    _invoke(workflow_path, "init", str(PLANS / "scenario_a.json"))

    result = _invoke(workflow_path, "next")
    assert "DISPATCH 1 -> @research-agent: Collect sources" in result.output
    assert "DISPATCH 2 -> @design-agent: Draft outline" in result.output

    result = _invoke(
        workflow_path,
        "event",
        stdin=_event("research-agent", "Sources ready.\nHANDOFF_TOKEN: SRC_1\nROUTE TO: @writer-agent"),
    )
    assert result.exit_code == 0, f"event failed: {result.output}"
    assert "No steps ready to dispatch" in result.output

    result = _invoke(workflow_path, "event", stdin=_event("design-agent", "Outline done. TASK COMPLETE"))
    assert result.exit_code == 0, f"event failed: {result.output}"
    assert "DISPATCH 3 -> @writer-agent: Write the article" in result.output

    result = _invoke(workflow_path, "event", stdin=_event("writer-agent", "Published. TASK COMPLETE"))
    assert result.exit_code == 0, f"event failed: {result.output}"
    assert "WORKFLOW COMPLETE" in result.output

    workflow = JsonFileGraphStore(workflow_path).load()
    assert workflow.status == StepStatus.COMPLETED
    assert workflow.find_step(1).result.startswith("Sources ready.")


def test_malformed_reports_retry_then_escalate(workflow_path):
    _invoke(workflow_path, "init", str(PLANS / "scenario_a.json"))
    payload = _event("research-agent", "I looked into it and wrote some notes.")

    first = _invoke(workflow_path, "event", stdin=payload)
    second = _invoke(workflow_path, "event", stdin=payload)
    third = _invoke(workflow_path, "event", stdin=payload)

    assert [first.exit_code, second.exit_code, third.exit_code] == [1, 1, 2]
    assert "RETRY HANDOFF" in first.output
    assert "ESCALATED: Escalating handoff: site=research-agent#1, attempts=3" in third.output
    assert "@general-purpose-agent" in third.output


def test_event_skips_other_hook_events(workflow_path):
    _invoke(workflow_path, "init", str(PLANS / "scenario_a.json"))

    result = _invoke(
        workflow_path, "event", stdin=json.dumps({"event": "PreToolUse", "agent": "x"})
    )

    assert result.exit_code == 0
    assert "Skipping event PreToolUse" in result.output


def test_event_agent_override_and_step(workflow_path):
    _invoke(workflow_path, "init", str(PLANS / "scenario_a.json"))

    result = _invoke(
        workflow_path,
        "event",
        "--agent",
        "design-agent",
        "--step",
        "2",
        stdin=json.dumps({"content": "Outline drafted. TASK COMPLETE"}),
    )

    assert result.exit_code == 0, f"event failed: {result.output}"
    assert JsonFileGraphStore(workflow_path).load().find_step(2).status == StepStatus.COMPLETED


def test_start_and_complete_commands(workflow_path):
    _invoke(workflow_path, "init", str(PLANS / "release.yaml"))

    blocked = _invoke(workflow_path, "start", "2")
    assert blocked.exit_code == 2
    assert "waiting on 1" in blocked.output

    assert _invoke(workflow_path, "start", "1").exit_code == 0
    result = _invoke(workflow_path, "complete", "1", "--result", "-", stdin="Changelog written")
    assert result.exit_code == 0, f"complete failed: {result.output}"
    assert "Next recommended: 2" in result.output

    duplicate = _invoke(workflow_path, "complete", "1", "--result", "again")
    assert duplicate.exit_code == 2
    assert "already completed" in duplicate.output

    result = _invoke(workflow_path, "complete", "2", "--result", "Tagged v1")
    assert "WORKFLOW COMPLETE" in result.output
    assert JsonFileGraphStore(workflow_path).load().find_step(1).result == "Changelog written"


def test_validate_command(workflow_path):
    ok = runner.invoke(app, ["validate", "--report", "HANDOFF_TOKEN: A1 @qa-agent"])
    assert ok.exit_code == 0
    assert json.loads(ok.output) == {
        "kind": "handoff",
        "target": "qa-agent",
        "token": "A1",
        "task_id": None,
    }

    bad = runner.invoke(app, ["validate"], input="nothing useful here")
    assert bad.exit_code == 1
    assert json.loads(bad.output)["kind"] == "malformed"


def test_stale_command(workflow_path):
    _invoke(workflow_path, "init", str(PLANS / "scenario_a.json"))

    assert "No stale steps" in _invoke(workflow_path, "stale").output

    _invoke(workflow_path, "next")
    result = _invoke(workflow_path, "stale", "--max-age=-1")
    assert "STALE 1" in result.output
    assert "STALE 2" in result.output


def test_corrupt_registry_exits_with_escalation_code(workflow_path, tmp_path):
    registry = tmp_path / "tasks.json"
    registry.write_text("{not json")
    config = tmp_path / "taskrelay.yaml"
    config.write_text(f"handoff:\n  registry_path: {registry}\n")

    result = runner.invoke(
        app,
        [
            "--config",
            str(config),
            "validate",
            "--report",
            "HANDOFF_TOKEN: X1 @a-implementation-agent Task ID: 3",
        ],
    )

    assert result.exit_code == 2
    assert "Cannot read task registry" in result.output


def test_invalid_config_exits_with_escalation_code(workflow_path, tmp_path):
    config = tmp_path / "taskrelay.yaml"
    config.write_text("scheduler:\n  max_parallel: zero\n")

    result = runner.invoke(app, ["--config", str(config), "show"])

    assert result.exit_code == 2
    assert "Invalid configuration" in result.output
