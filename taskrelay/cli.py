"""Command line interface for the taskrelay coordinator.

Exit codes follow the hook contract: 0 success or nothing to do, 1 retry
needed, 2 escalation or an error a human must look at.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Iterator, Optional

import typer
import yaml

from taskrelay.config import LoggingConfig, TaskRelayConfig, load_config
from taskrelay.contracts import StepId, Workflow
from taskrelay.coordinator import EXIT_CODES, EventResult, WorkflowCoordinator, build_validator
from taskrelay.events import HostEvent
from taskrelay.exceptions import TaskRelayError
from taskrelay.handoff import MalformedOutcome

app = typer.Typer(help="CLI for taskrelay workflow coordination")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", help="Path to taskrelay.yaml"),
    path: Optional[str] = typer.Option(
        None, "--path", help="Workflow document path (overrides configuration)"
    ),
) -> None:
    """taskrelay CLI entry point."""
    with _handle_errors():
        settings = load_config(str(config) if config else None)
    _configure_logging(settings.logging)
    ctx.obj = {"config": settings, "path": path}


@app.command("init")
def workflow_init(
    ctx: typer.Context,
    plan_file: Path,
    max_parallel: Optional[int] = typer.Option(
        None, "--max-parallel", min=1, help="Concurrency budget for the run"
    ),
) -> None:
    """
    Create the workflow document from a JSON or YAML plan.

    The plan is validated on ingestion: missing step fields, duplicate ids,
    unknown dependencies and dependency cycles are rejected.

    Example:
        taskrelay init plan.json --max-parallel 3
    """
    config: TaskRelayConfig = ctx.obj["config"]
    with _handle_errors():
        plan = _read_plan(plan_file)
        if max_parallel is None and "max_parallel" not in (plan.get("execution_state") or {}):
            max_parallel = config.scheduler.max_parallel
        workflow = _coordinator(ctx).create(plan, max_parallel=max_parallel)
    typer.echo(
        f"Created workflow with {len(workflow.steps)} steps "
        f"(max_parallel={workflow.execution_state.max_parallel})"
    )
    _echo_recommended(workflow)


@app.command("show")
def workflow_show(ctx: typer.Context) -> None:
    """
    Show the workflow status and every step.

    Example:
        taskrelay show
        # Output: Workflow: Ship login page [in_progress]
        #         - 1 [completed] research-agent: Research auth options
        #         - 2 [pending] implementation-agent: Build login form (after 1)
    """
    with _handle_errors():
        workflow = _coordinator(ctx).load()
    typer.echo(f"Workflow: {workflow.goal} [{workflow.status.value}]")
    for step in workflow.steps:
        deps = f" (after {', '.join(str(d) for d in step.depends_on)})" if step.depends_on else ""
        typer.echo(f"- {step.id} [{step.status.value}] {step.agent}: {step.task}{deps}")
    state = workflow.execution_state
    typer.echo(
        f"In progress: {state.in_progress_count}/{state.max_parallel}, "
        f"available: {state.available_tasks}, next: {state.next_recommended}"
    )


@app.command("plan")
def workflow_plan(ctx: typer.Context) -> None:
    """Print the current schedule plan as JSON."""
    with _handle_errors():
        plan = _coordinator(ctx).plan()
    typer.echo(json.dumps(plan.model_dump(mode="json"), indent=2))


@app.command("start")
def step_start(ctx: typer.Context, step_id: str) -> None:
    """Mark a pending step as in progress."""
    with _handle_errors():
        _coordinator(ctx).start(_parse_step_id(step_id))
    typer.echo(f"Started step {step_id}")


@app.command("next")
def step_next(ctx: typer.Context) -> None:
    """Start every recommended step and list them."""
    with _handle_errors():
        coordinator = _coordinator(ctx)
        started = coordinator.start_next()
        workflow = coordinator.load()
    if not started:
        typer.echo("Nothing to start")
        return
    for started_id in started:
        step = workflow.find_step(started_id)
        typer.echo(f"DISPATCH {step.id} -> @{step.agent}: {step.task}")


@app.command("complete")
def step_complete(
    ctx: typer.Context,
    step_id: str,
    result: str = typer.Option("", "--result", help="Report text; '-' reads stdin"),
) -> None:
    """Mark a step as completed and attach its report."""
    if result == "-":
        result = typer.get_text_stream("stdin").read()
    with _handle_errors():
        workflow = _coordinator(ctx).complete(_parse_step_id(step_id), result)
    typer.echo(f"Completed step {step_id}")
    if workflow.is_completed:
        typer.echo("WORKFLOW COMPLETE")
    else:
        _echo_recommended(workflow)


@app.command("validate")
def report_validate(
    ctx: typer.Context,
    report: Optional[str] = typer.Option(None, "--report", help="Report text (default: stdin)"),
) -> None:
    """
    Classify a completion report without touching the workflow.

    Exits 1 when the report is malformed.
    """
    if report is None:
        report = typer.get_text_stream("stdin").read()
    with _handle_errors():
        outcome = build_validator(ctx.obj["config"]).validate(report)
    typer.echo(outcome.model_dump_json())
    if isinstance(outcome, MalformedOutcome):
        raise typer.Exit(code=EXIT_CODES["retry"])


@app.command("event")
def hook_event(
    ctx: typer.Context,
    agent: Optional[str] = typer.Option(None, "--agent", help="Override the reporting agent"),
    step: Optional[str] = typer.Option(None, "--step", help="Step the report belongs to"),
) -> None:
    """
    Handle a SubagentStop hook payload read from stdin.

    Example:
        echo '{"event": "SubagentStop", "subagent_name": "research-agent",
               "agent_output": "HANDOFF_TOKEN: R1 ROUTE TO: @writer-agent"}' | taskrelay event
    """
    raw = typer.get_text_stream("stdin").read()
    with _handle_errors():
        event = HostEvent.from_json(raw)
        if not event.is_subagent_stop and agent is None:
            typer.echo(f"Skipping event {event.event or '(none)'}: not a SubagentStop")
            return
        reporter = agent or event.agent
        if not reporter:
            raise TaskRelayError("Hook payload does not name the reporting agent")
        step_id = _parse_step_id(step) if step is not None else event.step_id
        result = _coordinator(ctx).handle_event(reporter, event.report, step_id=step_id)
    _echo_event_result(result)
    if result.exit_code:
        raise typer.Exit(code=result.exit_code)


@app.command("stale")
def steps_stale(
    ctx: typer.Context,
    max_age: Optional[float] = typer.Option(
        None, "--max-age", help="Seconds in progress before a step is flagged"
    ),
) -> None:
    """List in-progress steps that have been running too long."""
    with _handle_errors():
        stale = _coordinator(ctx).stale_steps(
            timedelta(seconds=max_age) if max_age is not None else None
        )
    if not stale:
        typer.echo("No stale steps")
        return
    for stale_id in stale:
        typer.secho(f"STALE {stale_id}", fg=typer.colors.YELLOW)


# ----------------------------------------------------------------------
# Helpers
def _coordinator(ctx: typer.Context) -> WorkflowCoordinator:
    return WorkflowCoordinator.from_config(ctx.obj["config"], path=ctx.obj["path"])


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except TaskRelayError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=EXIT_CODES["escalate"])


def _configure_logging(settings: LoggingConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.level.upper(), logging.WARNING),
        filename=settings.file,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )


def _read_plan(plan_file: Path) -> dict:
    if not plan_file.exists():
        raise TaskRelayError(f"Plan file not found: {plan_file}")
    text = plan_file.read_text(encoding="utf-8")
    if plan_file.suffix in {".yaml", ".yml"}:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise TaskRelayError(f"Plan file is not valid YAML: {exc}") from exc
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise TaskRelayError(f"Plan file is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise TaskRelayError("Plan must be a mapping with 'goal' and 'steps'")
    return data


def _parse_step_id(raw: str) -> StepId:
    stripped = raw.strip()
    if stripped.lstrip("-").isdigit():
        return int(stripped)
    return stripped


def _echo_recommended(workflow: Workflow) -> None:
    recommended = workflow.execution_state.next_recommended
    if recommended:
        typer.echo(f"Next recommended: {', '.join(str(i) for i in recommended)}")


def _echo_event_result(result: EventResult) -> None:
    disposition = result.disposition
    if disposition.kind == "retry":
        typer.secho("RETRY HANDOFF", fg=typer.colors.YELLOW)
        typer.echo(disposition.instruction)
        return
    if disposition.kind == "escalate":
        typer.secho(f"ESCALATED: {disposition.explanation}", fg=typer.colors.RED)
        typer.echo(disposition.instruction)
        return
    if result.workflow.is_completed:
        typer.echo("WORKFLOW COMPLETE")
        return
    if not disposition.step_ids:
        typer.echo("No steps ready to dispatch")
        return
    for step_id in disposition.step_ids:
        step = result.workflow.find_step(step_id)
        typer.echo(f"DISPATCH {step.id} -> @{step.agent}: {step.task}")
