"""
CLI interface for AI Incident Guard.

Provides command-line access to logging, detection, incidents and
remediation.
"""

import json
import sys
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from ai_incident_guard.config.loader import load_config
from ai_incident_guard.config.logger import setup_logger
from ai_incident_guard.core.actions import parameters_to_dict
from ai_incident_guard.core.errors import IncidentGuardError
from ai_incident_guard.core.incidents import list_incidents, report_incident, resolve_incident
from ai_incident_guard.core.ingestion import LogRequestInput, log_request
from ai_incident_guard.core.remediation import (
    apply_remediation_action,
    create_remediation_action,
    get_project_settings,
    list_remediation_actions,
)
from ai_incident_guard.core.scheduler import DetectionScheduler, run_scheduled_incident_detection
from ai_incident_guard.storage.repository import Repositories

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

SEVERITY_STYLES = {"low": "yellow", "medium": "dark_orange", "high": "red"}


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


def _state(ctx: typer.Context):
    """Return (config, repositories) for the invoked command."""
    obj = ctx.obj
    if "repos" not in obj:
        try:
            obj["repos"] = Repositories.for_path(obj["db_path"])
        except Exception as e:
            _fail(f"could not open database {obj['db_path']}: {e}")
    return obj["config"], obj["repos"]


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to YAML configuration file"
    ),
    db_path: Optional[str] = typer.Option(
        None, "--db", help="SQLite database path (overrides the configuration)"
    ),
):
    """AI Incident Guard CLI."""
    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        _fail(f"invalid configuration: {e}")

    setup_logger(level=config.logging.level, log_file=config.logging.file)
    ctx.obj = {"config": config, "db_path": db_path or config.database.path}

    if ctx.invoked_subcommand is None:
        console.print("AI Incident Guard - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the AI Incident Guard database."""
    _state(ctx)
    console.print(f"[green]✓[/] Database initialized at {ctx.obj['db_path']}")


@app.command("add-project")
def add_project(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project identifier"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
):
    """Register a project."""
    _, repos = _state(ctx)
    if repos.projects.exists(project_id):
        _fail(f"project {project_id} already exists")
    repos.projects.create_project(project_id, name)
    console.print(f"[green]✓[/] Project {project_id} registered")


@app.command()
def log(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project identifier"),
    prompt: str = typer.Option(..., "--prompt", help="Prompt sent to the model"),
    response: str = typer.Option(..., "--response", help="Model response"),
    model: str = typer.Option(..., "--model", "-m", help="Model name"),
    latency_ms: float = typer.Option(..., "--latency", "-l", help="Latency in milliseconds"),
    tokens: int = typer.Option(0, "--tokens", "-t", help="Total tokens used"),
    error: Optional[str] = typer.Option(None, "--error", "-e", help="Error message if the call failed"),
):
    """Record one LLM call and print its risk score."""
    config, repos = _state(ctx)
    try:
        record = log_request(
            project_id,
            LogRequestInput(
                prompt=prompt, response=response, model=model,
                latency_ms=latency_ms, tokens=tokens, error=error,
            ),
            repos.requests,
            repos.projects,
            config.scoring,
        )
    except IncidentGuardError as e:
        _fail(e.message)
    console.print(f"[green]✓[/] Request {record.id} logged (risk score {record.risk_score})")


def _display_summary(summary) -> None:
    table = Table(title="Incident Detection Run")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Projects processed", str(summary.projects_processed))
    table.add_row("Projects with anomalies", str(summary.projects_with_anomalies))
    table.add_row("Incidents created", str(summary.incidents_created))
    table.add_row("Incidents skipped (already open)", str(summary.incidents_skipped))
    table.add_row("Failed projects", ", ".join(summary.failed_projects) or "-")
    table.add_row("Duration", f"{summary.duration_ms:.0f}ms")
    console.print(table)


@app.command()
def detect(ctx: typer.Context):
    """Run incident detection once over every project."""
    config, repos = _state(ctx)
    summary = run_scheduled_incident_detection(repos.projects, repos.requests, repos.incidents, config)
    _display_summary(summary)
    if summary.failed_projects:
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def watch(
    ctx: typer.Context,
    interval: Optional[float] = typer.Option(
        None, "--interval", "-i", help="Seconds between runs (defaults to the configuration)"
    ),
):
    """Run incident detection on a schedule until interrupted."""
    config, repos = _state(ctx)
    seconds = interval if interval is not None else config.scheduler.interval_seconds
    if seconds <= 0:
        _fail("interval must be positive")

    scheduler = DetectionScheduler(
        lambda: run_scheduled_incident_detection(repos.projects, repos.requests, repos.incidents, config),
        seconds,
    )
    console.print(f"Running detection every {seconds:g}s. Press Ctrl+C to stop.")
    scheduler.start()
    try:
        scheduler.wait()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()


@app.command()
def incidents(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project identifier"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="open or resolved"),
    trigger: Optional[str] = typer.Option(None, "--trigger", help="Filter by trigger type"),
    limit: int = typer.Option(50, "--limit", help="Maximum rows"),
    offset: int = typer.Option(0, "--offset", help="Rows to skip"),
):
    """List a project's incidents, newest first."""
    _, repos = _state(ctx)
    try:
        rows = list_incidents(project_id, repos.incidents, status, trigger, limit, offset)
    except IncidentGuardError as e:
        _fail(e.message)

    if not rows:
        console.print(f"[dim]No incidents for project {project_id}.[/]")
        return

    table = Table(title=f"Incidents for {project_id}")
    for column in ("ID", "Severity", "Trigger", "Status", "Affected", "Created", "Root cause"):
        table.add_column(column)
    for incident in rows:
        style = SEVERITY_STYLES.get(incident.severity.value, "white")
        table.add_row(
            str(incident.id),
            f"[{style}]{incident.severity.value}[/]",
            incident.trigger_type.value,
            incident.status.value,
            str(incident.affected_requests),
            incident.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            incident.root_cause,
        )
    console.print(table)


@app.command()
def report(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project identifier"),
    trigger: str = typer.Option("manual", "--trigger", help="Trigger type"),
    severity: str = typer.Option(..., "--severity", "-s", help="low, medium or high"),
    root_cause: str = typer.Option(..., "--root-cause", help="What went wrong"),
    recommended_fix: str = typer.Option(..., "--fix", help="What to do about it"),
    affected: int = typer.Option(0, "--affected", help="Number of affected requests"),
):
    """Open an incident by hand."""
    _, repos = _state(ctx)
    try:
        incident = report_incident(
            project_id, trigger, severity, root_cause, recommended_fix,
            repos.incidents, repos.projects, affected_requests=affected,
        )
    except IncidentGuardError as e:
        _fail(e.message)
    console.print(f"[green]✓[/] Incident {incident.id} opened")


@app.command()
def resolve(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project identifier"),
    incident_id: int = typer.Argument(..., help="Incident to resolve"),
):
    """Resolve an open incident."""
    _, repos = _state(ctx)
    try:
        incident = resolve_incident(project_id, incident_id, repos.incidents)
    except IncidentGuardError as e:
        _fail(e.message)
    console.print(f"[green]✓[/] Incident {incident.id} resolved at {incident.resolved_at:%Y-%m-%d %H:%M:%S}")


@app.command()
def remediate(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project identifier"),
    incident_id: int = typer.Argument(..., help="Incident to remedy"),
    action_type: str = typer.Argument(..., help="Remediation action type"),
    params: str = typer.Option(..., "--params", "-p", help='Parameters as JSON, e.g. \'{"new_model": "gpt-4"}\''),
):
    """Create a pending remediation action."""
    _, repos = _state(ctx)
    try:
        parameters = json.loads(params)
    except json.JSONDecodeError as e:
        _fail(f"--params is not valid JSON: {e}")
    if not isinstance(parameters, dict):
        _fail("--params must be a JSON object")

    try:
        action = create_remediation_action(
            project_id, incident_id, action_type, parameters, repos.incidents, repos.remediations,
        )
    except IncidentGuardError as e:
        _fail(e.message)
    console.print(f"[green]✓[/] Remediation action {action.id} ({action.action_type.value}) created")


@app.command()
def apply(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project identifier"),
    incident_id: int = typer.Argument(..., help="Incident the action belongs to"),
    action_id: int = typer.Argument(..., help="Action to apply"),
):
    """Apply a pending remediation action."""
    _, repos = _state(ctx)
    try:
        action = apply_remediation_action(
            project_id, incident_id, action_id, repos.incidents, repos.remediations, repos.settings,
        )
    except IncidentGuardError as e:
        _fail(e.message)
    console.print(f"[green]✓[/] Remediation action {action.id} applied")


@app.command()
def actions(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project identifier"),
    incident_id: int = typer.Argument(..., help="Incident to inspect"),
    limit: int = typer.Option(50, "--limit", help="Maximum rows"),
    offset: int = typer.Option(0, "--offset", help="Rows to skip"),
):
    """List an incident's remediation actions."""
    _, repos = _state(ctx)
    try:
        rows = list_remediation_actions(
            project_id, incident_id, repos.incidents, repos.remediations, limit, offset,
        )
    except IncidentGuardError as e:
        _fail(e.message)

    if not rows:
        console.print(f"[dim]No remediation actions for incident {incident_id}.[/]")
        return

    table = Table(title=f"Remediation actions for incident {incident_id}")
    for column in ("ID", "Type", "Parameters", "Executed", "Created"):
        table.add_column(column)
    for action in rows:
        table.add_row(
            str(action.id),
            action.action_type.value,
            json.dumps(parameters_to_dict(action.parameters)),
            "yes" if action.executed else "no",
            action.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@app.command()
def settings(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project identifier"),
):
    """Show a project's effective settings."""
    config, repos = _state(ctx)
    if not repos.projects.exists(project_id):
        _fail(f"Project {project_id} not found")

    effective = get_project_settings(project_id, repos.settings, config)
    table = Table(title=f"Effective settings for {project_id}")
    table.add_column("Setting")
    table.add_column("Value")
    model = effective.preferred_model + (" (forced)" if effective.forced_model else "")
    table.add_row("Model", model)
    table.add_row("Safety threshold", str(effective.safety_threshold))
    table.add_row("Rate limit (req/min)", str(effective.rate_limit))
    for user_id, limit in sorted(effective.user_rate_limits.items()):
        table.add_row(f"Rate limit for {user_id}", str(limit))
    table.add_row("Disabled endpoints", ", ".join(sorted(effective.disabled_endpoints)) or "-")
    table.add_row("System prompt", effective.system_prompt or "-")
    console.print(table)


if __name__ == "__main__":
    app()
