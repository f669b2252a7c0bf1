"""CLI entry point for floworx-approval-engine.

Invoked as::

    floworx-approvals [OPTIONS] COMMAND [ARGS]...

or during development::

    python -m floworx_approval.cli.main

Commands
--------
- init               Write a starter approvals.yaml from a template
- workflows list     List configured workflows
- workflows validate Validate approvals.yaml and report problems
- trigger            Gate an action behind a workflow
- decide             Approve or reject the current step of a request
- pending            List requests awaiting a decision
- show               Show one request and its decision log
- sweep              Time out expired requests (once, or every interval)
- audit show         Display recent audit entries
- version            Show version information
"""
from __future__ import annotations

import json
import logging
import sys
import time
from pathlib import Path

import click
import yaml
from pydantic import ValidationError as PydanticValidationError
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from floworx_approval.approval.models import ApprovalRequest, ApprovalStatus
from floworx_approval.approval.repository import SqliteApprovalRepository
from floworx_approval.config import ConfigLoader, EngineConfig
from floworx_approval.engine import ApprovalEngine
from floworx_approval.errors import NotFoundError, ValidationError

console = Console()
err_console = Console(stderr=True)

_DEFAULT_CONFIG = Path("approvals.yaml")
_DEFAULT_STORE = Path("approval_requests.db")

_STATUS_STYLES: dict[ApprovalStatus, str] = {
    ApprovalStatus.PENDING: "yellow",
    ApprovalStatus.AWAITING_DECISION: "cyan",
    ApprovalStatus.APPROVED: "green",
    ApprovalStatus.REJECTED: "red",
    ApprovalStatus.TIMEOUT: "magenta",
}

config_option = click.option(
    "--config",
    "-c",
    "config_path",
    default=str(_DEFAULT_CONFIG),
    show_default=True,
    type=click.Path(),
    help="Path to approvals.yaml.",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_config(config_path: str) -> EngineConfig:
    loader = ConfigLoader()
    path = Path(config_path)
    if not path.exists():
        return loader.defaults()
    try:
        return loader.load(path)
    except (ValueError, PydanticValidationError, yaml.YAMLError) as exc:
        err_console.print(f"[red]Invalid config[/red] {path}:\n{exc}")
        sys.exit(1)


def _build_engine(config_path: str) -> ApprovalEngine:
    config = _load_config(config_path)
    repository = SqliteApprovalRepository(config.store.path or _DEFAULT_STORE)
    try:
        return ApprovalEngine.from_config(config, repository=repository)
    except ValueError as exc:
        err_console.print(f"[red]Cannot start engine[/red] from {config_path}: {exc}")
        sys.exit(1)


def _parse_json(raw: str, label: str) -> dict[str, object]:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        err_console.print(f"[red]Invalid {label} JSON:[/red] {exc}")
        sys.exit(1)
    if not isinstance(value, dict):
        err_console.print(f"[red]Invalid {label}:[/red] expected a JSON object.")
        sys.exit(1)
    return value


def _status_text(status: ApprovalStatus) -> str:
    style = _STATUS_STYLES[status]
    return f"[{style}]{status.value}[/{style}]"


def _print_request(request: ApprovalRequest) -> None:
    step = request.current_step
    console.print(
        Panel(
            f"Workflow:  [bold]{request.workflow_id}[/bold]\n"
            f"Status:    {_status_text(request.status)}\n"
            f"Step:      {request.current_step_index + 1}/{request.step_count} ({step.type.value})\n"
            f"Created:   {request.created_at.isoformat()}\n"
            f"Deadline:  {request.deadline.isoformat()}",
            title=f"Request {request.request_id}",
            border_style="blue",
        )
    )
    if request.decision_log:
        table = Table(title="Decision Log", box=box.SIMPLE)
        table.add_column("Step", justify="right")
        table.add_column("Outcome", style="magenta")
        table.add_column("Actor", style="cyan")
        table.add_column("When", style="dim", no_wrap=True)
        table.add_column("Comments")
        for entry in request.decision_log:
            table.add_row(
                str(entry.step_index + 1),
                entry.outcome.value,
                entry.actor_id,
                entry.timestamp.isoformat()[:19].replace("T", " "),
                entry.comments,
            )
        console.print(table)


# ---------------------------------------------------------------------------
# Root command group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="floworx-approval-engine")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """FloWorx approval engine command-line interface."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from floworx_approval import __version__

    console.print(
        Panel(
            f"[bold]floworx-approval-engine[/bold]  v[cyan]{__version__}[/cyan]\n"
            "Approval workflow engine for automated business email.",
            title="Version",
            border_style="blue",
        )
    )


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


@cli.command(name="init")
@click.option(
    "--template",
    "-t",
    type=click.Choice(["minimal", "service_business", "strict"]),
    default="minimal",
    show_default=True,
    help="Starter configuration to write.",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default=str(_DEFAULT_CONFIG),
    show_default=True,
    help="Output config file path.",
)
@click.option("--force", is_flag=True, help="Overwrite an existing file.")
def init_command(template: str, output: str, force: bool) -> None:
    """Write a starter approvals.yaml."""
    from floworx_approval.templates.workflow_templates import write_template

    output_path = Path(output)
    if output_path.exists() and not force:
        err_console.print(f"[red]Refusing to overwrite[/red] {output_path} (use --force).")
        sys.exit(1)
    written = write_template(template, output_path)
    config = ConfigLoader().load(written)
    console.print(f"[green]Initialised[/green] approval config: [bold]{output_path}[/bold]")
    console.print(f"  Template: [cyan]{template}[/cyan]")
    console.print(f"  Workflows: [cyan]{len(config.workflows)}[/cyan]")


# ---------------------------------------------------------------------------
# workflows group
# ---------------------------------------------------------------------------


@cli.group(name="workflows")
def workflows_group() -> None:
    """Workflow definition commands."""


@workflows_group.command(name="list")
@config_option
def workflows_list_command(config_path: str) -> None:
    """List configured workflows."""
    with _build_engine(config_path) as engine:
        workflows = engine.store.list_workflows()
    if not workflows:
        console.print("[yellow]No workflows configured.[/yellow]")
        return

    table = Table(title="Workflows", box=box.SIMPLE)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Enabled")
    table.add_column("Priority", justify="right")
    table.add_column("Steps")
    table.add_column("Auto-approve")
    table.add_column("Timeout (h)", justify="right")
    for workflow in workflows:
        table.add_row(
            workflow.id,
            workflow.name,
            "[green]yes[/green]" if workflow.enabled else "[red]no[/red]",
            str(workflow.priority),
            ", ".join(s.type.value for s in workflow.effective_steps()),
            ", ".join(c.type.value for c in workflow.auto_approve_conditions) or "-",
            f"{workflow.timeout_hours:g}",
        )
    console.print(table)


@workflows_group.command(name="validate")
@config_option
def workflows_validate_command(config_path: str) -> None:
    """Validate approvals.yaml and report problems."""
    path = Path(config_path)
    if not path.exists():
        err_console.print(f"[red]Config not found:[/red] {path}")
        sys.exit(1)
    try:
        config = ConfigLoader().load(path)
    except (ValueError, PydanticValidationError, yaml.YAMLError) as exc:
        console.print(Panel(f"[red]INVALID[/red]\n{exc}", title="Validation", border_style="red"))
        sys.exit(1)
    console.print(
        Panel(
            f"[green]VALID[/green]  {len(config.workflows)} workflow(s), "
            f"timeout policy [cyan]{config.engine.timeout_policy.value}[/cyan]",
            title="Validation",
            border_style="green",
        )
    )


# ---------------------------------------------------------------------------
# trigger / decide
# ---------------------------------------------------------------------------


@cli.command(name="trigger")
@click.argument("workflow_id")
@click.option("--payload", "-p", "payload_json", required=True, help="Action payload as JSON.")
@click.option("--context", "context_json", default="{}", help="Trigger context as JSON.")
@config_option
def trigger_command(workflow_id: str, payload_json: str, context_json: str, config_path: str) -> None:
    """Gate an action behind WORKFLOW_ID."""
    payload = _parse_json(payload_json, "payload")
    context = _parse_json(context_json, "context")
    with _build_engine(config_path) as engine:
        try:
            trigger = engine.create_request(workflow_id, payload, context)
        except ValidationError as exc:
            err_console.print(f"[red]Rejected:[/red] {exc}")
            sys.exit(1)

    if trigger.auto_approved or trigger.request is None:
        console.print(
            Panel(
                f"[green]AUTO-APPROVED[/green] by condition "
                f"[cyan]{trigger.matched_condition}[/cyan]; no request created.",
                title="Trigger",
                border_style="green",
            )
        )
        return
    _print_request(trigger.request)


@cli.command(name="decide")
@click.argument("request_id")
@click.option("--approve/--reject", "approve", required=True, help="Decision to record.")
@click.option("--actor", "-a", "actor_id", required=True, help="Who is deciding.")
@click.option("--comment", "-m", "comments", default="", help="Decision comments.")
@click.option("--step", "step_number", type=int, default=None, help="1-based step the decision is for.")
@config_option
def decide_command(
    request_id: str,
    approve: bool,
    actor_id: str,
    comments: str,
    step_number: int | None,
    config_path: str,
) -> None:
    """Approve or reject the current step of REQUEST_ID."""
    step_index = step_number - 1 if step_number is not None else None
    with _build_engine(config_path) as engine:
        try:
            result = engine.apply_decision(
                request_id,
                "approved" if approve else "rejected",
                actor_id,
                comments,
                step_index,
            )
        except (NotFoundError, ValidationError) as exc:
            err_console.print(f"[red]Error:[/red] {exc}")
            sys.exit(1)

    if not result.applied:
        console.print(
            f"[yellow]No change:[/yellow] request is {_status_text(result.status)} "
            "and did not accept this decision."
        )
    _print_request(result.request)


# ---------------------------------------------------------------------------
# pending / show
# ---------------------------------------------------------------------------


@cli.command(name="pending")
@click.option("--scope", "-s", default=None, help="Only requests for this owner scope.")
@config_option
def pending_command(scope: str | None, config_path: str) -> None:
    """List requests still awaiting a decision."""
    with _build_engine(config_path) as engine:
        requests = engine.get_pending_approvals(scope)

    if not requests:
        console.print("[yellow]No pending approval requests.[/yellow]")
        return

    table = Table(title="Pending Approvals", box=box.SIMPLE)
    table.add_column("Request", style="cyan", no_wrap=True)
    table.add_column("Workflow")
    table.add_column("Scope")
    table.add_column("Status")
    table.add_column("Step")
    table.add_column("Deadline", style="dim", no_wrap=True)
    for request in requests:
        table.add_row(
            request.request_id,
            request.workflow_id,
            request.scope or "-",
            _status_text(request.status),
            f"{request.current_step_index + 1}/{request.step_count} {request.current_step.type.value}",
            request.deadline.isoformat()[:19].replace("T", " "),
        )
    console.print(table)
    console.print(f"  Total pending: [cyan]{len(requests)}[/cyan]")


@cli.command(name="show")
@click.argument("request_id")
@config_option
def show_command(request_id: str, config_path: str) -> None:
    """Show REQUEST_ID and its decision log."""
    with _build_engine(config_path) as engine:
        try:
            request = engine.manager.get_request(request_id)
        except NotFoundError as exc:
            err_console.print(f"[red]Error:[/red] {exc}")
            sys.exit(1)
    _print_request(request)


# ---------------------------------------------------------------------------
# sweep
# ---------------------------------------------------------------------------


@cli.command(name="sweep")
@click.option("--watch", is_flag=True, help="Keep sweeping every configured interval.")
@config_option
def sweep_command(watch: bool, config_path: str) -> None:
    """Time out requests whose deadline has passed."""
    with _build_engine(config_path) as engine:
        timed_out = engine.sweep()
        console.print(f"Timed out [cyan]{len(timed_out)}[/cyan] request(s).")
        for request_id in timed_out:
            console.print(f"  • {request_id}")
        if not watch:
            return
        interval = engine.sweeper.interval_seconds
        console.print(f"Sweeping every [cyan]{interval:g}s[/cyan]; press Ctrl+C to stop.")
        engine.sweeper.start()
        try:
            while engine.sweeper.running:
                time.sleep(1.0)
        except KeyboardInterrupt:
            console.print("Stopping sweeper.")


# ---------------------------------------------------------------------------
# audit group
# ---------------------------------------------------------------------------


@cli.group(name="audit")
def audit_group() -> None:
    """Audit trail commands."""


@audit_group.command(name="show")
@click.option(
    "--last",
    "-n",
    default=20,
    show_default=True,
    type=click.IntRange(min=1),
    help="Number of recent entries to show.",
)
@config_option
def audit_show_command(last: int, config_path: str) -> None:
    """Show recent audit log entries."""
    from floworx_approval.audit.logger import AuditLogger

    config = _load_config(config_path)
    if config.audit.log_path is None:
        console.print("[yellow]Audit logging is not configured.[/yellow]")
        return

    audit = AuditLogger(config.audit.log_path)
    records = audit.read_all()
    if not records:
        console.print("[yellow]No audit entries found.[/yellow]")
        return

    table = Table(title=f"Last {last} Audit Events", box=box.SIMPLE)
    table.add_column("Timestamp", style="dim", no_wrap=True)
    table.add_column("Event", style="cyan")
    table.add_column("Request", style="magenta")
    table.add_column("Detail")
    for record in audit.last_n(last):
        ts = str(record.get("timestamp", ""))[:19].replace("T", " ")
        detail = ", ".join(
            f"{key}={record[key]}"
            for key in ("workflow_id", "step_type", "outcome", "actor_id", "status", "condition")
            if key in record
        )
        table.add_row(ts, str(record.get("event", "")), str(record.get("request_id", "")), detail)
    console.print(table)
    console.print(f"  Total audit records: [cyan]{len(records)}[/cyan]")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
