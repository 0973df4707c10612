# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
from typing import Optional
import typer
from rich.console import Console
from rich.progress import Progress
from rich.table import Table
from ..core.config import Config
from ..core.errors import CullerError
from ..core.models import DeletionAction, ProgressStage
from ..infrastructure.notifier import format_bytes
from ..server.scheduler import TaskScheduler
from ..services.container import Services, build_services

app = typer.Typer(help="Culler - rule-driven cleanup for your media library.")
console = Console()


def _load_services(config_path: str) -> Services:
    try:
        config = Config.load(config_path)
    except Exception as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1)

    logging.basicConfig(
        level=logging.DEBUG if config.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    return build_services(config)


@app.command("scan")
def scan(config_path: str = "config.yaml"):
    """
    Evaluate the rules against every monitored item.
    """
    services = _load_services(config_path)
    with Progress() as progress:
        task = progress.add_task("[green]Scanning...", total=100)
        result = services.scan_service.run_scan(
            lambda p, m: progress.update(task, completed=p, description=f"[green]{m[:40]}")
        )

    console.print(
        f"Scanned [bold]{result.items_scanned}[/bold] items: "
        f"[yellow]{result.items_flagged}[/yellow] flagged, "
        f"[cyan]{result.items_protected}[/cyan] protected, "
        f"[red]{result.errors}[/red] errors."
    )


@app.command("queue")
def show_queue(config_path: str = "config.yaml"):
    """
    List items waiting for deletion, soonest first.
    """
    services = _load_services(config_path)
    queue = services.queue.get_queue()

    table = Table(title="Deletion Queue")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="magenta")
    table.add_column("Type", style="green")
    table.add_column("Size", justify="right")
    table.add_column("Action", style="cyan")
    table.add_column("Days Left", justify="right", style="yellow")

    for entry in queue:
        item = entry.item
        table.add_row(
            str(item.id),
            item.title,
            item.type.value,
            format_bytes(item.file_size),
            DeletionAction.normalize(item.deletion_action).value,
            "ready" if entry.is_ready else str(entry.days_remaining),
        )

    console.print(table)
    stats = services.queue.get_statistics()
    console.print(
        f"\n[bold]{stats['queue_size']}[/bold] queued, [bold]{stats['pending_deletions']}[/bold] ready, "
        f"{format_bytes(stats['total_size_to_free'])} to free."
    )


@app.command("process")
def process(config_path: str = "config.yaml", dry_run: bool = False):
    """
    Delete every queued item whose grace period has elapsed.
    """
    services = _load_services(config_path)
    summary = services.executor.process_queue(dry_run=dry_run)

    table = Table(title="Deletion Results (dry run)" if dry_run else "Deletion Results")
    table.add_column("Title", style="magenta")
    table.add_column("Action", style="cyan")
    table.add_column("Freed", justify="right")
    table.add_column("Result")
    for result in summary.results:
        outcome = "[green]ok[/green]" if result.success else f"[red]{result.error}[/red]"
        if result.overseerr_error:
            outcome += f" [yellow](overseerr: {result.overseerr_error})[/yellow]"
        table.add_row(result.title or "", result.action.value if result.action else "",
                      format_bytes(result.file_size_freed), outcome)

    console.print(table)
    console.print(
        f"\n{summary.deleted} deleted, {summary.failed} failed, "
        f"{format_bytes(summary.freed_space_bytes)} freed, {summary.overseerr_resets} requests reset."
    )
    if summary.failed:
        raise typer.Exit(1)


@app.command("mark")
def mark(item_id: int, config_path: str = "config.yaml", days: Optional[int] = None,
         action: Optional[str] = None, reset_overseerr: bool = False):
    """
    Queue an item for deletion.
    """
    services = _load_services(config_path)
    try:
        item = services.queue.mark_for_deletion(
            item_id, days, action=DeletionAction.normalize(action) if action else None,
            reset_overseerr=reset_overseerr,
        )
    except (CullerError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"Queued [magenta]{item.title}[/magenta], deletion after {item.delete_after:%Y-%m-%d %H:%M} UTC")


@app.command("unmark")
def unmark(item_id: int, config_path: str = "config.yaml"):
    """
    Remove an item from the deletion queue.
    """
    services = _load_services(config_path)
    try:
        item = services.queue.unmark_for_deletion(item_id)
    except CullerError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[magenta]{item.title}[/magenta] is monitored again")


@app.command("delete-now")
def delete_now(item_id: int, config_path: str = "config.yaml"):
    """
    Delete a queued item immediately, showing progress.
    """
    services = _load_services(config_path)
    try:
        events = services.executor.stream_delete_now(item_id)
    except CullerError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    result = None
    with Progress() as progress:
        task = progress.add_task("[green]Starting...", total=None)
        for event in events:
            if event.file_progress:
                progress.update(task, total=event.file_progress.total, completed=event.file_progress.current)
            progress.update(task, description=f"[green]{event.message[:50]}")
            if event.stage in (ProgressStage.COMPLETE, ProgressStage.ERROR):
                result = event.result

    if result is None or not result.success:
        console.print(f"[red]Deletion failed:[/red] {result.error if result else 'unknown error'}")
        raise typer.Exit(1)
    console.print(f"Deleted, freed [bold]{format_bytes(result.file_size_freed)}[/bold]")
    if result.overseerr_error:
        console.print(f"[yellow]Overseerr reset failed:[/yellow] {result.overseerr_error}")


@app.command("run-task")
def run_task(name: str, config_path: str = "config.yaml"):
    """
    Run one of the scheduled tasks now.
    """
    services = _load_services(config_path)
    scheduler = TaskScheduler(services.tasks.registry(), services.config.scheduler)
    try:
        result = scheduler.run_now(name)
    except CullerError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    status = "[green]success[/green]" if result.success else "[red]failed[/red]"
    console.print(f"{result.task_name}: {status} in {result.duration_ms}ms - {result.message}")
    if result.error:
        console.print(f"[red]{result.error}[/red]")
        raise typer.Exit(1)


@app.command("rules")
def list_rules(config_path: str = "config.yaml"):
    """
    Show the configured rules in the order they are applied.
    """
    services = _load_services(config_path)

    table = Table(title="Rules")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="magenta")
    table.add_column("Media", style="green")
    table.add_column("Action", style="cyan")
    table.add_column("Conditions")
    table.add_column("Enabled")
    for rule in services.rule_repo.get_all():
        conditions = " AND ".join(f"{c.field} {c.operator} {c.value!r}" for c in rule.conditions)
        table.add_row(str(rule.id), rule.name, rule.media_type, rule.action.value, conditions,
                      "yes" if rule.enabled else "no")
    console.print(table)
