"""
CLI interface for the generation gateway.

Operator access to the ledger, the artifact cache and one-off generations.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.table import Table

from issue_ai_guard.config.loader import GatewayConfig, load_gateway_config
from issue_ai_guard.core.errors import PersistenceError
from issue_ai_guard.core.gateway import build_gateway
from issue_ai_guard.core.invalidation import DomainEvent, apply_invalidation
from issue_ai_guard.core.quota import evaluate_quota, rate_limit_message
from issue_ai_guard.observability.logging import configure_logging
from issue_ai_guard.storage.db import DEFAULT_DB_PATH
from issue_ai_guard.storage.repository import ArtifactStore, UsageLedger, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


class _Settings:
    db_path: str = DEFAULT_DB_PATH
    config: GatewayConfig = GatewayConfig()


settings = _Settings()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="YAML gateway config"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
):
    """Issue AI Guard CLI."""
    configure_logging(
        environment="production" if json_logs else "development",
        log_level=log_level
    )
    settings.db_path = db
    try:
        settings.config = load_gateway_config(config) if config else GatewayConfig()
    except (OSError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if ctx.invoked_subcommand is None:
        console.print("Issue AI Guard - Use --help to see available commands")


@app.command()
def status():
    """Check initialization status of the database."""
    if not Path(settings.db_path).exists():
        console.print("[yellow]![/] Database not initialized. Run `issue-ai-guard init`")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Issue AI Guard is initialized ({settings.db_path})")


@app.command()
def init():
    """Initialize the ledger and cache database."""
    try:
        initialize_schema(settings.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except PersistenceError as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def usage(user_id: str = typer.Argument(..., help="User to inspect")):
    """Show today's usage and remaining quota for a user."""
    ledger = UsageLedger(settings.db_path)
    try:
        record = ledger.get_or_create_today(user_id)
        decision = evaluate_quota(user_id, settings.config.quota, ledger)
    except PersistenceError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    policy = settings.config.quota
    table = Table(title=f"AI usage for {user_id} on {record.day.isoformat()}")
    table.add_column("Window")
    table.add_column("Limit", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_row("minute", str(policy.per_minute_limit), str(decision.remaining_minute))
    table.add_row("day", str(policy.per_day_limit), str(decision.remaining_daily))
    console.print(table)
    console.print(f"Calls today: {record.count}")
    console.print(rate_limit_message(decision))


@app.command()
def generate(
    user_id: str = typer.Argument(..., help="User making the request"),
    entity_id: str = typer.Argument(..., help="Issue or project the content describes"),
    feature: str = typer.Argument(..., help="summary, suggestion, label_recommendation, "
                                            "duplicate_detection or comment_summary"),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Issue title"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Issue description"),
    inputs_file: Optional[Path] = typer.Option(
        None,
        "--inputs",
        "-i",
        help="JSON file with feature inputs (labels, issues, comments)"
    ),
):
    """Request generated content through the gateway."""
    inputs: Dict[str, Any] = {}
    if inputs_file is not None:
        try:
            loaded = json.loads(inputs_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            console.print(f"[red]Cannot read inputs:[/] {e}")
            sys.exit(EXIT_CODE_FAIL)
        if not isinstance(loaded, dict):
            console.print("[red]Cannot read inputs:[/] expected a JSON object")
            sys.exit(EXIT_CODE_FAIL)
        inputs.update(loaded)
    if title is not None:
        inputs["title"] = title
    if description is not None:
        inputs["description"] = description

    gateway = build_gateway(settings.config, db_path=settings.db_path)
    result = gateway.request_generation(user_id, entity_id, feature, inputs)

    if not result.ok:
        console.print(f"[red]{result.error.value}[/] ({result.status_code}): {result.message}")
        if result.reset_at is not None:
            console.print(f"Retry after {result.reset_at.isoformat(timespec='seconds')}")
        sys.exit(EXIT_CODE_FAIL)

    label = "[dim](cached)[/]" if result.cached else "[green](fresh)[/]"
    console.print(f"\n[bold]{feature}[/bold] {label}")
    if isinstance(result.content, str):
        console.print(result.content)
    else:
        console.print_json(json.dumps(result.content))
    if result.remaining_daily is not None:
        console.print(
            f"\nRemaining: {result.remaining_minute} this minute, {result.remaining_daily} today"
        )


@app.command()
def invalidate(
    entity_id: str = typer.Argument(..., help="Entity whose data changed"),
    event: DomainEvent = typer.Argument(..., help="Mutation that happened"),
):
    """Apply the invalidation rule for a domain mutation."""
    try:
        cleared = apply_invalidation(event, entity_id, ArtifactStore(settings.db_path))
    except PersistenceError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not cleared:
        console.print(f"No cached content depends on {event.value}")
        return
    names = ", ".join(sorted(slot.value for slot in cleared))
    console.print(f"[green]✓[/] Cleared {names} for {entity_id}")


@app.command()
def cache(entity_id: str = typer.Argument(..., help="Entity to inspect")):
    """List the populated cache slots of an entity."""
    try:
        artifacts = ArtifactStore(settings.db_path).read_all(entity_id)
    except PersistenceError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not artifacts:
        console.print(f"[dim]No cached content for {entity_id}.[/]")
        return

    table = Table(title=f"Cached content for {entity_id}")
    table.add_column("Slot")
    table.add_column("Cached at")
    table.add_column("Content")
    for slot, artifact in sorted(artifacts.items(), key=lambda item: item[0].value):
        preview = artifact.content if len(artifact.content) <= 60 else artifact.content[:57] + "..."
        table.add_row(slot.value, artifact.cached_at.isoformat(timespec="seconds"), preview)
    console.print(table)


if __name__ == "__main__":
    app()
