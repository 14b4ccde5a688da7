"""
Command Line Interface for the ISP lifecycle engine.
"""

import json
from datetime import date, datetime
from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..core.clients import ClientService
from ..core.errors import LifecycleError
from ..core.feature_gate import FeatureGate
from ..core.plan_year import plan_year_for
from ..core.privacy import anonymize_identity, export_identity_data
from ..db.base import get_session_local, init_database
from ..db.completion_log import CompletionLogStore
from ..logging_setup import configure_logging
from ..worker.scheduler import RenewalScheduler, build_sweep

EXIT_RUN_FAILED = 2

app = typer.Typer(help="ISP Lifecycle - plan-year completion tracking and annual renewal")
tenants_app = typer.Typer(help="Enable or disable the engine per tenant")
app.add_typer(tenants_app, name="tenants")
console = Console()


@app.command("init-db")
def init_db():
    """Create the database tables."""
    init_database()
    console.print("✅ Database initialized")


@app.command()
def sweep(
    as_json: bool = typer.Option(False, "--json", help="Print the machine-readable report"),
    max_workers: Optional[int] = typer.Option(None, help="Parallel client units (default: from config)"),
):
    """Run the renewal sweep once, now."""
    settings = get_settings()
    configure_logging(settings)

    try:
        renewal = build_sweep(settings)
        if max_workers:
            renewal.max_workers = max_workers
        report = renewal.run()
    except Exception as e:
        if as_json:
            typer.echo(json.dumps({"status": "error", "message": str(e)}))
        else:
            console.print(f"❌ Sweep failed: {e}")
        raise typer.Exit(code=EXIT_RUN_FAILED)

    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
        raise typer.Exit(code=report.exit_code)

    table = Table(title=f"Renewal sweep {report.run_date}", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green")
    table.add_row("Clients processed", str(report.clients_processed))
    table.add_row("Clients failed", str(report.clients_failed))
    table.add_row("Clients skipped", str(report.clients_skipped))
    table.add_row("Clients cancelled", str(report.clients_cancelled))
    table.add_row("Reviewers archived", str(report.reviewers_archived))
    table.add_row("Reviewers already done", str(report.reviewers_skipped))
    table.add_row("Reviewers failed", str(report.reviewers_failed))
    console.print(table)

    for error in report.errors:
        who = f"client {error.client_id}"
        if error.reviewer_id:
            who += f" / reviewer {error.reviewer_id}"
        console.print(f"❌ {who}: [{error.code}] {error.message}")

    raise typer.Exit(code=report.exit_code)


@app.command()
def schedule():
    """Run the sweep every day at the configured time until interrupted."""
    settings = get_settings()
    configure_logging(settings)
    rprint(Panel.fit(f"⏰ Renewal sweep daily at {settings.sweep_run_at} ({settings.timezone})", style="bold blue"))
    RenewalScheduler(build_sweep(settings), settings).start()


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
):
    """Start the HTTP API."""
    settings = get_settings()
    rprint(Panel.fit("🚀 Starting ISP Lifecycle API", style="bold blue"))
    uvicorn.run(
        "isp_lifecycle.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=settings.debug,
    )


@app.command("plan-year")
def plan_year(
    anchor: str = typer.Argument(..., help="Anchor date, YYYY-MM-DD"),
    at: Optional[str] = typer.Option(None, help="Instant to evaluate (ISO 8601, default now)"),
    tz: Optional[str] = typer.Option(None, help="IANA timezone (default: from config)"),
):
    """Show the plan year containing an instant."""
    try:
        anchor_date = date.fromisoformat(anchor)
        now = datetime.fromisoformat(at) if at else None
    except ValueError as e:
        console.print(f"❌ {e}")
        raise typer.Exit(code=1)

    window = plan_year_for(anchor_date, now, tz or get_settings().timezone)
    console.print(f"Plan year: {window.start.isoformat()} → {window.end.isoformat()}")


@app.command("completion-log")
def completion_log(
    client_id: int = typer.Argument(..., help="Client ID"),
    tenant: str = typer.Option(..., "--tenant", help="Tenant ID"),
    reviewer: Optional[str] = typer.Option(None, help="Only this reviewer"),
):
    """Show a client's completion history."""
    with get_session_local()() as db:
        try:
            client = ClientService(db).get(tenant, client_id, active_only=False)
        except LifecycleError as e:
            console.print(f"❌ {e.message}")
            raise typer.Exit(code=1)

        store = CompletionLogStore(db)
        entries = store.query(client_id=client.id, reviewer_id=reviewer)
        stats = store.stats(client.id)

        table = Table(title=f"Completion log: {client.display_name}", show_header=True, header_style="bold cyan")
        table.add_column("Plan year", style="yellow")
        table.add_column("Reviewer")
        table.add_column("Completed", style="green")
        table.add_column("Notes")

        for entry in entries:
            row = entry.to_dict()
            table.add_row(
                f"{row['plan_year_start'][:10]} → {row['plan_year_end'][:10]}",
                entry.reviewer_name or entry.reviewer_id,
                row["completed_at"][:10] if row["completed_at"] else "❌ gap",
                entry.notes or "",
            )

    console.print(table)
    console.print(f"Total: {stats.total}  Completed: {stats.completed}  Gaps: {stats.gaps}")


@tenants_app.command("list")
def tenants_list():
    """List tenant settings."""
    with get_session_local()() as db:
        rows = [row.to_dict() for row in FeatureGate(db).list_settings()]

    if not rows:
        console.print("No tenants configured")
        return

    table = Table(title="Tenants", show_header=True, header_style="bold cyan")
    table.add_column("Tenant", style="yellow")
    table.add_column("Enabled", style="green")
    table.add_column("Enabled by")
    for row in rows:
        table.add_row(row["tenant_id"], "🟢 yes" if row["enabled"] else "🔴 no", row["enabled_by"] or "")
    console.print(table)


@tenants_app.command("enable")
def tenants_enable(
    tenant_id: str = typer.Argument(..., help="Tenant ID"),
    by: str = typer.Option(..., "--by", help="Identity making the change"),
):
    """Enable the engine for a tenant."""
    with get_session_local()() as db:
        FeatureGate(db).enable(tenant_id, by)
    console.print(f"✅ Enabled for tenant {tenant_id}")


@tenants_app.command("disable")
def tenants_disable(tenant_id: str = typer.Argument(..., help="Tenant ID")):
    """Disable the engine for a tenant."""
    with get_session_local()() as db:
        FeatureGate(db).disable(tenant_id)
    console.print(f"⏹️ Disabled for tenant {tenant_id}")


@app.command("export-identity")
def export_identity(identity_id: str = typer.Argument(..., help="Staff identity ID")):
    """Print everything stored about an identity as JSON."""
    with get_session_local()() as db:
        data = export_identity_data(db, identity_id)
    typer.echo(json.dumps(data, indent=2))


@app.command("anonymize-identity")
def anonymize(
    identity_id: str = typer.Argument(..., help="Staff identity ID"),
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation"),
):
    """Blank an identity's names and actor references. Rows are kept."""
    if not yes:
        typer.confirm(f"Anonymize {identity_id}?", abort=True)
    with get_session_local()() as db:
        counts = anonymize_identity(db, identity_id)
    console.print(f"✅ Anonymized {identity_id}: {sum(counts.values())} rows touched")


if __name__ == "__main__":
    app()
