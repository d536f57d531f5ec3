"""Command-line interface for İnfoLine."""

import asyncio
from typing import Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from database import DatabaseConnectionError, InMemoryDataStore
from models import DataEntryStatus, UserScope
from models.status import STATUS_COLORS
from services import InfoLineError, build_services, load_user_scope

from .config import configure_logging, get_settings
from .demo import seed_demo_data
from .runtime import close_store, create_pool, create_services, create_store

app = typer.Typer(
    name="infoline",
    help="İnfoLine - school data collection and approval workflow",
    add_completion=False,
)

console = Console()


def _status(status: DataEntryStatus) -> str:
    color = STATUS_COLORS.get(status, "white")
    color = "grey50" if color == "gray" else color
    return f"[{color}]{status.value}[/{color}]"


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    configure_logging(log_level)


@app.command()
def version():
    """Show version information."""
    from infoline import __version__

    console.print(Panel.fit(
        f"[bold blue]İnfoLine[/bold blue]\n"
        f"Version: [green]{__version__}[/green]",
        title="Version Info"
    ))


@app.command("init-db")
def init_db():
    """Create the İnfoLine tables in the configured database."""
    async def run():
        pool = create_pool(get_settings())
        await pool.initialize()
        try:
            await pool.apply_schema()
        finally:
            await pool.close()

    try:
        asyncio.run(run())
        console.print("[green]✅ Schema applied[/green]")
    except (DatabaseConnectionError, ValueError) as e:
        console.print(f"[red]❌ Failed to apply schema: {e}[/red]")
        raise typer.Exit(code=1)


@app.command("test-db")
def test_db(
    url: Optional[str] = typer.Option(
        None,
        "--url",
        "-u",
        help="Database URL (defaults to DATABASE_URL env var)"
    )
):
    """Test database connectivity."""
    console.print("[yellow]Testing database connection...[/yellow]")

    async def run() -> bool:
        settings = get_settings()
        if url:
            settings.database.url = url
        pool = create_pool(settings)
        await pool.initialize()
        try:
            return await pool.health_check()
        finally:
            await pool.close()

    try:
        healthy = asyncio.run(run())
    except (DatabaseConnectionError, ValueError) as e:
        console.print(f"[red]❌ Database connection failed: {e}[/red]")
        raise typer.Exit(code=1)

    if healthy:
        console.print("[green]✅ Database connection successful![/green]")
    else:
        console.print("[red]❌ Database health check failed[/red]")
        raise typer.Exit(code=1)


@app.command("check-deadlines")
def check_deadlines():
    """Send deadline warnings and auto-approve expired categories."""
    async def run():
        store = await create_store()
        try:
            return await create_services(store).deadlines.run()
        finally:
            await close_store(store)

    result = asyncio.run(run())

    table = Table(title="Deadline check")
    table.add_column("Metric")
    table.add_column("Count", justify="right")
    table.add_row("Categories processed", str(result.processed))
    table.add_row("3-day warnings", str(result.warnings_3_days))
    table.add_row("1-day warnings", str(result.warnings_1_day))
    table.add_row("Expired", str(result.expired))
    table.add_row("Auto-approved entries", str(result.auto_approved))
    console.print(table)

    for error in result.errors:
        console.print(f"[red]• {error}[/red]")
    if result.errors:
        raise typer.Exit(code=1)


@app.command("cleanup-notifications")
def cleanup_notifications(
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Age in days (defaults to NOTIFICATION_RETENTION_DAYS)"),
    include_unread: bool = typer.Option(False, "--include-unread", help="Also delete unread notifications"),
):
    """Delete old notifications."""
    async def run() -> int:
        store = await create_store()
        try:
            return await create_services(store).notifications.cleanup_old_notifications(
                days, read_only=not include_unread
            )
        finally:
            await close_store(store)

    deleted = asyncio.run(run())
    console.print(f"[green]Deleted {deleted} notifications[/green]")


@app.command()
def completion(
    school: UUID = typer.Option(..., "--school", "-s", help="School ID"),
):
    """Show completion of a school per category."""
    async def run():
        store = await create_store()
        try:
            return await create_services(store).completion.school_completion(school)
        finally:
            await close_store(store)

    try:
        result = asyncio.run(run())
    except InfoLineError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise typer.Exit(code=1)

    table = Table(title=f"{result.school_name}: {result.completion_rate}% complete")
    table.add_column("Category")
    table.add_column("Filled", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("Status")
    for item in result.categories:
        stats = item.stats
        table.add_row(
            item.category_name,
            f"{stats.filled_columns}/{stats.total_columns}",
            f"{stats.completion_rate}%",
            _status(stats.status),
        )
    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run("api.app:create_app", factory=True, host=host, port=port, reload=reload)


@app.command()
def demo():
    """Run a full draft → pending → approved round on an in-memory store."""
    async def run():
        store = InMemoryDataStore()
        data = seed_demo_data(store)
        services = build_services(store)
        school_id = data.school_ids[0]

        school_admin: UserScope = await load_user_scope(store, data.users["schooladmin1"])
        sector_admin: UserScope = await load_user_scope(store, data.users["sectoradmin"])

        saved = await services.data_entry.save_entries(school_admin, school_id, data.category_id, {
            data.column_ids["students"]: 640,
            data.column_ids["teachers"]: 52,
            data.column_ids["email"]: "school6@edu.az",
            data.column_ids["language"]: "Azerbaijani",
        })
        console.print(f"Saved {saved.saved_count} values as draft")

        submitted = await services.data_entry.submit_category(school_admin, school_id, data.category_id)
        console.print(f"Submit: {submitted.message}")

        pending = await services.approval.get_pending_approvals(sector_admin)
        console.print(f"Review queue of the sector admin: {len(pending)} item(s)")

        approved = await services.approval.approve(sector_admin, school_id, data.category_id, comment="Looks good")
        console.print(f"Approve: {approved.message}")

        stats = await services.completion.school_completion(school_id)
        inbox = await services.notifications.list_notifications(data.users["schooladmin1"])
        history = await services.transitions.get_status_history(school_id, data.category_id)
        return stats, inbox, history

    try:
        stats, inbox, history = asyncio.run(run())
    except InfoLineError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[bold]{stats.school_name}[/bold]: {stats.completion_rate}% complete")

    table = Table(title="Status history")
    table.add_column("Changed at")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Comment")
    for item in history:
        table.add_row(
            item.changed_at.strftime("%Y-%m-%d %H:%M:%S"),
            _status(item.old_status),
            _status(item.new_status),
            item.comment or "",
        )
    console.print(table)

    for notification in inbox:
        console.print(Panel.fit(notification.message or "", title=notification.title))


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
