"""CLI commands for the attention core."""

import asyncio
import json
import logging
from typing import Optional

import click

from ..container import get_container


PRIORITY_ICONS = {
    "urgent": "🔴",
    "high": "🟠",
    "normal": "🔵",
    "low": "🟢",
}


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run_async(coro):
    """Run async coroutine in sync context, releasing pooled connections after."""

    async def runner():
        try:
            return await coro
        finally:
            await get_container().database.dispose()

    return asyncio.run(runner())


@click.group()
@click.version_option(version="1.0.0")
@click.option("--database-url", envvar="DATABASE_URL", help="SQLAlchemy async database URL")
def cli(database_url: Optional[str]):
    """Attention and notification fanout core."""
    from ..repositories.database import Database

    container = get_container()
    setup_logging(container.settings.log_level)
    if database_url:
        echo = container.settings.database.echo
        container.configure_database(lambda: Database(database_url, echo=echo))


@cli.command("init-db")
def init_db():
    """Create all tables."""
    container = get_container()
    run_async(container.database.create_all())
    click.echo("✅ Database schema created")


@cli.command("serve")
@click.option("--host", default=None, help="Bind address")
@click.option("--port", default=None, type=int, help="Bind port")
@click.option("--no-scheduler", is_flag=True, help="Do not run background jobs")
def serve(host: Optional[str], port: Optional[int], no_scheduler: bool):
    """Run the HTTP API with the background jobs."""
    import uvicorn

    from ..api.app import create_app

    settings = get_container().settings
    app = create_app(start_scheduler=not no_scheduler)
    uvicorn.run(
        app,
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


@cli.command("ingest")
@click.argument("file", type=click.File("rb"))
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def ingest(file, output_json: bool):
    """Feed one JSON event, or a JSON list of events, to the consumer."""
    try:
        data = json.loads(file.read())
    except ValueError as e:
        raise click.ClickException(f"Invalid JSON: {e}")
    envelopes = data if isinstance(data, list) else [data]

    consumer = get_container().event_consumer

    async def process_all():
        return [await consumer.process_raw(envelope) for envelope in envelopes]

    results = run_async(process_all())

    if output_json:
        click.echo(
            json.dumps([r.to_dict() for r in results], indent=2, ensure_ascii=False)
        )
        return

    for result in results:
        line = f"{result.status.value:<10} {result.event_type or '?'} {result.event_id or ''}"
        if result.fanout is not None:
            line += f" (+{result.fanout.created} created, {result.fanout.touched} touched)"
        if result.error:
            line += f": {result.error}"
        click.echo(line)


@cli.command("scan")
def scan():
    """Run one due-date scanner tick."""
    report = run_async(get_container().due_date_scanner.tick())
    click.echo(
        f"⏰ Due soon: {report.due_soon}  ⚠️ Overdue: {report.overdue}  "
        f"🆕 New items: {report.created}"
    )
    for task_id in report.failed:
        click.echo(f"  - failed: {task_id}", err=True)


@cli.command("drain")
@click.option("--limit", "-l", default=100, help="Maximum number of envelopes")
def drain(limit: int):
    """Deliver pending outbox envelopes once."""
    container = get_container()
    report = run_async(container.outbox.drain(container.event_consumer, limit=limit))
    click.echo(
        f"Delivered: {report.delivered}, rejected: {report.rejected}, "
        f"retried: {report.retried}, failed: {report.failed}, skipped: {report.skipped}"
    )
    for error in report.errors:
        click.echo(f"  - {error}", err=True)


@cli.command("inbox")
@click.argument("user_id")
@click.option("--limit", "-l", default=20, help="Maximum number of items to show")
@click.option("--unread", is_flag=True, help="Only unread items")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def inbox(user_id: str, limit: int, unread: bool, output_json: bool):
    """List a user's active attention items."""
    from ..domain.models import InboxFilter

    service = get_container().inbox_service

    async def load():
        page = await service.list_items(
            user_id, InboxFilter(unread_only=unread, limit=limit)
        )
        return page, await service.counts(user_id)

    page, counts = run_async(load())

    if output_json:
        output = {
            "items": [
                {
                    "id": item.id,
                    "kind": item.kind.value,
                    "priority": item.priority.value,
                    "title": item.title,
                    "task_id": item.task_id,
                    "read": item.read_at is not None,
                    "created_at": item.created_at.isoformat(),
                }
                for item in page.items
            ],
            "next_cursor": page.next_cursor,
            "unread": counts.unread,
            "total": counts.total,
        }
        click.echo(json.dumps(output, indent=2, ensure_ascii=False))
        return

    if not page.items:
        click.echo("Inbox is empty.")
        return

    click.echo(f"{counts.unread} unread of {counts.total}:\n")
    for item in page.items:
        icon = PRIORITY_ICONS.get(item.priority.value, "⚪")
        marker = " " if item.read_at else "•"
        click.echo(f"{marker} {icon} [{item.kind.value}] {item.title}")
        if item.body:
            click.echo(f"      {item.body}")


@cli.command("jobs")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def list_jobs(output_json: bool):
    """List background jobs."""
    from ..scheduler import build_scheduler

    statuses = build_scheduler(get_container()).list_jobs()

    if output_json:
        click.echo(json.dumps(statuses, indent=2, ensure_ascii=False))
        return

    click.echo("Scheduled jobs:\n")
    for status in statuses:
        icon = "✅" if status["enabled"] else "⏸️"
        click.echo(f"{icon} {status['name']}")
        click.echo(f"   Schedule: {status['schedule']}")
        click.echo(f"   Description: {status['description']}")
        click.echo()


@cli.command("run-job")
@click.argument("job_name")
def run_job(job_name: str):
    """Run a background job once, disabled or not."""
    from ..scheduler import build_scheduler

    scheduler = build_scheduler(get_container())
    if scheduler.get_job_status(job_name) is None:
        names = ", ".join(s["name"] for s in scheduler.list_jobs())
        raise click.ClickException(f"Job not found: {job_name} (available: {names})")

    click.echo(f"Running job: {job_name}...")
    result = run_async(scheduler.run_job_now(job_name))
    click.echo(f"✅ Job completed: {result}")


def main():
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
