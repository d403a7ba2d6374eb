"""Main entry point for DocketWatch."""

import json
import logging
import sys
from datetime import timedelta
from typing import Any, Dict

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import settings
from .deluge import DelugeGuard
from .models import DigestType, UserTier
from .notifiers.base import Notifier
from .notifiers.console import ConsoleNotifier
from .notifiers.email import EmailNotifier
from .notifiers.resend import ResendNotifier
from .pipeline import MonitoringPipeline, build_pipeline
from .storage import create_storage
from .utils import is_valid_docket_number, utc_now

console = Console()
logger = logging.getLogger(__name__)


# Configure logging
def setup_logging(level: str) -> None:
    """Set up logging with Rich handler or JSON lines."""
    log_level = getattr(logging, level.upper())
    if settings.log_json:

        class JsonFormatter(logging.Formatter):
            def format(self, record: logging.LogRecord) -> str:
                payload = {
                    "level": record.levelname,
                    "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
                    "message": record.getMessage(),
                    "name": record.name,
                }
                return json.dumps(payload)

        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logging.basicConfig(level=log_level, handlers=[handler], force=True)
    else:
        logging.basicConfig(
            level=log_level,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=console, rich_tracebacks=True)],
            force=True,
        )


def create_notifier() -> Notifier:
    """Create and return the configured email notifier.

    Raises:
        ValueError: If the selected provider is missing credentials
    """
    settings.validate_required_credentials()

    if settings.email_provider == "smtp":
        return EmailNotifier(
            host=settings.smtp_host or "",
            port=int(settings.smtp_port),
            from_address=settings.email_from_address or "",
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout=settings.http_timeout_seconds,
        )

    return ResendNotifier(
        api_key=settings.resend_api_key or "",
        from_address=settings.email_from_address or "",
        api_url=settings.resend_api_url,
        timeout=settings.http_timeout_seconds,
    )


def _startup(dry_run: bool) -> MonitoringPipeline:
    """Validate configuration and assemble the pipeline; exits on config errors."""
    try:
        if dry_run:
            if not settings.ecfs_api_key:
                raise ValueError("DocketWatch misconfigured; missing: ECFS_API_KEY")
            notifier: Notifier = ConsoleNotifier(console)
        else:
            notifier = create_notifier()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        console.print(f"[red]❌ Configuration error:[/red] {e}")
        sys.exit(1)

    return build_pipeline(settings, notifier)


def _print_summary(title: str, summary: Dict[str, Any]) -> None:
    table = Table(title=title, show_header=False)
    for key, value in summary.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, default=str)
        table.add_row(str(key), str(value))
    console.print(table)


@click.group()
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Set logging level",
)
def cli(log_level: str) -> None:
    """DocketWatch: FCC docket monitoring and digest delivery."""
    settings.log_level = log_level
    setup_logging(settings.log_level)


@cli.command()
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Render emails to the console instead of sending them",
)
def run(dry_run: bool) -> None:
    """Run one monitoring cycle over every tracked docket."""
    pipeline = _startup(dry_run or settings.dry_run)
    summary = pipeline.run_cycle()
    _print_summary("Monitoring cycle", summary)


@cli.command()
@click.argument("docket_number")
@click.option("--count", default=10, show_default=True, help="Filings to fetch")
@click.option("--dry-run", is_flag=True, default=False, help="Do not send email")
def trigger(docket_number: str, count: int, dry_run: bool) -> None:
    """Process one docket on demand with an explicit filing count."""
    pipeline = _startup(dry_run or settings.dry_run)
    try:
        summary = pipeline.trigger(docket_number, count)
    except ValueError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)
    _print_summary(f"Manual trigger {docket_number}", summary)
    if summary["status"] != "success":
        sys.exit(1)


@cli.command()
@click.option("--dry-run", is_flag=True, default=False, help="Do not send email")
def drain(dry_run: bool) -> None:
    """Deliver every due notification in the queue."""
    pipeline = _startup(dry_run or settings.dry_run)
    result = pipeline.queue.drain(utc_now())
    _print_summary("Queue drain", result.to_dict())


@cli.command("reset-deluge")
def reset_deluge() -> None:
    """Lift deluge mode on every suspended docket."""
    storage = create_storage(settings.database_url, settings.database_file)
    lifted = DelugeGuard(storage).daily_reset()
    console.print(f"[green]✅ Lifted deluge mode on {len(lifted)} dockets[/green]")
    for docket_number in lifted:
        console.print(f"  • {docket_number}")


@cli.command()
@click.option("--dry-run", is_flag=True, default=False, help="Do not send email")
def seed(dry_run: bool) -> None:
    """Queue welcome digests for new subscriptions."""
    pipeline = _startup(dry_run or settings.dry_run)
    if pipeline.seeder is None:
        console.print("[yellow]Seeding is not configured[/yellow]")
        return
    summary = pipeline.seeder.seed_pending(utc_now())
    _print_summary("Seeding", summary)


@cli.command()
@click.argument("email")
@click.argument("docket_number")
@click.option(
    "--frequency",
    default=DigestType.DAILY.value,
    type=click.Choice([DigestType.IMMEDIATE.value, DigestType.DAILY.value, DigestType.WEEKLY.value]),
    show_default=True,
)
@click.option(
    "--tier",
    default=UserTier.FREE.value,
    type=click.Choice([t.value for t in UserTier]),
    show_default=True,
)
def subscribe(email: str, docket_number: str, frequency: str, tier: str) -> None:
    """Subscribe EMAIL to DOCKET_NUMBER (administrative)."""
    if not is_valid_docket_number(docket_number):
        console.print(f"[red]❌ Invalid docket number:[/red] {docket_number}")
        sys.exit(1)

    storage = create_storage(settings.database_url, settings.database_file)
    if storage.get_user(email) is None:
        storage.upsert_user(email, UserTier(tier))
    created = storage.add_subscription(email, docket_number, DigestType(frequency))
    if created:
        console.print(f"[green]✅ {email} subscribed to {docket_number} ({frequency})[/green]")
    else:
        console.print(f"[yellow]{email} is already subscribed to {docket_number}[/yellow]")


@cli.command()
def stats() -> None:
    """Show queue statistics and the most recent runs."""
    storage = create_storage(settings.database_url, settings.database_file)
    queue_stats = storage.get_queue_stats(utc_now() - timedelta(hours=24))

    table = Table(title="Notification queue (24h)")
    table.add_column("Status")
    table.add_column("Digest type")
    table.add_column("Count", justify="right")
    for row in queue_stats["breakdown"]:
        table.add_row(row["status"], row["digest_type"], str(row["count"]))
    console.print(table)
    console.print(f"Pending total: {queue_stats['pending_total']}")

    runs = Table(title="Recent runs")
    runs.add_column("When")
    runs.add_column("Type")
    runs.add_column("Status")
    for entry in storage.get_recent_runs(5):
        runs.add_row(entry["created_at"], entry["run_type"], entry["status"])
    console.print(runs)


if __name__ == "__main__":
    cli()
