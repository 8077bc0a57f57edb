import json
import sys
from typing import Optional

import typer
from loguru import logger
from prometheus_client import start_http_server

from mongo_import.config import ImportSettings, load_settings
from mongo_import.errors import MongoImportError
from mongo_import.job import run_import
from mongo_import.scheduler import ImportScheduler

app = typer.Typer(help="Bulk import MongoDB collections into Kafka topics")


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def _load(config_file: str, log_level: Optional[str]) -> ImportSettings:
    try:
        settings = load_settings(config_file)
    except MongoImportError as e:
        configure_logging(log_level or "INFO")
        logger.error(str(e))
        raise typer.Exit(code=1)
    configure_logging(log_level or settings.LOG_LEVEL)
    return settings


@app.command()
def run(
    config_file: str = typer.Argument(..., help="Path to the importer config file"),
    once: bool = typer.Option(False, "--once", help="Run one import even if SCHEDULE is set"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Write JSON lines to stdout instead of Kafka"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    """Import every configured collection once, or on the configured cron schedule."""
    settings = _load(config_file, log_level)

    if settings.METRICS_PORT:
        start_http_server(settings.METRICS_PORT)
        logger.info(f"Metrics exposed on :{settings.METRICS_PORT}")

    if settings.cron_mode and not once:
        try:
            scheduler = ImportScheduler(
                settings.SCHEDULE, lambda: run_import(settings, dry_run=dry_run)
            )
        except MongoImportError as e:
            logger.error(str(e))
            raise typer.Exit(code=1)
        scheduler.start()
        return

    logger.info("Execute in single use mode")
    try:
        report = run_import(settings, dry_run=dry_run)
    except MongoImportError as e:
        logger.error(f"Import failed: {e}")
        raise typer.Exit(code=1)

    if report.ok:
        logger.success(f"Imported {report.scanned} documents, published {report.published}")
    else:
        failed = [name for name, r in report.results.items() if not r.ok]
        if failed:
            logger.error(f"Import finished with failed collections: {', '.join(failed)}")
        if report.failed:
            logger.error(f"Import finished with {report.failed} undelivered messages")
        raise typer.Exit(code=1)


@app.command()
def check(
    config_file: str = typer.Argument(..., help="Path to the importer config file"),
):
    """Validate the config file and print the resolved collections and topics."""
    settings = _load(config_file, None)
    typer.echo(
        json.dumps(
            {
                "mode": "cron" if settings.cron_mode else "once",
                "schedule": settings.SCHEDULE or None,
                "batch_size": settings.BATCH_SIZE,
                "high_water_mark": settings.HIGH_WATER_MARK,
                "topics": settings.topics,
            },
            indent=2,
        )
    )


if __name__ == "__main__":
    app()
