"""Command line entry points for operators and the job runner.

The daily cron entry is ``finance-ledger process-recurring``; it exits with
status 1 when any recurring definition failed so the runner can alert.
``reconcile`` and ``audit`` only read the ledger and never create or seed it.
"""
from __future__ import annotations

import logging
from datetime import date

import click

from .config import AppConfig, load_config
from .errors import FinanceLedgerError
from .services import FinanceService


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Maintain the finance ledger database."""

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = config


def _writable_service(config: AppConfig) -> FinanceService:
    service = FinanceService.from_config(config)
    service.initialise()
    return service


def _readonly_service(config: AppConfig) -> FinanceService:
    if not config.database_file.exists():
        raise click.ClickException(f"No ledger at {config.database_file}; run 'finance-ledger init-db' first")
    return FinanceService.from_config(config)


@cli.command("init-db")
@click.pass_obj
def init_db_cmd(config: AppConfig) -> None:
    """Create the schema and seed default categories."""

    service = _writable_service(config)
    click.echo(f"{len(service.list_categories())} categories available")


@cli.command("process-recurring")
@click.option(
    "--as-of",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Business date to process (defaults to today).",
)
@click.pass_obj
def process_recurring_cmd(config: AppConfig, as_of) -> None:
    """Materialize due recurring transactions."""

    service = _writable_service(config)
    run_date = as_of.date() if as_of else date.today()
    previous = service.last_recurring_run()
    if previous is not None:
        click.echo(f"previous run as_of={previous.isoformat()}")
    run = service.scheduler.process_due(run_date)
    click.echo(f"as_of={run.as_of.isoformat()} processed={run.processed} failed={run.failed_count}")
    for failure in run.failures:
        click.echo(f"  {failure.recurring_id} {failure.occurrence.isoformat()}: {failure.reason}", err=True)
    if run.failures:
        click.get_current_context().exit(1)


@cli.command("reconcile")
@click.argument("account_id")
@click.pass_obj
def reconcile_cmd(config: AppConfig, account_id: str) -> None:
    """Compare an account's stored balance with its transactions."""

    service = _readonly_service(config)
    try:
        result = service.ledger.reconcile(account_id)
    except FinanceLedgerError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(
        f"stored={result.stored_balance} calculated={result.calculated_balance} "
        f"difference={result.difference} reconciled={result.is_reconciled}"
    )
    if not result.is_reconciled:
        click.get_current_context().exit(1)


@cli.command("audit")
@click.option(
    "--as-of",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Reference date for freshness checks (defaults to today).",
)
@click.pass_obj
def audit_cmd(config: AppConfig, as_of) -> None:
    """Print the data-quality report."""

    service = _readonly_service(config)
    report = service.auditor.data_quality_report(as_of.date() if as_of else date.today())
    click.echo(report.to_string(index=False))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
