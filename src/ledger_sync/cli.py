"""
Command-line interface for the ledger balance synchronization tool.
"""

from pathlib import Path
from typing import Optional
import logging
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .config import load_config, generate_default_config, SyncConfig
from .models.results import AccountResult, RunSummary
from .reconciliation.calculator import calculate_total, is_within_tolerance, transaction_amount
from .reconciliation.collector import TransactionCollector
from .reconciliation.engine import ReconciliationEngine
from .reports.excel_generator import ExcelReportGenerator
from .store import create_store
from .utils.exceptions import ReconciliationError
from .utils.logging_config import setup_logging

console = Console()


@click.group()
@click.version_option(version=__version__)
def main():
    """Ledger balance synchronization tool."""
    pass


@main.command()
@click.option("--userId", "--user-id", "user_id", default=None, help="Only sync this user's accounts")
@click.option("--accountId", "--account-id", "account_id", default=None, help="Only sync this account")
@click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
@click.option("--db", type=click.Path(path_type=Path), default=None, help="Override ledger database path")
@click.option(
    "--tolerance",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Override balance tolerance",
)
@click.option("--seed", type=int, default=None, help="Seed for synthetic history generation")
@click.option(
    "--workers",
    type=click.IntRange(min=1),
    default=None,
    help="Accounts to reconcile in parallel",
)
@click.option(
    "--report",
    type=click.Path(path_type=Path),
    default=None,
    help="Write an Excel run report (file or directory)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--dry-run", is_flag=True, help="Compute corrections without writing them")
def sync(
    user_id: Optional[str],
    account_id: Optional[str],
    config: Optional[Path],
    db: Optional[Path],
    tolerance: Optional[float],
    seed: Optional[int],
    workers: Optional[int],
    report: Optional[Path],
    verbose: bool,
    dry_run: bool,
):
    """
    Bring every account's transaction history in line with its stated balance.

    With no filters, every account in the store is processed.
    """
    try:
        sync_config = load_config(config)
        _configure_logging(sync_config, verbose)

        # Apply command-line overrides
        if db is not None:
            sync_config.store.path = str(db)
        if tolerance is not None:
            sync_config.reconciliation.tolerance = tolerance
        if seed is not None:
            sync_config.synthesis.seed = seed
        if workers is not None:
            sync_config.reconciliation.workers = workers

        store = create_store(sync_config, must_exist=True)
    except ReconciliationError as e:
        console.print(f"[red]Startup failed: {escape(str(e))}[/red]")
        sys.exit(1)

    try:
        with store:
            engine = ReconciliationEngine(sync_config, store)

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Reconciling accounts...", total=None)

                def _advance(result: AccountResult) -> None:
                    progress.advance(task)
                    progress.console.print(_format_outcome(result))

                summary = engine.run(
                    user_id=user_id,
                    account_id=account_id,
                    dry_run=dry_run,
                    progress_callback=_advance,
                )
                progress.update(task, total=summary.accounts_processed)

        _display_summary(summary)

        if dry_run:
            console.print("\n[yellow]Dry run - no transactions written[/yellow]")

        if report is not None:
            generator = ExcelReportGenerator(sync_config)
            if report.is_dir():
                report = report / generator.default_output_path()
            report_path = generator.generate_report(summary, report)
            console.print(f"\n[green]Report generated: {report_path}[/green]")

    except Exception as e:
        console.print(f"[red]Synchronization failed: {escape(str(e))}[/red]")
        if verbose:
            console.print_exception()
        sys.exit(1)


@main.command("show-account")
@click.argument("account_id")
@click.option("-c", "--config", type=click.Path(exists=True, path_type=Path))
@click.option("--db", type=click.Path(path_type=Path), default=None, help="Override ledger database path")
def show_account(account_id: str, config: Optional[Path], db: Optional[Path]):
    """
    List the transactions linked to an account and compare them to its balance.

    ACCOUNT_ID: Identifier of the account to inspect
    """
    try:
        sync_config = load_config(config)
        if db is not None:
            sync_config.store.path = str(db)

        with create_store(sync_config, must_exist=True) as store:
            accounts = store.get_accounts(account_id=account_id)
            if not accounts:
                console.print(f"[red]Account not found: {account_id}[/red]")
                sys.exit(1)
            account = accounts[0]

            collection = TransactionCollector.from_config(store, sync_config).collect(
                account.id, account.user_id
            )
    except ReconciliationError as e:
        console.print(f"[red]Error reading account: {escape(str(e))}[/red]")
        sys.exit(1)

    transactions = collection.transactions
    table = Table(title=f"Transactions: {account.id} ({account.display_type})")
    table.add_column("Timestamp")
    table.add_column("ID")
    table.add_column("Type")
    table.add_column("Amount", justify="right")
    table.add_column("Status")
    table.add_column("Description")

    for txn in transactions[:20]:  # Show first 20
        table.add_row(
            txn.timestamp.strftime("%Y-%m-%d %H:%M") if txn.timestamp else "-",
            txn.id,
            txn.type_label,
            f"${transaction_amount(txn):,.2f}",
            txn.status.value if hasattr(txn.status, "value") else str(txn.status),
            txn.description[:40] + "..." if len(txn.description) > 40 else txn.description,
        )

    console.print(table)

    if len(transactions) > 20:
        console.print(f"\n... and {len(transactions) - 20} more transactions")

    total = calculate_total(transactions)
    in_sync = is_within_tolerance(total, account.stated_balance, sync_config.reconciliation.tolerance)
    console.print(f"\nTotal transactions: {len(transactions)}")
    console.print(f"Ledger total: ${total:,.2f}")
    console.print(f"Stated balance: ${account.stated_balance:,.2f}")
    if collection.is_partial:
        console.print(
            f"[yellow]Partial history, failed queries: "
            f"{', '.join(collection.failed_predicates)}[/yellow]"
        )
    if in_sync:
        console.print("[green]In sync[/green]")
    else:
        console.print(f"[yellow]Out of sync by ${account.stated_balance - total:,.2f}[/yellow]")


@main.command("init-config")
@click.option(
    "-o", "--output", type=click.Path(path_type=Path), default=Path("config.yaml")
)
def init_config(output: Path):
    """Generate a sample configuration file."""
    generate_default_config(output)
    console.print(f"[green]Configuration file generated: {output}[/green]")


def _configure_logging(config: SyncConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else config.logging.level
    log_file = Path(config.logging.file) if config.logging.file else None
    setup_logging(level, log_file=log_file, log_format=config.logging.format)


def _format_outcome(result: AccountResult) -> str:
    if result.failed:
        return f"[red]FAILED[/red] {result.account_id}: {escape(result.error or '')}"
    if result.was_adjusted:
        return (
            f"[yellow]ADJUSTED[/yellow] {result.account_id}: "
            f"{len(result.created_transactions)} transactions ({result.mode.value})"
        )
    return f"[green]IN SYNC[/green] {result.account_id}"


def _display_summary(summary: RunSummary) -> None:
    """Display synchronization summary in console."""
    table = Table(title="Synchronization Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Run ID", summary.run_id)
    table.add_row("Accounts Processed", str(summary.accounts_processed))
    table.add_row("Accounts In Sync", str(summary.accounts_in_sync))
    table.add_row("Accounts Adjusted", str(summary.accounts_adjusted))
    table.add_row("Accounts Failed", str(summary.accounts_failed))
    if summary.dry_run:
        table.add_row("Transactions Planned", str(summary.transactions_planned))
    else:
        table.add_row("Transactions Persisted", str(summary.transactions_persisted))
    table.add_row("Processing Time", f"{summary.processing_time_seconds:.2f}s")

    console.print(table)

    for result in summary.failed_accounts:
        console.print(f"[red]Failed: {result.account_id} - {escape(result.error or '')}[/red]")


if __name__ == "__main__":
    main()
