"""
Ledger reconciliation engine.

Drives each account through collect -> calculate -> decide -> synthesize ->
persist and aggregates the outcome of the whole run. A failing account is
recorded and skipped; it never stops the run.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional
import logging
import time
import uuid

from ..config import SyncConfig
from ..models.ledger import Account, LedgerTransaction
from ..models.results import AccountResult, AccountState, RunSummary, SynthesisMode
from ..store.base import LedgerStore
from ..utils.exceptions import InvalidRecordError, StoreError, SynthesisError
from .calculator import calculate_total, is_within_tolerance, transaction_amount
from .collector import TransactionCollector
from .synthesizer import HistorySynthesizer, SyntheticIdFactory

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[AccountResult], None]


class ReconciliationEngine:
    """
    Main reconciliation engine that restores ledger/balance consistency.

    Corrections are always additive: existing transactions are never edited
    or deleted.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: LedgerStore,
        synthesizer: Optional[HistorySynthesizer] = None,
        collector: Optional[TransactionCollector] = None,
        run_id: Optional[str] = None,
    ):
        """
        Initialize the reconciliation engine.

        Args:
            config: Application configuration
            store: Ledger store to read accounts from and write transactions to
            synthesizer: History synthesizer (built from config when omitted)
            collector: Transaction collector (built from config when omitted)
            run_id: Identifier embedded in synthetic transaction ids
        """
        self.config = config
        self.store = store
        self.tolerance = Decimal(str(config.reconciliation.tolerance))
        self.collector = collector or TransactionCollector.from_config(store, config)
        self.synthesizer = synthesizer or HistorySynthesizer(
            config.synthesis, tolerance=self.tolerance
        )
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.id_factory = SyntheticIdFactory(self.run_id)

    def run(
        self,
        user_id: Optional[str] = None,
        account_id: Optional[str] = None,
        dry_run: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RunSummary:
        """
        Reconcile every account matching the filters.

        Args:
            user_id: Restrict to one user's accounts
            account_id: Restrict to one account
            dry_run: Compute corrections without writing them
            progress_callback: Called with each account result as it completes

        Returns:
            Run summary with per-account results

        Raises:
            StoreError: If the accounts cannot be enumerated
        """
        start_time = datetime.now(timezone.utc)
        summary = RunSummary(
            run_id=self.run_id,
            started_at=start_time,
            user_id_filter=user_id,
            account_id_filter=account_id,
            dry_run=dry_run,
        )
        logger.info(
            f"Starting ledger synchronization run {self.run_id}"
            + (" (dry run)" if dry_run else "")
        )

        accounts = self.store.get_accounts(user_id=user_id, account_id=account_id)
        if not accounts:
            logger.warning("No accounts found to process")
        else:
            logger.info(f"Found {len(accounts)} accounts to process")

        workers = self.config.reconciliation.workers
        if workers > 1 and len(accounts) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [
                    executor.submit(self.reconcile_account, account, dry_run)
                    for account in accounts
                ]
                for future in futures:
                    self._record(summary, future.result(), progress_callback)
        else:
            for account in accounts:
                self._record(summary, self.reconcile_account(account, dry_run), progress_callback)

        summary.finished_at = datetime.now(timezone.utc)
        summary.processing_time_seconds = (summary.finished_at - start_time).total_seconds()

        logger.info(
            f"Synchronization complete in {summary.processing_time_seconds:.2f}s: "
            f"{summary.accounts_processed} processed, {summary.accounts_adjusted} adjusted, "
            f"{summary.accounts_failed} failed, "
            f"{summary.transactions_persisted} transactions persisted"
        )
        return summary

    def _record(
        self,
        summary: RunSummary,
        result: AccountResult,
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        summary.results.append(result)
        if progress_callback:
            progress_callback(result)

    def reconcile_account(self, account: Account, dry_run: bool = False) -> AccountResult:
        """
        Run the reconciliation pipeline for a single account.

        Any error while processing the account puts it in the FAILED state
        instead of propagating, so the rest of the run continues.

        Args:
            account: Account to reconcile
            dry_run: Stop before persisting

        Returns:
            Result describing the account's final state
        """
        started = time.monotonic()
        target = account.stated_balance
        result = AccountResult(
            account_id=account.id,
            user_id=account.user_id,
            target_balance=target,
        )
        logger.info(
            f"Processing account: {account.id} ({account.display_type}) - "
            f"Target Balance: ${target:,.2f}"
        )

        try:
            if not account.balance_readable:
                raise InvalidRecordError(f"Unreadable stated balance on account {account.id}")

            self._transition(result, AccountState.COLLECTING)
            collection = self.collector.collect(account.id, account.user_id)
            result.existing_count = len(collection.transactions)
            result.failed_predicates = list(collection.failed_predicates)
            if collection.is_partial:
                logger.warning(
                    f"Account {account.id}: continuing with partial history, "
                    f"failed predicates: {', '.join(collection.failed_predicates)}"
                )

            self._transition(result, AccountState.CALCULATING)
            current = calculate_total(collection.transactions)
            result.current_total = current
            logger.info(
                f"Account {account.id}: {result.existing_count} existing transactions, "
                f"total ${current:,.2f}, difference ${target - current:,.2f}"
            )

            if is_within_tolerance(current, target, self.tolerance):
                self._transition(result, AccountState.IN_SYNC)
                self._transition(result, AccountState.DONE)
                logger.info(f"Account {account.id} is already in sync")
                return result

            self._transition(result, AccountState.NEEDS_ADJUSTMENT)
            self._transition(result, AccountState.SYNTHESIZING)
            result.created_transactions = self._synthesize(account, result, current)
            self._verify_closes_gap(account, current, result.created_transactions)

            if dry_run:
                self._transition(result, AccountState.DONE)
                logger.info(
                    f"Account {account.id}: dry run, "
                    f"{len(result.created_transactions)} transactions not written"
                )
                return result

            self._transition(result, AccountState.PERSISTING)
            result.persisted_count = self._commit(account.id, result.created_transactions)
            self._transition(result, AccountState.DONE)
            logger.info(
                f"Synchronized account {account.id} - "
                f"{result.persisted_count} transactions added"
            )

        except (StoreError, SynthesisError, InvalidRecordError) as e:
            result.error = str(e)
            self._transition(result, AccountState.FAILED)
            logger.error(f"Error syncing account {account.id}: {e}")

        except Exception as e:
            result.error = f"{type(e).__name__}: {e}"
            self._transition(result, AccountState.FAILED)
            logger.exception(f"Unexpected error syncing account {account.id}")

        finally:
            result.processing_time_seconds = time.monotonic() - started

        return result

    def _transition(self, result: AccountResult, state: AccountState) -> None:
        result.state = state
        result.history.append(state)
        logger.debug(f"Account {result.account_id} -> {state.value}")

    def _synthesize(
        self, account: Account, result: AccountResult, current: Decimal
    ) -> list[LedgerTransaction]:
        """Pick the synthesis mode and build the correcting transactions."""
        if result.existing_count == 0:
            result.mode = SynthesisMode.FRESH_HISTORY
            transactions = self.synthesizer.generate_history(
                account.stated_balance, account.id, account.user_id, self.id_factory
            )
            logger.info(
                f"Generated {len(transactions)} historical transactions "
                f"for new account {account.id}"
            )
        else:
            result.mode = SynthesisMode.ADJUSTMENT
            delta = account.stated_balance - current
            transactions = self.synthesizer.generate_adjustment(
                delta, account.stated_balance, account.id, account.user_id, self.id_factory
            )
            logger.info(f"Created adjustment transaction: ${transactions[0].amount:,.2f}")
        return transactions

    def _verify_closes_gap(
        self,
        account: Account,
        current: Decimal,
        transactions: list[LedgerTransaction],
    ) -> None:
        """
        Raises:
            SynthesisError: If the new transactions leave the account out of tolerance
        """
        closing = current + sum((transaction_amount(t) for t in transactions), Decimal("0"))
        if not is_within_tolerance(closing, account.stated_balance, self.tolerance):
            raise SynthesisError(
                f"Synthesized transactions close at {closing}, "
                f"expected {account.stated_balance}"
            )

    def _commit(self, account_id: str, transactions: list[LedgerTransaction]) -> int:
        """
        Persist the batch, retrying with the same ids on store errors.

        Raises:
            StoreError: If every attempt fails
        """
        attempts = self.config.reconciliation.commit_attempts
        attempt = 1
        while True:
            try:
                return self.store.commit_batch(transactions)
            except StoreError as e:
                if attempt >= attempts:
                    raise
                logger.warning(
                    f"Commit attempt {attempt}/{attempts} failed for account "
                    f"{account_id}: {e}; retrying"
                )
                attempt += 1
