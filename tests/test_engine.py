"""
Tests for the reconciliation engine

CRITICAL: after a successful run every account's completed, linked
transactions must sum to its stated balance within 0.01, and a second run
must write nothing.
"""

from decimal import Decimal

import pytest

from ledger_sync.config import SyncConfig
from ledger_sync.models.ledger import LedgerTransaction
from ledger_sync.models.results import AccountState, SynthesisMode
from ledger_sync.reconciliation.calculator import calculate_total, is_within_tolerance
from ledger_sync.reconciliation.collector import TransactionCollector
from ledger_sync.reconciliation.engine import ReconciliationEngine
from ledger_sync.reconciliation.synthesizer import HistorySynthesizer
from ledger_sync.store.memory import InMemoryLedgerStore
from ledger_sync.store.sqlite import SQLiteLedgerStore
from ledger_sync.utils.exceptions import StoreError


class FailingCommitStore(InMemoryLedgerStore):
    """Store that rejects batch commits for chosen accounts."""

    def __init__(self, failing_accounts, failures_before_success=None):
        super().__init__()
        self.failing_accounts = set(failing_accounts)
        self.failures_before_success = failures_before_success
        self.commit_calls = 0

    def commit_batch(self, transactions):
        transactions = list(transactions)
        self.commit_calls += 1
        if any(t.account_id in self.failing_accounts for t in transactions):
            if self.failures_before_success is None or self.failures_before_success > 0:
                if self.failures_before_success is not None:
                    self.failures_before_success -= 1
                raise StoreError("write timeout")
        return super().commit_batch(transactions)


class BrokenAccountsStore(InMemoryLedgerStore):
    def get_accounts(self, user_id=None, account_id=None):
        raise StoreError("connection refused")


class DriverBugStore(InMemoryLedgerStore):
    """Store whose queries for one account fail with a non-store error."""

    def query_transactions(self, field, value):
        if value == "boom":
            raise RuntimeError("driver bug")
        return super().query_transactions(field, value)


class ShortChangingSynthesizer(HistorySynthesizer):
    """Synthesizer that leaves a gap, to prove the engine refuses it."""

    def generate_adjustment(self, delta, target, account_id, user_id, id_factory):
        [txn] = super().generate_adjustment(delta, target, account_id, user_id, id_factory)
        txn.amount = txn.amount - Decimal("1.00")
        return [txn]


def ledger_total(store, account):
    transactions = TransactionCollector(store).collect(account.id, account.user_id).transactions
    return calculate_total(transactions)


def assert_all_in_sync(store):
    for account in store.get_accounts():
        total = ledger_total(store, account)
        assert is_within_tolerance(total, account.stated_balance), (
            f"{account.id}: ledger {total} vs stated {account.stated_balance}"
        )


class TestModeSelection:
    """Test fresh-history versus adjustment"""

    def test_fresh_account_gets_history(self, store, make_engine):
        store.add_account("acc1", {"userId": "u1", "balance": 1000.00})

        summary = make_engine(store).run()

        [result] = summary.results
        assert result.mode == SynthesisMode.FRESH_HISTORY
        assert result.state == AccountState.DONE
        assert sum(t.amount for t in result.created_transactions) == Decimal("1000.00")
        assert len(result.created_transactions) <= 21
        assert result.persisted_count == len(result.created_transactions)
        assert store.count_transactions() == len(result.created_transactions)
        assert_all_in_sync(store)

    def test_existing_history_gets_one_adjustment(self, store, make_engine):
        store.add_account("acc1", {"userId": "u1", "balance": 1000.00})
        store.add_transaction({"id": "t0", "accountId": "acc1", "userId": "u1", "amount": 50.00})

        summary = make_engine(store).run()

        [result] = summary.results
        assert result.mode == SynthesisMode.ADJUSTMENT
        [adjustment] = result.created_transactions
        assert adjustment.amount == Decimal("950.00")
        assert adjustment.description == "Balance Adjustment - Administrative Credit"
        assert store.count_transactions() == 2
        assert_all_in_sync(store)

    def test_negative_balance_without_history(self, store, make_engine):
        store.add_account("acc1", {"userId": "u1", "balance": -200.00})

        [result] = make_engine(store).run().results

        assert sum(t.amount for t in result.created_transactions) == Decimal("-200.00")
        assert all(t.type_label == "withdrawal" for t in result.created_transactions)
        assert_all_in_sync(store)

    def test_zero_balance_without_history_is_in_sync(self, store, make_engine):
        store.add_account("acc1", {"userId": "u1", "balance": 0})

        [result] = make_engine(store).run().results

        assert result.was_in_sync
        assert store.count_transactions() == 0


class TestToleranceBoundary:
    """Test the 0.01 in-sync boundary"""

    def test_half_cent_short_is_in_sync(self, store, make_engine):
        store.add_account("acc1", {"userId": "u1", "balance": 1000.00})
        store.add_transaction({"id": "t0", "accountId": "acc1", "amount": 999.995})

        [result] = make_engine(store).run().results

        assert result.history == [
            AccountState.COLLECTING,
            AccountState.CALCULATING,
            AccountState.IN_SYNC,
            AccountState.DONE,
        ]
        assert result.created_transactions == []
        assert store.count_transactions() == 1

    def test_two_cents_short_is_adjusted(self, store, make_engine):
        store.add_account("acc1", {"userId": "u1", "balance": 1000.00})
        store.add_transaction({"id": "t0", "accountId": "acc1", "amount": 999.98})

        [result] = make_engine(store).run().results

        [adjustment] = result.created_transactions
        assert adjustment.amount == Decimal("0.02")
        assert result.history == [
            AccountState.COLLECTING,
            AccountState.CALCULATING,
            AccountState.NEEDS_ADJUSTMENT,
            AccountState.SYNTHESIZING,
            AccountState.PERSISTING,
            AccountState.DONE,
        ]


class TestIdempotence:
    """Test that re-running changes nothing"""

    @pytest.fixture
    def populated_store(self, store):
        store.add_account("fresh", {"userId": "u1", "balance": 2500.00})
        store.add_account("savings", {"userId": "u1", "balance": 310.40, "accountType": "savings"})
        store.add_account("overdrawn", {"userId": "u2", "balance": -75.25})
        store.add_account("synced", {"userId": "u3", "balance": 40.00})
        store.add_transaction({"id": "s1", "accountId": "savings", "userId": "u1", "amount": 300.00})
        store.add_transaction({"id": "y1", "accountId": "synced", "userId": "u3", "amount": 40.00})
        store.add_transaction({"id": "legacy", "userId": "u1", "amount": 15.00})
        return store

    def test_second_run_writes_nothing(self, populated_store, make_engine):
        first = make_engine(populated_store, run_id="first").run()
        count_after_first = populated_store.count_transactions()

        second = make_engine(populated_store, seed=7, run_id="second").run()

        assert first.accounts_adjusted == 3
        assert first.accounts_in_sync == 1
        assert second.accounts_adjusted == 0
        assert second.accounts_in_sync == 4
        assert second.transactions_persisted == 0
        assert populated_store.count_transactions() == count_after_first
        assert_all_in_sync(populated_store)

    def test_no_duplicate_ids(self, populated_store, make_engine):
        make_engine(populated_store, run_id="first").run()
        make_engine(populated_store, run_id="second").run()

        ids = [t.id for t in populated_store.all_transactions()]
        assert len(ids) == len(set(ids))

    def test_replaying_a_run_id_does_not_duplicate(self, store, make_engine):
        store.add_account("acc1", {"userId": "u1", "balance": 500.00})
        engine = make_engine(store, run_id="replay")
        [result] = engine.run(dry_run=True).results

        # A prior attempt of the same run already wrote part of the batch
        store.commit_batch(result.created_transactions[:1])
        inserted = store.commit_batch(result.created_transactions)

        assert inserted == len(result.created_transactions) - 1
        assert store.count_transactions() == len(result.created_transactions)
        assert_all_in_sync(store)

    def test_sqlite_store(self, tmp_path, make_engine):
        with SQLiteLedgerStore(tmp_path / "ledger.db") as store:
            store.add_account("acc1", {"userId": "u1", "balance": 1234.56})
            store.add_account("acc2", {"userId": "u1", "balance": 10.00})
            store.add_transaction({"id": "t0", "accountId": "acc2", "amount": "3.50"})

            first = make_engine(store, run_id="first").run()
            second = make_engine(store, run_id="second").run()

            assert first.accounts_adjusted == 2
            assert second.transactions_persisted == 0
            assert_all_in_sync(store)


class TestFailureIsolation:
    """Test that one account's failure never stops the run"""

    def test_commit_failure_isolated(self, make_engine):
        store = FailingCommitStore(failing_accounts=["accA"])
        store.add_account("accA", {"userId": "u1", "balance": 100.00})
        store.add_account("accB", {"userId": "u2", "balance": 200.00})

        summary = make_engine(store).run()

        result_a, result_b = summary.results
        assert result_a.state == AccountState.FAILED
        assert result_a.persisted_count == 0
        assert "write timeout" in result_a.error
        assert result_b.state == AccountState.DONE
        assert summary.accounts_failed == 1
        assert summary.accounts_adjusted == 1
        assert summary.transactions_persisted == result_b.persisted_count
        assert ledger_total(store, store.get_accounts(account_id="accB")[0]) == Decimal("200.00")
        assert store.query_transactions("accountId", "accA") == []

    def test_commit_retried_with_same_batch(self, make_engine):
        store = FailingCommitStore(failing_accounts=["acc1"], failures_before_success=1)
        store.add_account("acc1", {"userId": "u1", "balance": 100.00})

        [result] = make_engine(store).run().results

        assert result.state == AccountState.DONE
        assert store.commit_calls == 2
        assert_all_in_sync(store)

    def test_retries_exhausted(self, make_engine):
        store = FailingCommitStore(failing_accounts=["acc1"], failures_before_success=5)
        store.add_account("acc1", {"userId": "u1", "balance": 100.00})

        [result] = make_engine(store).run().results

        assert result.failed
        assert store.commit_calls == SyncConfig().reconciliation.commit_attempts

    def test_single_commit_attempt(self, make_engine):
        store = FailingCommitStore(failing_accounts=["acc1"], failures_before_success=1)
        store.add_account("acc1", {"userId": "u1", "balance": 100.00})
        config = SyncConfig(reconciliation={"commit_attempts": 1})

        [result] = make_engine(store, engine_config=config).run().results

        assert result.failed
        assert store.commit_calls == 1

    def test_synthesis_gap_rejected(self, store, config, fixed_clock):
        store.add_account("acc1", {"userId": "u1", "balance": 100.00})
        store.add_transaction({"id": "t0", "accountId": "acc1", "amount": 10})
        engine = ReconciliationEngine(
            config, store, synthesizer=ShortChangingSynthesizer(clock=fixed_clock)
        )

        summary = engine.run()

        [result] = summary.results
        assert result.failed
        assert "close at" in result.error
        assert store.count_transactions() == 1
        assert summary.accounts_failed == 1

    def test_account_enumeration_failure_is_fatal(self, make_engine):
        with pytest.raises(StoreError):
            make_engine(BrokenAccountsStore()).run()

    def test_oversized_amount_does_not_stop_run(self, store, make_engine):
        store.add_account("a_bad", {"userId": "u1", "balance": 100.00})
        store.add_account("b_ok", {"userId": "u2", "balance": 50.00})
        store.add_transaction({"id": "t0", "accountId": "a_bad", "amount": "1e40"})

        summary = make_engine(store).run()

        result_a, result_b = summary.results
        assert result_a.state == AccountState.DONE
        assert result_a.mode == SynthesisMode.ADJUSTMENT
        assert result_a.created_transactions[0].amount == Decimal("100.00")
        assert result_b.state == AccountState.DONE
        assert_all_in_sync(store)

    def test_unreadable_balance_fails_only_that_account(self, store, make_engine):
        store.add_account("a_bad", {"userId": "u1", "balance": 1e300})
        store.add_account("b_ok", {"userId": "u2", "balance": 50.00})

        summary = make_engine(store).run()

        result_a, result_b = summary.results
        assert result_a.failed
        assert "Unreadable stated balance" in result_a.error
        assert result_a.history == [AccountState.FAILED]
        assert result_b.state == AccountState.DONE
        assert store.query_transactions("accountId", "a_bad") == []
        assert summary.accounts_failed == 1

    def test_unexpected_error_fails_only_that_account(self, make_engine):
        store = DriverBugStore()
        store.add_account("boom", {"userId": "u1", "balance": 10.00})
        store.add_account("fine", {"userId": "u2", "balance": 20.00})

        summary = make_engine(store).run()

        result_boom, result_fine = summary.results
        assert result_boom.failed
        assert result_boom.error == "RuntimeError: driver bug"
        assert result_fine.state == AccountState.DONE
        assert summary.accounts_failed == 1


class TestPartialData:
    """Test behaviour with degraded or odd ledger data"""

    def test_malformed_amount_counts_as_zero(self, store, make_engine):
        store.add_account("acc1", {"userId": "u1", "balance": 100.00})
        store.add_transaction({"id": "t0", "accountId": "acc1", "amount": "corrupt"})

        [result] = make_engine(store).run().results

        assert result.existing_count == 1
        assert result.current_total == Decimal("0")
        assert result.mode == SynthesisMode.ADJUSTMENT
        assert result.created_transactions[0].amount == Decimal("100.00")

    def test_pending_rows_do_not_count(self, store, make_engine):
        store.add_account("acc1", {"userId": "u1", "balance": 500.00})
        store.add_transaction(
            {"id": "t0", "accountId": "acc1", "amount": 500.00, "status": "pending"}
        )

        [result] = make_engine(store).run().results

        assert result.mode == SynthesisMode.ADJUSTMENT
        assert result.created_transactions[0].amount == Decimal("500.00")

    def test_transaction_linked_twice_counted_once(self, store, make_engine):
        store.add_account("acc1", {"userId": "u1", "balance": 100.00})
        store.add_transaction(
            {"id": "t0", "accountId": "acc1", "userId": "u1", "toAccount": "acc1", "amount": 100.00}
        )

        [result] = make_engine(store).run().results

        assert result.existing_count == 1
        assert result.was_in_sync

    def test_existing_rows_never_modified(self, store, make_engine):
        store.add_account("acc1", {"userId": "u1", "balance": 100.00})
        store.add_transaction({"id": "t0", "accountId": "acc1", "amount": 60.0, "note": "keep"})
        before = store.get_transaction_document("t0")

        make_engine(store).run()

        assert store.get_transaction_document("t0") == before


class TestRunOptions:
    """Test filters, dry run and parallelism"""

    @pytest.fixture
    def two_users(self, store):
        store.add_account("a1", {"userId": "u1", "balance": 100.00})
        store.add_account("a2", {"userId": "u1", "balance": 250.00})
        store.add_account("b1", {"userId": "u2", "balance": 75.00})
        return store

    def test_user_filter(self, two_users, make_engine):
        summary = make_engine(two_users).run(user_id="u1")

        assert [r.account_id for r in summary.results] == ["a1", "a2"]
        assert summary.user_id_filter == "u1"
        assert two_users.query_transactions("accountId", "b1") == []

    def test_account_filter(self, two_users, make_engine):
        summary = make_engine(two_users).run(account_id="a2")
        assert [r.account_id for r in summary.results] == ["a2"]

    def test_unknown_account(self, two_users, make_engine):
        summary = make_engine(two_users).run(account_id="zzz")
        assert summary.accounts_processed == 0

    def test_dry_run_writes_nothing(self, two_users, make_engine):
        summary = make_engine(two_users).run(dry_run=True)

        assert summary.dry_run
        assert two_users.count_transactions() == 0
        assert summary.transactions_persisted == 0
        assert summary.transactions_planned > 0
        assert all(AccountState.PERSISTING not in r.history for r in summary.results)

    def test_progress_callback(self, two_users, make_engine):
        seen = []
        make_engine(two_users).run(progress_callback=lambda r: seen.append(r.account_id))
        assert seen == ["a1", "a2", "b1"]

    def test_parallel_workers(self, two_users, make_engine):
        config = SyncConfig(reconciliation={"workers": 3})

        summary = make_engine(two_users, engine_config=config).run()

        assert [r.account_id for r in summary.results] == ["a1", "a2", "b1"]
        assert summary.accounts_adjusted == 3
        assert_all_in_sync(two_users)

    def test_sibling_accounts_converge(self, two_users, make_engine):
        make_engine(two_users, run_id="first").run()
        second = make_engine(two_users, run_id="second").run()

        assert second.transactions_persisted == 0
        assert_all_in_sync(two_users)

    def test_summary_timing(self, two_users, make_engine):
        summary = make_engine(two_users).run()
        assert summary.finished_at >= summary.started_at
        assert summary.processing_time_seconds >= 0
        assert all(r.processing_time_seconds >= 0 for r in summary.results)


class TestUserDerivedAccounts:
    """Test accounts that exist only on user documents"""

    def test_default_primary_account_reconciled(self, store, make_engine):
        store.add_user("u5", {"balance": 300.00})

        first = make_engine(store, run_id="first").run()
        second = make_engine(store, run_id="second").run()

        [result] = first.results
        assert result.account_id == "u5_primary"
        assert result.mode == SynthesisMode.FRESH_HISTORY
        assert {t.account_id for t in result.created_transactions} == {"u5_primary"}
        assert second.transactions_persisted == 0
        assert_all_in_sync(store)

    def test_embedded_accounts_converge(self, store, make_engine):
        store.add_user("u6", {"accounts": [{"balance": 120.00}, {"balance": -30.00}]})
        store.add_transaction(
            {"id": "old", "accountId": "u6_account_0", "userId": "u6", "amount": 20}
        )

        first = make_engine(store, run_id="first").run()
        second = make_engine(store, run_id="second").run()

        assert [r.mode for r in first.results] == [
            SynthesisMode.ADJUSTMENT,
            SynthesisMode.FRESH_HISTORY,
        ]
        assert second.accounts_in_sync == 2
        assert second.transactions_persisted == 0
        assert_all_in_sync(store)

    def test_user_filter_selects_derived_accounts(self, store, make_engine):
        store.add_account("a1", {"userId": "u1", "balance": 10.00})
        store.add_user("u5", {"balance": 300.00})

        summary = make_engine(store).run(user_id="u5")

        assert [r.account_id for r in summary.results] == ["u5_primary"]


def test_created_transactions_are_ledger_rows(store, make_engine):
    store.add_account("acc1", {"userId": "u1", "balance": 42.00})
    [result] = make_engine(store).run().results
    assert all(isinstance(t, LedgerTransaction) for t in result.created_transactions)
    assert all(t.account_id == "acc1" and t.user_id == "u1" for t in result.created_transactions)
