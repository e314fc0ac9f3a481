"""Shared fixtures for ledger_sync tests."""

from datetime import datetime, timezone
import logging
import random

import pytest

from ledger_sync.config import SyncConfig
from ledger_sync.reconciliation.engine import ReconciliationEngine
from ledger_sync.reconciliation.synthesizer import HistorySynthesizer
from ledger_sync.store.memory import InMemoryLedgerStore

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def config():
    return SyncConfig()


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def make_engine(config, fixed_clock):
    """Factory for engines with a seeded synthesizer and a fixed clock."""

    def _make(store, seed=42, run_id="run1", engine_config=None):
        engine_config = engine_config or config
        synthesizer = HistorySynthesizer(
            engine_config.synthesis,
            rng=random.Random(seed),
            clock=fixed_clock,
        )
        return ReconciliationEngine(
            engine_config, store, synthesizer=synthesizer, run_id=run_id
        )

    return _make


@pytest.fixture(autouse=True)
def reset_app_logger():
    """Drop handlers installed by setup_logging so they don't outlive a test."""
    yield
    logging.getLogger("ledger_sync").handlers = []
