"""Reconciliation engine and its building blocks."""

from .calculator import calculate_total, is_within_tolerance
from .collector import CollectionResult, LinkPredicate, TransactionCollector
from .engine import ReconciliationEngine
from .synthesizer import HistorySynthesizer, SyntheticIdFactory

__all__ = [
    "ReconciliationEngine",
    "TransactionCollector",
    "LinkPredicate",
    "CollectionResult",
    "HistorySynthesizer",
    "SyntheticIdFactory",
    "calculate_total",
    "is_within_tolerance",
]
