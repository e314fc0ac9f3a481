"""Utility modules."""

from .exceptions import (
    ReconciliationError,
    ConfigurationError,
    StoreError,
    StoreConnectionError,
    SynthesisError,
    ReportGenerationError,
    InvalidRecordError,
)
from .logging_config import setup_logging

__all__ = [
    "ReconciliationError",
    "ConfigurationError",
    "StoreError",
    "StoreConnectionError",
    "SynthesisError",
    "ReportGenerationError",
    "InvalidRecordError",
    "setup_logging",
]
