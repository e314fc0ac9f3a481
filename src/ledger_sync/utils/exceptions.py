"""Custom exceptions for the ledger synchronization application."""


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    pass


class ConfigurationError(ReconciliationError):
    """Error in configuration."""

    pass


class StoreError(ReconciliationError):
    """A read or write against the ledger store failed."""

    pass


class StoreConnectionError(StoreError):
    """The ledger store could not be opened at all."""

    pass


class SynthesisError(ReconciliationError):
    """Synthesized transactions do not close the balance gap."""

    pass


class ReportGenerationError(ReconciliationError):
    """Error generating Excel report."""

    pass


class InvalidRecordError(ReconciliationError):
    """A stored record cannot be interpreted."""

    pass
