"""Ledger balance synchronization: keeps transaction history consistent with stated balances."""

__version__ = "0.1.0"
