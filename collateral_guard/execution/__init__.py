"""Ledger transaction execution."""
from .manager import TransactionManager
from .retry import is_retryable

__all__ = ["TransactionManager", "is_retryable"]
