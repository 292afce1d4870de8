"""Ledger client implementations."""
