"""Collateralized position monitoring with reliable ledger execution."""

__version__ = "0.1.0"
