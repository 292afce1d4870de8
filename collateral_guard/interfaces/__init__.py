"""Protocol interfaces for external collaborators."""
from .alerts import AlertDispatcher
from .ledger import BalanceSource, LedgerProvider, Signer
from .notifier import Notifier
from .price_source import PriceSource
from .store import PositionStore

__all__ = [
    "AlertDispatcher",
    "BalanceSource",
    "LedgerProvider",
    "Notifier",
    "PositionStore",
    "PriceSource",
    "Signer",
]
