"""Static reference price source."""
from __future__ import annotations

from decimal import Decimal
from typing import Mapping


class StaticPriceSource:
    """Serves reference prices from a fixed table (configuration or tests)."""

    def __init__(self, prices: Mapping[str, Decimal]) -> None:
        self._prices = dict(prices)

    def set_price(self, asset: str, price: Decimal) -> None:
        self._prices[asset] = price

    async def get_reference_price(self, asset: str) -> Decimal:
        try:
            return self._prices[asset]
        except KeyError:
            raise ValueError(f"No reference price for asset '{asset}'") from None
