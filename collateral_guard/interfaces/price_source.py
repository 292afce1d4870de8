"""Price source protocol — reference price feed abstraction."""
from decimal import Decimal
from typing import Protocol


class PriceSource(Protocol):
    async def get_reference_price(self, asset: str) -> Decimal: ...
