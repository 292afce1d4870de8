"""Local-key signer for EVM transactions."""
from __future__ import annotations

import logging

from eth_account import Account
from eth_utils import to_checksum_address

from ...models import LedgerCall, SignedCall
from .client import EvmRpcClient, encode_call_data

logger = logging.getLogger(__name__)


class LocalAccountSigner:
    """Sign legacy transactions with a private key held in process memory."""

    def __init__(self, private_key: str, client: EvmRpcClient) -> None:
        self._account = Account.from_key(private_key)
        self._client = client

    @property
    def address(self) -> str:
        return self._account.address

    async def build_transaction(self, call: LedgerCall) -> dict:
        tx = {
            "to": to_checksum_address(call.target),
            "data": encode_call_data(call.method, call.params),
            "value": call.value,
            "chainId": self._client.chain_id,
            "nonce": await self._client.get_transaction_count(self.address, "pending"),
            "gasPrice": await self._client.gas_price(),
        }
        tx["gas"] = call.gas_limit or await self._client.estimate_gas(
            LedgerCall(
                target=call.target,
                method=call.method,
                params=call.params,
                value=call.value,
                sender=self.address,
            )
        )

        if call.max_fee is not None and tx["gas"] * tx["gasPrice"] > call.max_fee:
            capped = call.max_fee // tx["gas"]
            logger.info(
                "Capping gas price %d -> %d to respect max fee %d",
                tx["gasPrice"],
                capped,
                call.max_fee,
            )
            tx["gasPrice"] = capped
        return tx

    async def sign(self, call: LedgerCall) -> SignedCall:
        tx = await self.build_transaction(call)
        signed = self._account.sign_transaction(tx)
        logger.debug("Signed %s nonce=%d", call.method, tx["nonce"])
        return SignedCall(
            payload="0x" + bytes(signed.raw_transaction).hex(),
            transaction_hash="0x" + bytes(signed.hash).hex(),
        )
