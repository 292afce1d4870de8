"""EVM JSON-RPC client with endpoint fallback."""
from __future__ import annotations

import logging
import re
import ssl
from decimal import Decimal
from typing import Any

import aiohttp
import certifi
from eth_abi import encode as abi_encode
from eth_utils import keccak

from ...config import LedgerConfig
from ...errors import LedgerRpcError
from ...execution.retry import is_retryable
from ...models import LedgerCall, LedgerTxStatus, SignedCall, TransactionStatusReport

logger = logging.getLogger(__name__)

_SIGNATURE_RE = re.compile(r"^\s*\w+\((.*)\)\s*$")


def _split_arg_types(signature: str) -> list[str]:
    match = _SIGNATURE_RE.match(signature)
    if not match:
        raise ValueError(f"Not a function signature: {signature!r}")
    inner = match.group(1).strip()
    if not inner:
        return []

    # Split on top-level commas only so tuple types stay intact.
    types: list[str] = []
    depth = 0
    current = ""
    for ch in inner:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            types.append(current.strip())
            current = ""
        else:
            current += ch
    types.append(current.strip())
    return types


def encode_call_data(signature: str, params: tuple[Any, ...] | list[Any]) -> str:
    """ABI-encode ``signature`` (e.g. ``addColl(address,address)``) with params."""
    arg_types = _split_arg_types(signature)
    if len(arg_types) != len(params):
        raise ValueError(
            f"{signature} expects {len(arg_types)} argument(s), got {len(params)}"
        )
    selector = keccak(text=signature.replace(" ", ""))[:4]
    return "0x" + (selector + abi_encode(arg_types, list(params))).hex()


def _hex_to_int(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(str(value), 16)


class EvmRpcClient:
    """EVM chain RPC client with automatic endpoint fallback.

    Serves as the ledger provider and as the balance source for remediation.
    """

    def __init__(self, config: LedgerConfig, collateral_decimals: int = 18) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.chain_id = config.chain_id
        self.collateral_decimals = collateral_decimals
        self.current_rpc_index = 0
        self._request_id = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints.

        Node-level errors (a JSON-RPC ``error`` member) are returned by a
        healthy endpoint and are raised immediately without trying the next one.
        """
        if not self.endpoints:
            raise LedgerRpcError("No RPC endpoints configured")

        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        response.raise_for_status()
                        result = await response.json()
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index

            if "error" in result:
                error = result["error"] or {}
                raise LedgerRpcError(
                    f"RPC Error: {error.get('message', error)}", code=error.get("code")
                )
            return result.get("result")

        message = f"All RPC endpoints failed. Last error: {last_error}"
        if last_error is not None and is_retryable(last_error):
            # keep the transport failure recognisable as transient
            raise ConnectionError(message) from last_error
        raise LedgerRpcError(message)

    # ------------------------------------------------------------------
    # Account state
    # ------------------------------------------------------------------

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return _hex_to_int(await self.rpc_call("eth_getTransactionCount", [address, block]))

    async def gas_price(self) -> int:
        return _hex_to_int(await self.rpc_call("eth_gasPrice", []))

    async def get_available_balance(self, owner_ref: str, asset: str) -> Decimal:
        """Native balance of ``owner_ref`` in whole units."""
        wei = _hex_to_int(await self.rpc_call("eth_getBalance", [owner_ref, "latest"]))
        balance = Decimal(wei) / (Decimal(10) ** self.collateral_decimals)
        logger.debug("Balance of %s: %s %s", owner_ref, balance, asset)
        return balance

    # ------------------------------------------------------------------
    # Ledger provider
    # ------------------------------------------------------------------

    def _tx_object(self, call: LedgerCall) -> dict[str, Any]:
        tx: dict[str, Any] = {
            "to": call.target,
            "data": encode_call_data(call.method, call.params),
            "value": hex(call.value),
        }
        if call.sender:
            tx["from"] = call.sender
        return tx

    async def estimate_gas(self, call: LedgerCall) -> int:
        return _hex_to_int(await self.rpc_call("eth_estimateGas", [self._tx_object(call)]))

    async def estimate_call(self, call: LedgerCall) -> dict[str, int]:
        """Raw (unbuffered) fee estimate for ``call``."""
        gas = await self.estimate_gas(call)
        price = await self.gas_price()
        return {
            "gas_consumed": gas,
            "gas_price": price,
            "overall_fee": gas * price,
            "suggested_max_fee": gas * price,
        }

    async def submit_signed_call(self, signed_call: SignedCall) -> str:
        return await self.rpc_call("eth_sendRawTransaction", [signed_call.payload])

    async def get_transaction_status(self, transaction_hash: str) -> TransactionStatusReport:
        receipt = await self.rpc_call("eth_getTransactionReceipt", [transaction_hash])

        if not receipt:
            tx = await self.rpc_call("eth_getTransactionByHash", [transaction_hash])
            status = LedgerTxStatus.PENDING if tx else LedgerTxStatus.NOT_FOUND
            return TransactionStatusReport(transaction_hash=transaction_hash, status=status)

        succeeded = _hex_to_int(receipt.get("status")) == 1
        return TransactionStatusReport(
            transaction_hash=transaction_hash,
            status=LedgerTxStatus.SUCCEEDED if succeeded else LedgerTxStatus.REVERTED,
            block_number=_hex_to_int(receipt.get("blockNumber")),
            block_hash=receipt.get("blockHash"),
            gas_used=_hex_to_int(receipt.get("gasUsed")),
            raw=receipt,
        )
