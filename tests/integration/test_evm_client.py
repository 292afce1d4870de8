"""Integration tests for the EVM client — RPC fallback, status mapping, signing."""
from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from eth_account import Account

from collateral_guard.chains.evm import EvmRpcClient, LocalAccountSigner
from collateral_guard.chains.evm.client import encode_call_data
from collateral_guard.config import LedgerConfig
from collateral_guard.errors import LedgerRpcError
from collateral_guard.models import LedgerCall, LedgerTxStatus

ZERO = "0x" + "0" * 40
PRIVATE_KEY = "0x" + "11" * 32


@pytest.fixture()
def client(ledger_config: LedgerConfig) -> EvmRpcClient:
    return EvmRpcClient(ledger_config)


def _mock_response(data: dict) -> AsyncMock:
    response = AsyncMock()
    response.json = AsyncMock(return_value=data)
    response.raise_for_status = MagicMock()
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


def _mock_session(post: MagicMock) -> AsyncMock:
    session = AsyncMock()
    session.post = post
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=None)
    return session


def _patched(session: AsyncMock):
    return (
        patch("collateral_guard.chains.evm.client.aiohttp.ClientSession", return_value=session),
        patch("collateral_guard.chains.evm.client.aiohttp.TCPConnector"),
    )


class TestEncodeCallData:
    def test_add_coll_selector(self) -> None:
        data = encode_call_data("addColl(address,address)", [ZERO, ZERO])
        # selector + two 32-byte words
        assert data.startswith("0x")
        assert len(data) == 2 + 8 + 64 * 2
        assert data[10:] == "0" * 128

    def test_no_args(self) -> None:
        assert len(encode_call_data("claimCollateral()", [])) == 2 + 8

    def test_arity_mismatch(self) -> None:
        with pytest.raises(ValueError, match="expects 2 argument"):
            encode_call_data("addColl(address,address)", [ZERO])

    def test_not_a_signature(self) -> None:
        with pytest.raises(ValueError):
            encode_call_data("addColl", [])


class TestRpcCall:
    @pytest.mark.asyncio
    async def test_successful_call(self, client: EvmRpcClient) -> None:
        session = _mock_session(MagicMock(return_value=_mock_response({"result": "0x10"})))
        p1, p2 = _patched(session)
        with p1, p2:
            assert await client.rpc_call("eth_blockNumber", []) == "0x10"

        payload = session.post.call_args.kwargs["json"]
        assert payload["method"] == "eth_blockNumber"
        assert payload["jsonrpc"] == "2.0"

    @pytest.mark.asyncio
    async def test_node_error_raised_without_fallback(self, client: EvmRpcClient) -> None:
        session = _mock_session(
            MagicMock(
                return_value=_mock_response(
                    {"error": {"code": -32000, "message": "nonce too low"}}
                )
            )
        )
        p1, p2 = _patched(session)
        with p1, p2:
            with pytest.raises(LedgerRpcError, match="nonce too low") as exc_info:
                await client.rpc_call("eth_sendRawTransaction", ["0x"])

        assert exc_info.value.code == -32000
        assert session.post.call_count == 1

    @pytest.mark.asyncio
    async def test_fallback_on_connection_error(self, client: EvmRpcClient) -> None:
        calls = 0
        success = _mock_response({"result": "0x1"})

        def side_effect(*args, **kwargs):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConnectionError("first endpoint down")
            return success

        session = _mock_session(MagicMock(side_effect=side_effect))
        p1, p2 = _patched(session)
        with p1, p2:
            assert await client.rpc_call("eth_chainId", []) == "0x1"

        assert client.current_rpc_index == 1

    @pytest.mark.asyncio
    async def test_all_endpoints_down_is_transient(self, client: EvmRpcClient) -> None:
        session = _mock_session(MagicMock(side_effect=ConnectionError("down")))
        p1, p2 = _patched(session)
        with p1, p2:
            with pytest.raises(ConnectionError, match="All RPC endpoints failed"):
                await client.rpc_call("eth_chainId", [])

    @pytest.mark.asyncio
    async def test_no_endpoints(self) -> None:
        client = EvmRpcClient(LedgerConfig())
        with pytest.raises(LedgerRpcError, match="No RPC endpoints"):
            await client.rpc_call("eth_chainId", [])


class TestLedgerQueries:
    @pytest.mark.asyncio
    async def test_balance_in_whole_units(self, client: EvmRpcClient) -> None:
        client.rpc_call = AsyncMock(return_value=hex(15 * 10**17))
        balance = await client.get_available_balance("0xowner", "ETH")
        assert balance == Decimal("1.5")
        client.rpc_call.assert_awaited_once_with("eth_getBalance", ["0xowner", "latest"])

    @pytest.mark.asyncio
    async def test_estimate_call(self, client: EvmRpcClient) -> None:
        client.rpc_call = AsyncMock(side_effect=["0x5208", "0x3b9aca00"])
        estimate = await client.estimate_call(
            LedgerCall(target=ZERO, method="addColl(address,address)", params=(ZERO, ZERO))
        )
        assert estimate["gas_consumed"] == 21000
        assert estimate["gas_price"] == 10**9
        assert estimate["overall_fee"] == 21000 * 10**9

    @pytest.mark.asyncio
    async def test_status_succeeded(self, client: EvmRpcClient) -> None:
        client.rpc_call = AsyncMock(
            return_value={
                "status": "0x1",
                "blockNumber": "0x10",
                "blockHash": "0xblock",
                "gasUsed": "0x5208",
            }
        )
        report = await client.get_transaction_status("0xabc")
        assert report.status is LedgerTxStatus.SUCCEEDED
        assert report.block_number == 16
        assert report.gas_used == 21000

    @pytest.mark.asyncio
    async def test_status_reverted(self, client: EvmRpcClient) -> None:
        client.rpc_call = AsyncMock(return_value={"status": "0x0", "blockNumber": "0x10"})
        report = await client.get_transaction_status("0xabc")
        assert report.status is LedgerTxStatus.REVERTED

    @pytest.mark.asyncio
    async def test_status_pending(self, client: EvmRpcClient) -> None:
        client.rpc_call = AsyncMock(side_effect=[None, {"hash": "0xabc"}])
        report = await client.get_transaction_status("0xabc")
        assert report.status is LedgerTxStatus.PENDING

    @pytest.mark.asyncio
    async def test_status_not_found(self, client: EvmRpcClient) -> None:
        client.rpc_call = AsyncMock(side_effect=[None, None])
        report = await client.get_transaction_status("0xabc")
        assert report.status is LedgerTxStatus.NOT_FOUND


class TestLocalAccountSigner:
    @pytest.fixture()
    def rpc(self) -> MagicMock:
        rpc = MagicMock()
        rpc.chain_id = 1
        rpc.get_transaction_count = AsyncMock(return_value=3)
        rpc.gas_price = AsyncMock(return_value=20 * 10**9)
        rpc.estimate_gas = AsyncMock(return_value=60000)
        return rpc

    @pytest.mark.asyncio
    async def test_sign_produces_recoverable_payload(self, rpc: MagicMock) -> None:
        signer = LocalAccountSigner(PRIVATE_KEY, rpc)
        call = LedgerCall(
            target="0x24179cd81c9e782a4096035f7ec97fb8b783e007",
            method="addColl(address,address)",
            params=(ZERO, ZERO),
            value=10**17,
        )

        signed = await signer.sign(call)

        assert signed.payload.startswith("0x")
        assert signed.transaction_hash.startswith("0x")
        assert len(signed.transaction_hash) == 66
        assert Account.recover_transaction(signed.payload) == signer.address
        rpc.estimate_gas.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_gas_limit_and_fee_cap(self, rpc: MagicMock) -> None:
        signer = LocalAccountSigner(PRIVATE_KEY, rpc)
        call = LedgerCall(
            target=ZERO,
            method="addColl(address,address)",
            params=(ZERO, ZERO),
            gas_limit=50000,
            max_fee=50000 * 10 * 10**9,
        )

        tx = await signer.build_transaction(call)

        assert tx["gas"] == 50000
        assert tx["gasPrice"] == 10 * 10**9
        assert tx["nonce"] == 3
        rpc.estimate_gas.assert_not_called()
