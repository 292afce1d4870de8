from .client import EvmRpcClient, encode_call_data
from .signer import LocalAccountSigner

__all__ = ["EvmRpcClient", "LocalAccountSigner", "encode_call_data"]
