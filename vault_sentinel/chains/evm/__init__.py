"""EVM chain support."""
from .client import EvmChainClient, encode_call

__all__ = ["EvmChainClient", "encode_call"]
