"""Blockchain connector package for multi-chain EVM reads."""
from .provider import BlockchainProvider, ChainConfig, transaction_from_rpc
from .reader import ChainReader

__all__ = [
    "BlockchainProvider",
    "ChainConfig",
    "ChainReader",
    "transaction_from_rpc",
]
