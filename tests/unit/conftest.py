"""Shared fixtures for unit tests."""
from typing import Dict, List

import pytest

from crypto_fairness.errors import DataUnavailable
from crypto_fairness.mev_detection.models import Block, ChainTransaction

CONTRACT = "0x" + "c" * 40


def make_tx(
    tx_hash: str,
    from_address: str = "0x" + "1" * 40,
    to: str = CONTRACT,
    block_number: int = 100,
    position: int = 0,
    gas_price: int = 20_000_000_000,
    nonce: int = 0,
    data: str = "0x",
    observed_at: float = 1_000.0,
    block_timestamp=None
) -> ChainTransaction:
    return ChainTransaction(
        hash=tx_hash,
        from_address=from_address,
        to=to,
        value=0,
        gas_price=gas_price,
        gas_limit=100_000,
        nonce=nonce,
        data=data,
        observed_at=observed_at,
        block_number=block_number,
        position_in_block=position,
        block_timestamp=block_timestamp,
    )


class FakeChainReader:
    """In-memory chain reader serving pre-built blocks."""

    def __init__(self, blocks: Dict[int, Block] = None, latest: int = None, fail_blocks=()):
        self.blocks = blocks or {}
        self.latest = latest if latest is not None else max(self.blocks, default=0)
        self.fail_blocks = set(fail_blocks)
        self.block_requests: List[int] = []

    async def get_latest_block_number(self, chain: str) -> int:
        return self.latest

    async def get_block(self, chain: str, block_number: int, include_transactions: bool = True) -> Block:
        self.block_requests.append(block_number)
        if block_number in self.fail_blocks:
            raise DataUnavailable(f"Block {block_number} unavailable", chain=chain, block_number=block_number)
        block = self.blocks.get(block_number)
        if block is None:
            return Block(number=block_number, timestamp=float(block_number * 12))
        if not include_transactions:
            return Block(number=block.number, timestamp=block.timestamp)
        return block


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
