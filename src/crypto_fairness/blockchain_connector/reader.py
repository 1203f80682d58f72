"""Read-side contract consumed by the monitor, analyzer and probes."""
from typing import Protocol

from ..mev_detection.models import Block


class ChainReader(Protocol):
    """Read access to blocks and their transactions."""

    async def get_latest_block_number(self, chain: str) -> int:
        ...

    async def get_block(self, chain: str, block_number: int, include_transactions: bool = True) -> Block:
        ...
