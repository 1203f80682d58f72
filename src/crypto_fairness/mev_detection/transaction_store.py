"""
Transaction Window Store.

Per-chain, time-bounded collection of observed transactions. Each chain
partition owns its own lock so the chain monitor (writer) and analyzers or
API handlers (readers, possibly on worker threads) never observe a
half-inserted transaction. Reads always return copies.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .models import ChainTransaction

logger = logging.getLogger(__name__)


@dataclass
class TransactionFilter:
    """Optional constraints applied by ``TransactionWindowStore.query``."""
    block_number: Optional[int] = None
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    to_address: Optional[str] = None

    def matches(self, tx: ChainTransaction) -> bool:
        if self.block_number is not None and tx.block_number != self.block_number:
            return False
        if self.from_block is not None and tx.block_number < self.from_block:
            return False
        if self.to_block is not None and tx.block_number > self.to_block:
            return False
        if self.to_address is not None and tx.to.lower() != self.to_address.lower():
            return False
        return True


class _ChainPartition:
    """Transactions of one chain, indexed by hash and by block."""

    def __init__(self):
        self.lock = threading.Lock()
        self.transactions: Dict[str, ChainTransaction] = {}
        self.blocks: Dict[int, Dict[str, ChainTransaction]] = {}
        # block number -> (ingested at, recipient scope); a None scope means every recipient
        self.ingested: Dict[int, Tuple[float, Optional[FrozenSet[str]]]] = {}

    def covered_blocks(self, to_address: str) -> Set[int]:
        address = to_address.lower()
        return {
            number for number, (_, scope) in self.ingested.items()
            if scope is None or address in scope
        }


class TransactionWindowStore:
    """Idempotent, age-evicted store of observed transactions keyed by chain."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._partitions: Dict[str, _ChainPartition] = {}
        self._partitions_lock = threading.Lock()

    def _partition(self, chain: str, create: bool = False) -> Optional[_ChainPartition]:
        with self._partitions_lock:
            partition = self._partitions.get(chain)
            if partition is None and create:
                partition = _ChainPartition()
                self._partitions[chain] = partition
            return partition

    def insert(self, chain: str, tx: ChainTransaction) -> bool:
        """Insert a transaction. Returns False if the hash is already present."""
        partition = self._partition(chain, create=True)
        with partition.lock:
            if tx.hash in partition.transactions:
                return False
            partition.transactions[tx.hash] = tx
            partition.blocks.setdefault(tx.block_number, {})[tx.hash] = tx
        return True

    def get(self, chain: str, tx_hash: str) -> Optional[ChainTransaction]:
        partition = self._partition(chain)
        if partition is None:
            return None
        with partition.lock:
            return partition.transactions.get(tx_hash)

    def query(
        self,
        chain: Optional[str] = None,
        tx_filter: Optional[TransactionFilter] = None
    ) -> List[ChainTransaction]:
        """
        Return a snapshot of stored transactions.

        Args:
            chain: Restrict to one chain; all chains when None
            tx_filter: Optional block / recipient constraints

        Returns:
            New list ordered by (block_number, position_in_block)
        """
        if chain is None:
            with self._partitions_lock:
                partitions = list(self._partitions.values())
        else:
            partition = self._partition(chain)
            partitions = [partition] if partition else []

        snapshot: List[ChainTransaction] = []
        for partition in partitions:
            with partition.lock:
                if tx_filter is not None and tx_filter.block_number is not None:
                    candidates = list(partition.blocks.get(tx_filter.block_number, {}).values())
                else:
                    candidates = list(partition.transactions.values())
            if tx_filter is not None:
                candidates = [tx for tx in candidates if tx_filter.matches(tx)]
            snapshot.extend(candidates)

        snapshot.sort(key=lambda tx: (tx.block_number, tx.position_in_block))
        return snapshot

    def mark_block_ingested(
        self,
        chain: str,
        block_number: int,
        recipients: Optional[Iterable[str]] = None,
        observed_at: Optional[float] = None
    ) -> None:
        """
        Record that every transaction of a block sent to ``recipients`` was inserted.

        ``recipients`` of None (or empty) means the whole block was ingested.
        """
        scope = frozenset(a.lower() for a in recipients) if recipients else None
        partition = self._partition(chain, create=True)
        with partition.lock:
            partition.ingested[block_number] = (
                self._clock() if observed_at is None else observed_at,
                scope,
            )

    def query_with_coverage(
        self,
        chain: str,
        to_address: str
    ) -> Tuple[List[ChainTransaction], Set[int]]:
        """
        Snapshot a chain's transactions together with the blocks fully ingested for ``to_address``.

        Both are read under one lock so eviction cannot split them.
        """
        partition = self._partition(chain)
        if partition is None:
            return [], set()
        with partition.lock:
            snapshot = list(partition.transactions.values())
            covered = partition.covered_blocks(to_address)
        snapshot.sort(key=lambda tx: (tx.block_number, tx.position_in_block))
        return snapshot, covered

    def block_transactions(self, chain: str, block_number: int) -> List[ChainTransaction]:
        """Transactions of one block ordered by position."""
        return self.query(chain, TransactionFilter(block_number=block_number))

    def evict_older_than(self, max_age: float, now: Optional[float] = None) -> int:
        """Remove transactions whose age exceeds ``max_age`` seconds."""
        current_time = self._clock() if now is None else now
        with self._partitions_lock:
            partitions = list(self._partitions.items())

        removed = 0
        for chain, partition in partitions:
            with partition.lock:
                expired = [
                    tx for tx in partition.transactions.values()
                    if current_time - tx.observed_at > max_age
                ]
                for tx in expired:
                    del partition.transactions[tx.hash]
                    block = partition.blocks.get(tx.block_number)
                    if block is not None:
                        block.pop(tx.hash, None)
                        if not block:
                            del partition.blocks[tx.block_number]
                    # A block missing any of its transactions is no longer complete
                    partition.ingested.pop(tx.block_number, None)
                stale = [
                    number for number, (ingested_at, _) in partition.ingested.items()
                    if current_time - ingested_at > max_age
                ]
                for number in stale:
                    del partition.ingested[number]
            if expired:
                logger.debug(f"Evicted {len(expired)} transactions from {chain}")
            removed += len(expired)
        return removed

    def count(self, chain: Optional[str] = None) -> int:
        if chain is not None:
            partition = self._partition(chain)
            if partition is None:
                return 0
            with partition.lock:
                return len(partition.transactions)
        with self._partitions_lock:
            partitions = list(self._partitions.values())
        total = 0
        for partition in partitions:
            with partition.lock:
                total += len(partition.transactions)
        return total

    def chains(self) -> List[str]:
        with self._partitions_lock:
            return list(self._partitions.keys())
