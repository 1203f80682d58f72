"""
MEV Pattern Detector.

Scans the transactions sharing a block with each newly observed transaction
for sandwich and front-running signatures. Detection is structural only:
ordering inside the block stands in for mempool arrival order, which is not
observed, and confidence values are fixed heuristics rather than calibrated
probabilities. Profit is not computed and is reported as zero.
"""
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional

from ..errors import DetectionFailure
from .models import ChainTransaction, MEVPattern, MEVPatternType
from .transaction_store import TransactionWindowStore

logger = logging.getLogger(__name__)

SANDWICH_CONFIDENCE = 0.8
FRONT_RUN_CONFIDENCE = 0.7


def is_sandwich(a: ChainTransaction, b: ChainTransaction, c: ChainTransaction) -> bool:
    """Bracketing transactions hit the same target around a different sender."""
    return (
        a.to == c.to
        and a.from_address != b.from_address
        and b.from_address != c.from_address
        and a.position_in_block < b.position_in_block < c.position_in_block
    )


def is_front_run(original: ChainTransaction, front_runner: ChainTransaction) -> bool:
    """Same call, higher gas price, included ahead of the original."""
    return (
        original.to == front_runner.to
        and original.data == front_runner.data
        and front_runner.gas_price > original.gas_price
        and front_runner.position_in_block < original.position_in_block
    )


class MEVPatternDetector:
    """Detects MEV patterns per chain and keeps them for a bounded time."""

    def __init__(
        self,
        transaction_store: TransactionWindowStore,
        max_patterns_per_chain: int = 10000,
        clock: Callable[[], float] = time.time
    ):
        self.transaction_store = transaction_store
        self.max_patterns_per_chain = max_patterns_per_chain
        self._clock = clock

        self._patterns: Dict[str, "OrderedDict[str, MEVPattern]"] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        self.stats = {
            "transactions_scanned": 0,
            "patterns_detected": 0,
            "detection_failures": 0,
        }

    def _chain_lock(self, chain: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(chain)
            if lock is None:
                lock = threading.Lock()
                self._locks[chain] = lock
                self._patterns[chain] = OrderedDict()
            return lock

    def on_transaction(self, chain: str, tx: ChainTransaction) -> List[MEVPattern]:
        """
        Re-scan the block of ``tx`` and record any new patterns.

        Errors are logged and swallowed so one bad transaction never stops
        processing of the ones that follow.
        """
        self.stats["transactions_scanned"] += 1
        try:
            candidates = self._scan_block(chain, tx)
        except Exception as e:
            failure = DetectionFailure(f"Pattern detection failed: {e}", tx.hash)
            self.stats["detection_failures"] += 1
            logger.error(f"Error detecting MEV patterns for {tx.hash} on {chain}: {failure}")
            return []

        new_patterns = []
        lock = self._chain_lock(chain)
        with lock:
            patterns = self._patterns[chain]
            for pattern in candidates:
                if pattern.pattern_id in patterns:
                    continue
                patterns[pattern.pattern_id] = pattern
                new_patterns.append(pattern)
            while len(patterns) > self.max_patterns_per_chain:
                patterns.popitem(last=False)

        if new_patterns:
            self.stats["patterns_detected"] += len(new_patterns)
            for pattern in new_patterns:
                logger.info(
                    f"Detected {pattern.pattern_type.value} pattern on {chain} "
                    f"in block {pattern.block_number} ({len(pattern.transactions)} txs)"
                )
        return new_patterns

    def _scan_block(self, chain: str, tx: ChainTransaction) -> List[MEVPattern]:
        block_txs = self.transaction_store.block_transactions(chain, tx.block_number)
        if not any(t.hash == tx.hash for t in block_txs):
            block_txs.append(tx)
            block_txs.sort(key=lambda t: t.position_in_block)

        detected_at = self._clock()
        return (
            self._detect_sandwiches(block_txs, detected_at)
            + self._detect_front_runs(block_txs, tx, detected_at)
        )

    def _detect_sandwiches(
        self, block_txs: List[ChainTransaction], detected_at: float
    ) -> List[MEVPattern]:
        patterns = []
        for i in range(len(block_txs) - 2):
            a, b, c = block_txs[i], block_txs[i + 1], block_txs[i + 2]
            if is_sandwich(a, b, c):
                patterns.append(MEVPattern(
                    pattern_id=f"sandwich_{a.hash}_{b.hash}_{c.hash}",
                    pattern_type=MEVPatternType.SANDWICH,
                    transactions=(a, b, c),
                    block_number=a.block_number,
                    confidence=SANDWICH_CONFIDENCE,
                    detected_at=detected_at,
                ))
        return patterns

    def _detect_front_runs(
        self,
        block_txs: List[ChainTransaction],
        tx: ChainTransaction,
        detected_at: float
    ) -> List[MEVPattern]:
        patterns = []
        for other in block_txs:
            if other.hash == tx.hash:
                continue
            for original, front_runner in ((other, tx), (tx, other)):
                if is_front_run(original, front_runner):
                    patterns.append(MEVPattern(
                        pattern_id=f"frontrun_{front_runner.hash}_{original.hash}",
                        pattern_type=MEVPatternType.FRONT_RUN,
                        transactions=(front_runner, original),
                        block_number=tx.block_number,
                        confidence=FRONT_RUN_CONFIDENCE,
                        detected_at=detected_at,
                    ))
        return patterns

    def get_patterns(
        self,
        chain: Optional[str] = None,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None
    ) -> List[MEVPattern]:
        """Snapshot of detected patterns, optionally restricted to a chain / block range."""
        with self._locks_guard:
            chains = [chain] if chain is not None else list(self._patterns.keys())

        snapshot: List[MEVPattern] = []
        for name in chains:
            if name not in self._patterns:
                continue
            with self._chain_lock(name):
                snapshot.extend(self._patterns[name].values())

        if from_block is not None:
            snapshot = [p for p in snapshot if p.block_number >= from_block]
        if to_block is not None:
            snapshot = [p for p in snapshot if p.block_number <= to_block]
        return snapshot

    def evict_older_than(self, max_age: float, now: Optional[float] = None) -> int:
        """Remove patterns detected more than ``max_age`` seconds ago."""
        current_time = self._clock() if now is None else now
        with self._locks_guard:
            chains = list(self._patterns.keys())

        removed = 0
        for chain in chains:
            with self._chain_lock(chain):
                patterns = self._patterns[chain]
                expired = [
                    pattern_id for pattern_id, pattern in patterns.items()
                    if current_time - pattern.detected_at > max_age
                ]
                for pattern_id in expired:
                    del patterns[pattern_id]
            removed += len(expired)

        if removed:
            logger.debug(f"Evicted {removed} MEV patterns")
        return removed

    def count(self, chain: Optional[str] = None) -> int:
        return len(self.get_patterns(chain))
