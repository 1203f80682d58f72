"""
Chain Monitor.

Runs one polling task per configured chain that pulls new blocks from the
chain reader, records their transactions in the window store, feeds the MEV
pattern detector and publishes notifications. A separate cleanup task evicts
aged transactions and patterns.
"""
import asyncio
import dataclasses
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from ..blockchain_connector.reader import ChainReader
from .event_bus import EventBus, EventType
from .models import Block, ChainTransaction
from .pattern_detector import MEVPatternDetector
from .transaction_store import TransactionWindowStore

logger = logging.getLogger(__name__)


class MonitorState(str, Enum):
    """Lifecycle state of a chain polling loop."""
    STOPPED = "stopped"
    RUNNING = "running"


class ChainMonitor:
    """Polls chains for new blocks and feeds the window store and detector."""

    def __init__(
        self,
        chain_reader: ChainReader,
        transaction_store: TransactionWindowStore,
        pattern_detector: MEVPatternDetector,
        event_bus: EventBus,
        chains: Iterable[str],
        poll_interval: float = 5.0,
        cleanup_interval: float = 60.0,
        transaction_retention: float = 300.0,
        pattern_retention: float = 600.0,
        max_blocks_per_poll: int = 5,
        watch_addresses: Optional[Set[str]] = None,
        mev_detection_enabled: bool = True,
        clock: Callable[[], float] = time.time
    ):
        self.chain_reader = chain_reader
        self.transaction_store = transaction_store
        self.pattern_detector = pattern_detector
        self.event_bus = event_bus
        self.chains: List[str] = list(dict.fromkeys(chains))
        self.poll_interval = poll_interval
        self.cleanup_interval = cleanup_interval
        self.transaction_retention = transaction_retention
        self.pattern_retention = pattern_retention
        self.max_blocks_per_poll = max_blocks_per_poll
        self.watch_addresses = {a.lower() for a in (watch_addresses or set())}
        self.mev_detection_enabled = mev_detection_enabled
        self._clock = clock

        self.states: Dict[str, MonitorState] = {chain: MonitorState.STOPPED for chain in self.chains}
        self.last_block_processed: Dict[str, Optional[int]] = {chain: None for chain in self.chains}
        self._poll_tasks: Dict[str, asyncio.Task] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

        self.stats = {
            chain: {"polls": 0, "poll_errors": 0, "transactions_observed": 0, "patterns_detected": 0}
            for chain in self.chains
        }

    @property
    def is_running(self) -> bool:
        return any(state == MonitorState.RUNNING for state in self.states.values())

    async def start(self) -> None:
        """Start one polling task per chain plus the cleanup task."""
        if self.is_running:
            logger.warning("Chain monitor already running")
            return

        for chain in self.chains:
            self.states[chain] = MonitorState.RUNNING
            self._poll_tasks[chain] = asyncio.create_task(
                self._poll_loop(chain), name=f"chain-monitor-{chain}"
            )
            logger.info(f"Started monitoring {chain} every {self.poll_interval}s")

        self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="chain-monitor-cleanup")

    async def stop(self) -> None:
        """Cancel all polling and cleanup tasks. Calling it again is a no-op."""
        tasks = list(self._poll_tasks.values())
        if self._cleanup_task is not None:
            tasks.append(self._cleanup_task)

        if not tasks:
            return

        logger.info("Stopping chain monitor")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._poll_tasks.clear()
        self._cleanup_task = None
        for chain in self.chains:
            self.states[chain] = MonitorState.STOPPED
        logger.info("Chain monitor stopped")

    async def _poll_loop(self, chain: str) -> None:
        while True:
            try:
                await self.poll_once(chain)
            except Exception as e:
                self.stats[chain]["poll_errors"] += 1
                logger.error(f"Error polling {chain}: {e}")
            await asyncio.sleep(self.poll_interval)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.cleanup_once()
            except Exception as e:
                logger.error(f"Cleanup error: {e}")

    async def poll_once(self, chain: str) -> int:
        """Fetch blocks not yet processed for ``chain``. Returns transactions observed."""
        self.stats[chain]["polls"] += 1
        latest = await self.chain_reader.get_latest_block_number(chain)
        last = self.last_block_processed.get(chain)

        start = latest if last is None else last + 1
        if start > latest:
            return 0
        start = max(start, latest - self.max_blocks_per_poll + 1)

        observed = 0
        for block_number in range(start, latest + 1):
            block = await self.chain_reader.get_block(chain, block_number, include_transactions=True)
            observed += self.process_block(chain, block)
            self.last_block_processed[chain] = block_number

        if observed:
            logger.debug(f"Observed {observed} transactions on {chain} up to block {latest}")
        return observed

    def process_block(self, chain: str, block: Block) -> int:
        observed = 0
        for tx in block.transactions:
            if self.process_transaction(chain, tx):
                observed += 1
        self.transaction_store.mark_block_ingested(
            chain, block.number, self.watch_addresses or None, observed_at=self._clock()
        )
        return observed

    def process_transaction(self, chain: str, tx: ChainTransaction) -> bool:
        """Record one transaction. Returns False when filtered out or already known."""
        if self.watch_addresses and tx.to.lower() not in self.watch_addresses:
            return False

        tx = dataclasses.replace(tx, observed_at=self._clock())
        if not self.transaction_store.insert(chain, tx):
            return False

        patterns = []
        if self.mev_detection_enabled:
            patterns = self.pattern_detector.on_transaction(chain, tx)

        chain_stats = self.stats.setdefault(
            chain, {"polls": 0, "poll_errors": 0, "transactions_observed": 0, "patterns_detected": 0}
        )
        chain_stats["transactions_observed"] += 1
        chain_stats["patterns_detected"] += len(patterns)

        self.event_bus.publish(EventType.TRANSACTION_OBSERVED, tx, chain=chain)
        for pattern in patterns:
            self.event_bus.publish(EventType.PATTERN_DETECTED, pattern, chain=chain)
        return True

    def cleanup_once(self) -> Dict[str, int]:
        removed_transactions = self.transaction_store.evict_older_than(self.transaction_retention)
        removed_patterns = self.pattern_detector.evict_older_than(self.pattern_retention)
        if removed_transactions or removed_patterns:
            logger.debug(
                f"Cleaned up {removed_transactions} transactions and {removed_patterns} patterns"
            )
        return {"transactions": removed_transactions, "patterns": removed_patterns}

    def get_stats(self) -> Dict[str, Any]:
        return {
            "is_monitoring": self.is_running,
            "chains": {
                chain: {
                    "state": self.states.get(chain, MonitorState.STOPPED).value,
                    "last_block_processed": self.last_block_processed.get(chain),
                    **self.stats.get(chain, {}),
                }
                for chain in self.chains
            },
        }
