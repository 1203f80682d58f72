"""
Probe Orchestrator.

Creates fairness probes, runs them as background tasks under a per-probe
deadline, and exposes the probe/result query API. Distributed runs execute
several independent probes for one event and aggregate their results.
"""
import asyncio
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from ..blockchain_connector.reader import ChainReader
from ..errors import FairnessError, InvalidRequest, SubmissionFailure
from ..fairness.analyzer import AnalysisOptions, FairnessAnalyzer
from ..fairness.models import FairnessAnalysis
from ..mev_detection.chain_monitor import ChainMonitor
from ..mev_detection.event_bus import EventBus, EventType
from ..mev_detection.pattern_detector import MEVPatternDetector
from ..mev_detection.transaction_store import TransactionWindowStore
from ..storage.result_store import ProbeResultStore
from .aggregation import aggregate_probe_results
from .models import (
    AggregatedProbeResult,
    BlockRange,
    ProbeData,
    ProbeRequest,
    ProbeResult,
    ProbeStatus,
    TestTransactionReceipt,
)
from .submitter import TestTransactionSubmitter

logger = logging.getLogger(__name__)


class ProbeOrchestrator:
    """Schedules probes and serves their results."""

    def __init__(
        self,
        chain_reader: ChainReader,
        transaction_store: TransactionWindowStore,
        pattern_detector: MEVPatternDetector,
        analyzer: FairnessAnalyzer,
        result_store: Optional[ProbeResultStore] = None,
        event_bus: Optional[EventBus] = None,
        submitter: Optional[TestTransactionSubmitter] = None,
        chain_monitor: Optional[ChainMonitor] = None,
        probe_timeout: float = 30.0,
        default_lookback_blocks: int = 100,
        max_concurrent_probes: int = 10,
        distributed_worker_count: int = 3,
        distributed_stagger: float = 1.0,
        node_location: str = "us-east-1",
        clock: Callable[[], float] = time.time
    ):
        self.chain_reader = chain_reader
        self.transaction_store = transaction_store
        self.pattern_detector = pattern_detector
        self.analyzer = analyzer
        self.result_store = result_store or ProbeResultStore()
        self.event_bus = event_bus
        self.submitter = submitter
        self.chain_monitor = chain_monitor
        self.probe_timeout = probe_timeout
        self.default_lookback_blocks = default_lookback_blocks
        self.distributed_worker_count = distributed_worker_count
        self.distributed_stagger = distributed_stagger
        self.node_location = node_location
        self._clock = clock

        self._semaphore = asyncio.Semaphore(max_concurrent_probes)
        self._status_lock = threading.Lock()
        self._statuses: Dict[str, ProbeStatus] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

        self.stats = {
            "probes_created": 0,
            "probes_succeeded": 0,
            "probes_failed": 0,
            "distributed_runs": 0,
        }

    # Probe lifecycle

    async def create_probe(self, request: Union[ProbeRequest, Mapping[str, Any]]) -> str:
        """
        Register a probe and schedule its execution.

        Returns the probe id immediately. Malformed requests are recorded as
        failed probes so the outcome is still queryable by id.
        """
        try:
            probe_request = self._coerce_request(request)
        except InvalidRequest as e:
            event_id = str(request.get("event_id", "")) if isinstance(request, Mapping) else ""
            probe_id = self._new_probe_id("probe", event_id)
            logger.warning(f"Rejected probe {probe_id}: {e}")
            await self._finish(probe_id, event_id, None, None, [str(e)], duration_ms=0.0)
            return probe_id

        probe_id = self._new_probe_id("probe", probe_request.event_id)
        self.stats["probes_created"] += 1
        logger.info(f"🔍 Created probe {probe_id} for {probe_request.event_id} on {probe_request.chain.value}")

        task = asyncio.create_task(self._run_probe(probe_id, probe_request), name=probe_id)
        self._tasks[probe_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(probe_id, None))
        return probe_id

    async def wait_for_probe(self, probe_id: str) -> Optional[ProbeResult]:
        """Wait until ``probe_id`` reaches a terminal state and return its result."""
        task = self._tasks.get(probe_id)
        if task is not None:
            await asyncio.shield(task)
        return self.result_store.get_result(probe_id)

    async def _run_probe(self, probe_id: str, request: ProbeRequest) -> ProbeResult:
        started = time.perf_counter()
        errors: List[str] = []
        data: Optional[ProbeData] = None

        try:
            async with self._semaphore:
                self._set_status(probe_id, ProbeStatus.RUNNING)
                started = time.perf_counter()
                try:
                    data = await asyncio.wait_for(
                        self._execute(probe_id, request, errors), timeout=self.probe_timeout
                    )
                except asyncio.TimeoutError:
                    errors.append(f"Probe deadline exceeded after {self.probe_timeout}s")
                except FairnessError as e:
                    errors.append(str(e))
                except Exception as e:
                    logger.exception(f"Unexpected error in probe {probe_id}")
                    errors.append(f"Unexpected error: {e}")
        except asyncio.CancelledError:
            duration_ms = (time.perf_counter() - started) * 1000
            logger.warning(f"Probe {probe_id} cancelled")
            await self._finish(
                probe_id, request.event_id, request.chain.value, None, errors + ["Probe cancelled"], duration_ms
            )
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        return await self._finish(probe_id, request.event_id, request.chain.value, data, errors, duration_ms)

    async def _execute(self, probe_id: str, request: ProbeRequest, errors: List[str]) -> ProbeData:
        chain = request.chain.value
        start_block, end_block = await self.resolve_block_range(request)

        # Snapshot the shared window before any long-running work
        window_transactions, covered_blocks = self.transaction_store.query_with_coverage(
            chain, request.contract_address
        )
        window_patterns = self.pattern_detector.get_patterns(chain, from_block=start_block, to_block=end_block)

        test_transactions: List[TestTransactionReceipt] = []
        if request.probe_config.mempool_monitoring and self.submitter is not None:
            try:
                test_transactions.append(await self.submitter.submit(chain, request.contract_address))
            except SubmissionFailure as e:
                errors.append(str(e))

        config = request.probe_config
        analysis = await self.analyzer.analyze(
            event_id=request.event_id,
            event_type=request.event_type,
            chain=request.chain,
            contract_address=request.contract_address,
            start_block=start_block,
            end_block=end_block,
            window_transactions=window_transactions,
            window_patterns=window_patterns,
            options=AnalysisOptions(
                mev_detection=config.mev_detection,
                bot_detection=config.bot_detection,
                timing_analysis=config.timing_analysis,
            ),
            covered_blocks=covered_blocks,
        )
        if not analysis.evidence.published and analysis.evidence.publish_error:
            errors.append(f"Evidence not published: {analysis.evidence.publish_error}")

        return ProbeData(
            fairness_analysis=analysis,
            test_transactions=test_transactions,
            block_range=BlockRange(start_block=start_block, end_block=end_block),
        )

    async def _finish(
        self,
        probe_id: str,
        event_id: str,
        chain: Optional[str],
        data: Optional[ProbeData],
        errors: List[str],
        duration_ms: float
    ) -> ProbeResult:
        success = data is not None
        result = ProbeResult(
            probe_id=probe_id,
            event_id=event_id,
            success=success,
            data=data,
            errors=errors,
            timestamp=self._clock(),
            duration_ms=duration_ms,
            node_location=self.node_location,
        )
        await self.result_store.save_result(result)
        self._set_status(probe_id, ProbeStatus.SUCCEEDED if success else ProbeStatus.FAILED)

        if success:
            self.stats["probes_succeeded"] += 1
            logger.info(
                f"✅ Probe {probe_id} succeeded in {duration_ms:.0f}ms "
                f"(score {result.score:.1f})"
            )
        else:
            self.stats["probes_failed"] += 1
            logger.info(f"❌ Probe {probe_id} failed: {'; '.join(errors)}")

        if self.event_bus is not None:
            event_type = EventType.PROBE_COMPLETED if success else EventType.PROBE_FAILED
            self.event_bus.publish(event_type, result, chain=chain)
        return result

    # Block range resolution

    async def resolve_block_range(self, request: ProbeRequest) -> Tuple[int, int]:
        """Map the request's time window to blocks, defaulting to the recent lookback."""
        chain = request.chain.value
        current = await self.chain_reader.get_latest_block_number(chain)

        if request.start_time is not None:
            start_block = await self.find_block_by_timestamp(chain, request.start_time, current)
        else:
            start_block = max(0, current - self.default_lookback_blocks)

        if request.end_time is not None:
            end_block = await self.find_block_by_timestamp(chain, request.end_time, current)
        else:
            end_block = current

        return min(start_block, end_block), end_block

    async def find_block_by_timestamp(self, chain: str, target: float, latest: int) -> int:
        """Last block with ``timestamp <= target`` (0 when none), assuming monotonic timestamps."""
        low, high = 0, latest
        found = 0
        while low <= high:
            mid = (low + high) // 2
            block = await self.chain_reader.get_block(chain, mid, include_transactions=False)
            if block.timestamp <= target:
                found = mid
                low = mid + 1
            else:
                high = mid - 1
        return found

    # Distributed execution

    async def execute_distributed_probe(
        self,
        request: Union[ProbeRequest, Mapping[str, Any]],
        worker_count: Optional[int] = None,
        stagger: Optional[float] = None
    ) -> AggregatedProbeResult:
        """
        Run ``worker_count`` independent probes for one event and aggregate them.

        Raises:
            InvalidRequest: If the request is malformed or the worker count is not positive.
        """
        probe_request = self._coerce_request(request)
        worker_count = self.distributed_worker_count if worker_count is None else worker_count
        stagger = self.distributed_stagger if stagger is None else stagger
        if worker_count < 1:
            raise InvalidRequest(f"worker_count must be at least 1, got {worker_count}")

        self.stats["distributed_runs"] += 1
        logger.info(f"🌐 Starting distributed probe for {probe_request.event_id} with {worker_count} workers")

        async def worker(index: int) -> ProbeResult:
            if index and stagger > 0:
                await asyncio.sleep(index * stagger)
            probe_id = self._new_probe_id("distributed", probe_request.event_id, index)
            self.stats["probes_created"] += 1
            return await self._run_probe(probe_id, probe_request)

        results = await asyncio.gather(*(worker(i) for i in range(worker_count)))
        aggregate = aggregate_probe_results(
            probe_request.event_id, results, self.analyzer.score_thresholds
        )

        if aggregate.success:
            logger.info(
                f"🌐 Distributed probe for {probe_request.event_id}: "
                f"{aggregate.successful_probes}/{worker_count} succeeded, "
                f"average {aggregate.average_score:.1f}, consensus {aggregate.consensus:.3f}"
            )
        else:
            logger.info(f"🌐 Distributed probe for {probe_request.event_id}: all {worker_count} workers failed")
        return aggregate

    # Query API

    async def get_probe_result(self, probe_id: str) -> Optional[ProbeResult]:
        """Result of ``probe_id``, falling back to the Redis mirror."""
        return await self.result_store.fetch_result(probe_id)

    def get_probe_status(self, probe_id: str) -> Optional[ProbeStatus]:
        with self._status_lock:
            return self._statuses.get(probe_id)

    async def get_fairness_analysis(self, event_id: str) -> Optional[FairnessAnalysis]:
        return await self.result_store.fetch_analysis(event_id)

    def get_active_probes(self) -> List[str]:
        """Ids of probes that have not reached a terminal state."""
        with self._status_lock:
            return [pid for pid, status in self._statuses.items() if not status.is_terminal]

    def get_probe_results(self) -> List[ProbeResult]:
        return self.result_store.results()

    def get_mempool_stats(self) -> Dict[str, Any]:
        chains = set(self.transaction_store.chains())
        if self.chain_monitor is not None:
            chains.update(self.chain_monitor.chains)

        stats: Dict[str, Any] = {
            "transaction_count": self.transaction_store.count(),
            "pattern_count": self.pattern_detector.count(),
            "chains": sorted(chains),
            "is_monitoring": self.chain_monitor.is_running if self.chain_monitor else False,
        }
        if self.chain_monitor is not None:
            stats["monitor"] = self.chain_monitor.get_stats()["chains"]
        return stats

    async def shutdown(self) -> None:
        """Cancel probes still running."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} running probes")

    # Helpers

    def _coerce_request(self, request: Union[ProbeRequest, Mapping[str, Any]]) -> ProbeRequest:
        if isinstance(request, ProbeRequest):
            return request
        try:
            return ProbeRequest.model_validate(request)
        except ValidationError as e:
            raise InvalidRequest(f"Invalid probe request: {e}") from e

    def _set_status(self, probe_id: str, status: ProbeStatus) -> None:
        with self._status_lock:
            self._statuses[probe_id] = status

    def _new_probe_id(self, prefix: str, event_id: str, worker: Optional[int] = None) -> str:
        millis = int(self._clock() * 1000)
        base = f"{prefix}_{event_id}_{millis}" if worker is None else f"{prefix}_{event_id}_{worker}_{millis}"
        with self._status_lock:
            probe_id = base
            suffix = 1
            while probe_id in self._statuses:
                probe_id = f"{base}_{suffix}"
                suffix += 1
            # Reserve the id before releasing the lock
            self._statuses[probe_id] = ProbeStatus.CREATED
        return probe_id
