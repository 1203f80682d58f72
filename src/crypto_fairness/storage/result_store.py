"""
Probe result and fairness analysis storage.

Results live in memory keyed by probe id, analyses keyed by event id. When a
Redis client is supplied every write is mirrored as JSON and reads fall back
to Redis for entries this process has not seen.
"""
import logging
import threading
from typing import Dict, List, Optional

import redis.asyncio as redis
from pydantic import ValidationError

from ..fairness.models import FairnessAnalysis
from ..probes.models import ProbeResult

logger = logging.getLogger(__name__)

PROBE_RESULT_PREFIX = "probe_result:"
FAIRNESS_ANALYSIS_PREFIX = "fairness_analysis:"


class ProbeResultStore:
    """Thread-safe store for probe results and the latest analysis per event."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, ttl_seconds: Optional[int] = None):
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._results: Dict[str, ProbeResult] = {}
        self._analyses: Dict[str, FairnessAnalysis] = {}

    async def save_result(self, result: ProbeResult) -> None:
        with self._lock:
            self._results[result.probe_id] = result
            analysis = result.data.fairness_analysis if result.data else None
            if analysis is not None:
                self._analyses[analysis.event_id] = analysis

        await self._mirror(f"{PROBE_RESULT_PREFIX}{result.probe_id}", result.model_dump_json())
        if analysis is not None:
            await self._mirror(f"{FAIRNESS_ANALYSIS_PREFIX}{analysis.event_id}", analysis.model_dump_json())

    def get_result(self, probe_id: str) -> Optional[ProbeResult]:
        with self._lock:
            return self._results.get(probe_id)

    def get_analysis(self, event_id: str) -> Optional[FairnessAnalysis]:
        with self._lock:
            return self._analyses.get(event_id)

    def results(self) -> List[ProbeResult]:
        with self._lock:
            return list(self._results.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    async def fetch_result(self, probe_id: str) -> Optional[ProbeResult]:
        """Memory first, then the Redis mirror."""
        result = self.get_result(probe_id)
        if result is not None:
            return result

        payload = await self._load(f"{PROBE_RESULT_PREFIX}{probe_id}")
        if payload is None:
            return None
        try:
            return ProbeResult.model_validate_json(payload)
        except ValidationError as e:
            logger.error(f"Corrupt probe result {probe_id} in Redis: {e}")
            return None

    async def fetch_analysis(self, event_id: str) -> Optional[FairnessAnalysis]:
        """Memory first, then the Redis mirror."""
        analysis = self.get_analysis(event_id)
        if analysis is not None:
            return analysis

        payload = await self._load(f"{FAIRNESS_ANALYSIS_PREFIX}{event_id}")
        if payload is None:
            return None
        try:
            return FairnessAnalysis.model_validate_json(payload)
        except ValidationError as e:
            logger.error(f"Corrupt fairness analysis {event_id} in Redis: {e}")
            return None

    async def _mirror(self, key: str, payload: str) -> None:
        if self.redis_client is None:
            return
        try:
            if self.ttl_seconds:
                await self.redis_client.setex(key, self.ttl_seconds, payload)
            else:
                await self.redis_client.set(key, payload)
        except redis.RedisError as e:
            logger.error(f"Failed to mirror {key} to Redis: {e}")

    async def _load(self, key: str) -> Optional[str]:
        if self.redis_client is None:
            return None
        try:
            return await self.redis_client.get(key)
        except redis.RedisError as e:
            logger.error(f"Failed to read {key} from Redis: {e}")
            return None
