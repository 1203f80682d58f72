"""
Publish/subscribe channel for monitor and probe notifications.

Every subscriber owns a queue; publishing fans an event out to all current
subscribers independently of registration order.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of published events."""
    TRANSACTION_OBSERVED = "transaction_observed"
    PATTERN_DETECTED = "pattern_detected"
    PROBE_COMPLETED = "probe_completed"
    PROBE_FAILED = "probe_failed"


@dataclass
class Event:
    """A single notification."""
    event_type: EventType
    chain: Optional[str]
    payload: Any
    timestamp: float = field(default_factory=time.time)


class Subscription:
    """Queue-backed consumer of bus events."""

    def __init__(self, bus: "EventBus", event_types: Optional[Set[EventType]], max_size: int):
        self._bus = bus
        self.event_types = event_types
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self.dropped = 0

    def wants(self, event: Event) -> bool:
        return self.event_types is None or event.event_type in self.event_types

    def deliver(self, event: Event) -> None:
        if self.queue.full():
            # Oldest event is discarded so a slow consumer cannot stall the monitor
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(event)

    async def get(self, timeout: Optional[float] = None) -> Event:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def get_nowait(self) -> Event:
        return self.queue.get_nowait()

    def pending(self) -> int:
        return self.queue.qsize()

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Event:
        return await self.queue.get()


class EventBus:
    """Fan-out of events to all subscribers."""

    def __init__(self, default_queue_size: int = 10000):
        self.default_queue_size = default_queue_size
        self._subscriptions: List[Subscription] = []
        self.stats: Dict[str, int] = {"published": 0}

    def subscribe(
        self,
        event_types: Optional[Set[EventType]] = None,
        max_size: Optional[int] = None
    ) -> Subscription:
        subscription = Subscription(self, event_types, max_size or self.default_queue_size)
        self._subscriptions.append(subscription)
        logger.debug(f"Added subscription for {event_types or 'all'} events")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event_type: EventType, payload: Any, chain: Optional[str] = None) -> Event:
        event = Event(event_type=event_type, chain=chain, payload=payload)
        self.stats["published"] += 1
        for subscription in list(self._subscriptions):
            if subscription.wants(event):
                subscription.deliver(event)
        return event

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)
