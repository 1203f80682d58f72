"""
MEV Detection Module.

This module provides per-chain block polling, the time-bounded transaction
window, and sandwich / front-running pattern detection over block orderings.
"""
from .models import (
    Block,
    Chain,
    ChainTransaction,
    MEVPattern,
    MEVPatternType,
    CHAIN_IDS
)
from .transaction_store import (
    TransactionFilter,
    TransactionWindowStore
)
from .pattern_detector import (
    MEVPatternDetector,
    is_front_run,
    is_sandwich
)
from .event_bus import (
    Event,
    EventBus,
    EventType,
    Subscription
)
from .chain_monitor import (
    ChainMonitor,
    MonitorState
)

__all__ = [
    # Models
    "Block",
    "Chain",
    "ChainTransaction",
    "MEVPattern",
    "MEVPatternType",
    "CHAIN_IDS",

    # Transaction window
    "TransactionFilter",
    "TransactionWindowStore",

    # Pattern detection
    "MEVPatternDetector",
    "is_front_run",
    "is_sandwich",

    # Notifications
    "Event",
    "EventBus",
    "EventType",
    "Subscription",

    # Monitoring
    "ChainMonitor",
    "MonitorState"
]
