"""
Probes Module.

Fairness probe requests, test transaction submission, probe orchestration and
the aggregation of distributed probe runs.
"""
from .models import (
    AggregatedProbeResult,
    BlockRange,
    ProbeConfig,
    ProbeData,
    ProbeRequest,
    ProbeResult,
    ProbeStatus,
    TestTransactionReceipt
)
from .aggregation import (
    aggregate_probe_results,
    calculate_consensus
)
from .submitter import (
    TestTransactionSubmitter,
    Web3TestTransactionSubmitter
)
from .orchestrator import ProbeOrchestrator

__all__ = [
    # Models
    "AggregatedProbeResult",
    "BlockRange",
    "ProbeConfig",
    "ProbeData",
    "ProbeRequest",
    "ProbeResult",
    "ProbeStatus",
    "TestTransactionReceipt",

    # Aggregation
    "aggregate_probe_results",
    "calculate_consensus",

    # Submission
    "TestTransactionSubmitter",
    "Web3TestTransactionSubmitter",

    # Orchestration
    "ProbeOrchestrator"
]
