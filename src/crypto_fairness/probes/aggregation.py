"""Aggregation of independent probe results for the same event."""
import statistics
from typing import Dict, List, Optional, Sequence, Tuple

from ..fairness.metrics import score_category
from ..fairness.models import Violation, WalletCluster
from .models import AggregatedProbeResult, ProbeResult


def violation_key(violation: Violation) -> Tuple[str, Tuple[str, ...]]:
    return violation.type.value, tuple(sorted(violation.evidence.transaction_hashes))


def cluster_key(cluster: WalletCluster) -> Tuple[str, ...]:
    return tuple(sorted(cluster.wallet_addresses))


def merge_violations(results: Sequence[ProbeResult]) -> List[Violation]:
    """Union of violations, first occurrence wins per (type, sorted hashes)."""
    merged: Dict[Tuple[str, Tuple[str, ...]], Violation] = {}
    for result in results:
        if result.data is None:
            continue
        for violation in result.data.fairness_analysis.violations:
            merged.setdefault(violation_key(violation), violation)
    return list(merged.values())


def merge_clusters(results: Sequence[ProbeResult]) -> List[WalletCluster]:
    """Union of wallet clusters, first occurrence wins per wallet set."""
    merged: Dict[Tuple[str, ...], WalletCluster] = {}
    for result in results:
        if result.data is None:
            continue
        for cluster in result.data.fairness_analysis.wallet_clusters:
            merged.setdefault(cluster_key(cluster), cluster)
    return list(merged.values())


def calculate_consensus(scores: Sequence[float]) -> float:
    """``1 - stddev/100`` floored at 0; a single score is full consensus."""
    if len(scores) <= 1:
        return 1.0
    return max(0.0, 1.0 - statistics.pstdev(scores) / 100)


def aggregate_probe_results(
    event_id: str,
    results: Sequence[ProbeResult],
    score_thresholds: Optional[Dict[str, float]] = None
) -> AggregatedProbeResult:
    """
    Combine worker results.

    The aggregate succeeds when at least one worker succeeded; errors from every
    worker are carried along either way.
    """
    successful = [r for r in results if r.success and r.data is not None]
    errors = [error for r in results for error in r.errors]

    if not successful:
        return AggregatedProbeResult(
            event_id=event_id,
            success=False,
            probe_count=len(results),
            successful_probes=0,
            consensus=0.0,
            individual_results=list(results),
            errors=errors or ["All probes failed"],
        )

    scores = [r.data.fairness_analysis.overall_score for r in successful]
    average = sum(scores) / len(scores)

    return AggregatedProbeResult(
        event_id=event_id,
        success=True,
        average_score=average,
        score_category=score_category(average, score_thresholds),
        violations=merge_violations(successful),
        wallet_clusters=merge_clusters(successful),
        probe_count=len(results),
        successful_probes=len(successful),
        consensus=calculate_consensus(scores),
        individual_results=list(results),
        errors=errors,
    )
