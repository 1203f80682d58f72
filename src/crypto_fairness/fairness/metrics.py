"""Inequality and timing statistics over event transactions."""
import math
from typing import Dict, Iterable, List, Optional, Sequence

from ..mev_detection.models import ChainTransaction
from .models import ConcentrationMetrics, ScoreCategory, TimingMetrics


def wallet_transaction_counts(transactions: Iterable[ChainTransaction]) -> Dict[str, int]:
    """Transactions per sending wallet."""
    counts: Dict[str, int] = {}
    for tx in transactions:
        counts[tx.from_address] = counts.get(tx.from_address, 0) + 1
    return counts


def gini_coefficient(counts: Sequence[int]) -> float:
    """Gini coefficient of a count distribution, 0 for an empty or all-zero one."""
    if not counts:
        return 0.0
    ordered = sorted(counts)
    n = len(ordered)
    total = sum(ordered)
    if total == 0:
        return 0.0

    weighted = sum((2 * (i + 1) - n - 1) * c for i, c in enumerate(ordered))
    return weighted / (n * total)


def top_share_percent(counts: Sequence[int], fraction: float) -> float:
    """Share (in percent) of all counts held by the top ``floor(n * fraction)`` wallets."""
    total = sum(counts)
    if total == 0:
        return 0.0
    k = math.floor(len(counts) * fraction)
    top = sorted(counts, reverse=True)[:k]
    return sum(top) / total * 100


def herfindahl_index(counts: Sequence[int]) -> float:
    """Sum of squared shares."""
    total = sum(counts)
    if total == 0:
        return 0.0
    return sum((c / total) ** 2 for c in counts)


def concentration_metrics(transactions: Iterable[ChainTransaction]) -> ConcentrationMetrics:
    counts = list(wallet_transaction_counts(transactions).values())
    return ConcentrationMetrics(
        gini_coefficient=gini_coefficient(counts),
        top10_percent=top_share_percent(counts, 0.1),
        top1_percent=top_share_percent(counts, 0.01),
        herfindahl_index=herfindahl_index(counts),
    )


def timestamp_gaps(transactions: Iterable[ChainTransaction]) -> List[float]:
    """Gaps between consecutive sorted transaction timestamps."""
    timestamps = sorted(tx.timestamp for tx in transactions)
    return [later - earlier for earlier, later in zip(timestamps, timestamps[1:])]


def timing_metrics(transactions: Iterable[ChainTransaction]) -> TimingMetrics:
    gaps = timestamp_gaps(transactions)
    if not gaps:
        return TimingMetrics()

    ordered = sorted(gaps)
    middle = len(ordered) // 2
    if len(ordered) % 2:
        median = ordered[middle]
    else:
        median = (ordered[middle - 1] + ordered[middle]) / 2

    return TimingMetrics(
        average_confirmation_time=sum(gaps) / len(gaps),
        median_confirmation_time=median,
        fastest_confirmation=ordered[0],
        slowest_confirmation=ordered[-1],
    )


DEFAULT_SCORE_THRESHOLDS = {"excellent": 90.0, "good": 75.0, "fair": 60.0}


def score_category(score: float, thresholds: Optional[Dict[str, float]] = None) -> ScoreCategory:
    """Bucket a score using ``excellent``/``good``/``fair`` lower bounds."""
    thresholds = thresholds or DEFAULT_SCORE_THRESHOLDS
    if score >= thresholds["excellent"]:
        return ScoreCategory.EXCELLENT
    if score >= thresholds["good"]:
        return ScoreCategory.GOOD
    if score >= thresholds["fair"]:
        return ScoreCategory.FAIR
    return ScoreCategory.POOR
