"""
Fairness Analyzer.

Scores one distribution event window. The analyzer works on a snapshot of the
window transactions and MEV patterns it is handed; blocks of the event range
that the caller does not report as fully ingested are fetched from the chain reader.
"""
import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..blockchain_connector.reader import ChainReader
from ..errors import DataUnavailable, InvalidRequest
from ..mev_detection.models import Chain, ChainTransaction, MEVPattern, MEVPatternType
from .evidence import EvidenceSink, InMemoryEvidenceSink, build_manifest, build_raw_bundle, publish_evidence
from .metrics import (
    DEFAULT_SCORE_THRESHOLDS,
    concentration_metrics,
    score_category,
    timestamp_gaps,
    timing_metrics,
    wallet_transaction_counts,
)
from .models import (
    SEVERITY_WEIGHTS,
    DistributionEventType,
    FairnessAnalysis,
    MEVMetrics,
    Severity,
    Violation,
    ViolationEvidence,
    ViolationImpact,
    ViolationType,
    WalletCluster,
)

logger = logging.getLogger(__name__)

# Bot concentration thresholds
SUSPICIOUS_SHARE = 0.05
SUSPICIOUS_COUNT = 10
HIGH_SEVERITY_SHARE = 0.10
BOT_CONFIDENCE = 0.8

# Timing manipulation thresholds
SHORT_GAP_SECONDS = 1.0
SHORT_GAP_RATIO = 0.3
MIN_TIMING_TRANSACTIONS = 10
TIMING_CONFIDENCE = 0.7

CLUSTER_SIMILARITY = 0.8
CLUSTER_SIGNALS = ["similar_gas_price", "similar_nonce"]


@dataclass(frozen=True)
class AnalysisOptions:
    """Which detections a run performs."""
    mev_detection: bool = True
    bot_detection: bool = True
    timing_analysis: bool = True


class FairnessAnalyzer:
    """Produces a FairnessAnalysis for an event window."""

    def __init__(
        self,
        chain_reader: Optional[ChainReader] = None,
        evidence_sink: Optional[EvidenceSink] = None,
        score_thresholds: Optional[Dict[str, float]] = None,
        block_fetch_concurrency: int = 10,
        clock: Callable[[], float] = time.time
    ):
        self.chain_reader = chain_reader
        self.evidence_sink = evidence_sink or InMemoryEvidenceSink()
        self.score_thresholds = score_thresholds or dict(DEFAULT_SCORE_THRESHOLDS)
        self.block_fetch_concurrency = max(1, block_fetch_concurrency)
        self._clock = clock

    async def analyze(
        self,
        event_id: str,
        event_type: DistributionEventType,
        chain: Chain,
        contract_address: str,
        start_block: int,
        end_block: int,
        window_transactions: Iterable[ChainTransaction],
        window_patterns: Iterable[MEVPattern],
        options: Optional[AnalysisOptions] = None,
        covered_blocks: Optional[Iterable[int]] = None
    ) -> FairnessAnalysis:
        """
        Analyze the event window.

        Args:
            window_transactions: Snapshot of observed transactions for the chain.
            window_patterns: Snapshot of detected MEV patterns for the chain.
            options: Detection toggles, all enabled by default.
            covered_blocks: Blocks whose transactions to the contract are all in
                the snapshot. Every other block in the range is read from the
                chain reader.

        Raises:
            InvalidRequest: If the block range is inverted.
            DataUnavailable: If a block missing from the snapshot cannot be fetched.
        """
        if start_block < 0 or end_block < start_block:
            raise InvalidRequest(f"Invalid block range [{start_block}, {end_block}]")

        options = options or AnalysisOptions()
        chain = Chain(chain)
        contract = contract_address.lower()
        snapshot = list(window_transactions)
        patterns = [p for p in window_patterns if start_block <= p.block_number <= end_block]

        transactions = await self._gather_event_transactions(
            chain.value, contract, start_block, end_block, snapshot, set(covered_blocks or ())
        )
        logger.debug(
            f"Analyzing {event_id}: {len(transactions)} transactions, "
            f"{len(patterns)} patterns in blocks {start_block}-{end_block}"
        )

        if not options.mev_detection:
            patterns = []

        violations: List[Violation] = []
        clusters: List[WalletCluster] = []

        if options.bot_detection:
            bot_violation = self.detect_bot_concentration(event_id, transactions)
            if bot_violation:
                violations.append(bot_violation)

        violations.extend(self.detect_mev_violations(patterns))

        if options.timing_analysis:
            timing_violation = self.detect_timing_manipulation(event_id, transactions)
            if timing_violation:
                violations.append(timing_violation)

        if options.bot_detection:
            clusters = self.cluster_wallets(transactions)

        concentration = concentration_metrics(transactions)
        mev = MEVMetrics(
            sandwich_attacks=sum(1 for p in patterns if p.pattern_type == MEVPatternType.SANDWICH),
            front_running_txs=sum(1 for p in patterns if p.pattern_type == MEVPatternType.FRONT_RUN),
            back_running_txs=sum(1 for p in patterns if p.pattern_type == MEVPatternType.BACK_RUN),
            private_relay_usage=0,
        )
        timing = timing_metrics(transactions)

        overall_score = self.calculate_score(violations, concentration.gini_coefficient, mev)

        manifest = build_manifest(
            event_id=event_id,
            timestamp=max((tx.timestamp for tx in transactions), default=0),
            transaction_count=len(transactions),
            violation_count=len(violations),
            mev_pattern_count=len(patterns),
        )
        evidence = await publish_evidence(
            self.evidence_sink, manifest, build_raw_bundle(transactions, patterns)
        )

        analysis = FairnessAnalysis(
            event_id=event_id,
            event_type=event_type,
            chain=chain,
            contract_address=contract,
            start_block=start_block,
            end_block=end_block,
            total_participants=len({tx.from_address for tx in transactions}),
            total_transactions=len(transactions),
            analysis_timestamp=self._clock(),
            overall_score=overall_score,
            score_category=score_category(overall_score, self.score_thresholds),
            violations=violations,
            wallet_clusters=clusters,
            concentration_metrics=concentration,
            mev_metrics=mev,
            timing_metrics=timing,
            evidence=evidence,
        )

        logger.info(
            f"📊 Fairness analysis for {event_id}: score {overall_score:.1f} "
            f"({analysis.score_category.value}), {len(violations)} violations"
        )
        return analysis

    async def _gather_event_transactions(
        self,
        chain: str,
        contract: str,
        start_block: int,
        end_block: int,
        snapshot: Sequence[ChainTransaction],
        covered: Set[int]
    ) -> List[ChainTransaction]:
        """Transactions sent to ``contract`` in the range, fetching uncovered blocks."""
        by_hash: Dict[str, ChainTransaction] = {}
        for tx in snapshot:
            if start_block <= tx.block_number <= end_block and tx.to.lower() == contract:
                by_hash[tx.hash] = tx

        missing = [b for b in range(start_block, end_block + 1) if b not in covered]
        if missing and self.chain_reader is not None:
            for tx in await self._fetch_blocks(chain, missing):
                if tx.to.lower() == contract:
                    by_hash.setdefault(tx.hash, tx)

        return sorted(by_hash.values(), key=lambda tx: (tx.block_number, tx.position_in_block))

    async def _fetch_blocks(self, chain: str, block_numbers: List[int]) -> List[ChainTransaction]:
        semaphore = asyncio.Semaphore(self.block_fetch_concurrency)

        async def fetch(block_number: int) -> Tuple[ChainTransaction, ...]:
            async with semaphore:
                try:
                    block = await self.chain_reader.get_block(chain, block_number, include_transactions=True)
                except DataUnavailable:
                    raise
                except Exception as e:
                    raise DataUnavailable(
                        f"Failed to fetch block {block_number} on {chain}: {e}",
                        chain=chain,
                        block_number=block_number
                    ) from e
                return block.transactions

        logger.debug(f"Fetching {len(block_numbers)} blocks on {chain} not covered by the window")
        results = await asyncio.gather(*(fetch(b) for b in block_numbers))
        return [tx for block_txs in results for tx in block_txs]

    def detect_bot_concentration(
        self,
        event_id: str,
        transactions: Sequence[ChainTransaction]
    ) -> Optional[Violation]:
        """One violation when any wallet exceeds the share or count threshold."""
        total = len(transactions)
        if total == 0:
            return None

        counts = wallet_transaction_counts(transactions)
        suspicious = sorted(
            wallet for wallet, count in counts.items()
            if count / total > SUSPICIOUS_SHARE or count > SUSPICIOUS_COUNT
        )
        if not suspicious:
            return None

        top_count = max(counts.values())
        severity = Severity.HIGH if top_count / total > HIGH_SEVERITY_SHARE else Severity.MEDIUM
        flagged = set(suspicious)
        flagged_txs = [tx for tx in transactions if tx.from_address in flagged]

        return Violation(
            violation_id=f"{ViolationType.BOT_CONCENTRATION.value}_{event_id}",
            type=ViolationType.BOT_CONCENTRATION,
            severity=severity,
            description=(
                f"Detected {len(suspicious)} wallets with suspicious transaction patterns. "
                f"Top wallet has {top_count} transactions ({top_count / total * 100:.2f}%)"
            ),
            evidence=_evidence_for(flagged_txs, wallets=suspicious),
            impact=ViolationImpact(affected_wallets=len(suspicious)),
            confidence=BOT_CONFIDENCE,
        )

    def detect_mev_violations(self, patterns: Sequence[MEVPattern]) -> List[Violation]:
        """Sandwich and front-run patterns become violations with the pattern's confidence."""
        violations = []
        for pattern in patterns:
            if pattern.pattern_type == MEVPatternType.SANDWICH:
                violation_type = ViolationType.SANDWICH_ATTACK
                severity = Severity.HIGH
                description = f"Detected sandwich attack with {len(pattern.transactions)} transactions"
            elif pattern.pattern_type == MEVPatternType.FRONT_RUN:
                violation_type = ViolationType.MEV_FRONT_RUNNING
                severity = Severity.MEDIUM
                description = "Detected front-running attack"
            else:
                continue

            violations.append(Violation(
                violation_id=f"{violation_type.value}_{pattern.pattern_id}",
                type=violation_type,
                severity=severity,
                description=description,
                evidence=ViolationEvidence(
                    transaction_hashes=pattern.transaction_hashes,
                    wallet_addresses=[tx.from_address for tx in pattern.transactions],
                    block_numbers=[pattern.block_number],
                    timestamp=pattern.detected_at,
                ),
                impact=ViolationImpact(affected_wallets=1, estimated_loss=str(pattern.estimated_profit)),
                confidence=pattern.confidence,
            ))
        return violations

    def detect_timing_manipulation(
        self,
        event_id: str,
        transactions: Sequence[ChainTransaction]
    ) -> Optional[Violation]:
        """Flags windows where too many consecutive gaps are under a second."""
        if len(transactions) < MIN_TIMING_TRANSACTIONS:
            return None

        gaps = timestamp_gaps(transactions)
        short_gaps = [gap for gap in gaps if gap < SHORT_GAP_SECONDS]
        if len(short_gaps) <= len(gaps) * SHORT_GAP_RATIO:
            return None

        return Violation(
            violation_id=f"{ViolationType.TIMING_MANIPULATION.value}_{event_id}",
            type=ViolationType.TIMING_MANIPULATION,
            severity=Severity.MEDIUM,
            description=(
                f"Detected suspicious timing patterns with {len(short_gaps)} "
                f"transactions within 1 second of each other"
            ),
            evidence=_evidence_for(transactions),
            impact=ViolationImpact(affected_wallets=len({tx.from_address for tx in transactions})),
            confidence=TIMING_CONFIDENCE,
        )

    def cluster_wallets(self, transactions: Sequence[ChainTransaction]) -> List[WalletCluster]:
        """
        Group wallets sharing a ``(nonce, gas_price)`` pair.

        Groups are visited in key order and a wallet joins at most one cluster.
        """
        groups: Dict[Tuple[int, int], List[ChainTransaction]] = defaultdict(list)
        for tx in transactions:
            groups[(tx.nonce, tx.gas_price)].append(tx)

        clusters = []
        assigned = set()
        for (nonce, gas_price), group in sorted(groups.items()):
            members = [tx for tx in group if tx.from_address not in assigned]
            wallets = {tx.from_address for tx in members}
            if len(wallets) < 2:
                continue

            assigned.update(wallets)
            clusters.append(WalletCluster(
                cluster_id=f"cluster_{nonce}_{gas_price}",
                wallet_addresses=sorted(wallets),
                similarity_score=CLUSTER_SIMILARITY,
                behavioral_signals=list(CLUSTER_SIGNALS),
                first_seen=min(tx.timestamp for tx in members),
                last_seen=max(tx.timestamp for tx in members),
            ))
        return clusters

    def calculate_score(
        self,
        violations: Sequence[Violation],
        gini: float,
        mev: MEVMetrics
    ) -> float:
        score = 100.0

        for violation in violations:
            score -= SEVERITY_WEIGHTS[violation.severity] * violation.confidence

        if gini > 0.7:
            score -= 15
        elif gini > 0.5:
            score -= 10

        if mev.sandwich_attacks > 0:
            score -= 20
        if mev.front_running_txs > 0:
            score -= 10

        return max(0.0, min(100.0, score))


def _evidence_for(
    transactions: Sequence[ChainTransaction],
    wallets: Optional[List[str]] = None
) -> ViolationEvidence:
    return ViolationEvidence(
        transaction_hashes=[tx.hash for tx in transactions],
        wallet_addresses=wallets if wallets is not None else sorted({tx.from_address for tx in transactions}),
        block_numbers=sorted({tx.block_number for tx in transactions}),
        timestamp=max((tx.timestamp for tx in transactions), default=0),
    )
