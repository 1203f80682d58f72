"""Unit tests for the fairness analyzer."""
import pytest

from conftest import CONTRACT, FakeChainReader, make_tx

from crypto_fairness.errors import DataUnavailable, InvalidRequest, PublishFailure
from crypto_fairness.fairness.analyzer import AnalysisOptions, FairnessAnalyzer
from crypto_fairness.fairness.evidence import InMemoryEvidenceSink
from crypto_fairness.fairness.models import (
    MEVMetrics,
    ScoreCategory,
    Severity,
    Violation,
    ViolationEvidence,
    ViolationImpact,
    ViolationType,
)
from crypto_fairness.mev_detection.chain_monitor import ChainMonitor
from crypto_fairness.mev_detection.event_bus import EventBus
from crypto_fairness.mev_detection.models import Block, MEVPattern, MEVPatternType
from crypto_fairness.mev_detection.pattern_detector import MEVPatternDetector
from crypto_fairness.mev_detection.transaction_store import TransactionWindowStore

BOT = "0x" + "b" * 40


def wallet(i: int) -> str:
    return f"0x{i:040x}"


def spaced_transactions(count: int, spacing: float = 12.0, block_number: int = 100):
    """One transaction per wallet, distinct nonces, evenly spaced in time."""
    return [
        make_tx(
            f"0x{i:064x}",
            from_address=wallet(i + 1),
            block_number=block_number,
            position=i,
            nonce=i,
            block_timestamp=1_000.0 + i * spacing,
        )
        for i in range(count)
    ]


def sandwich_pattern(block_number: int = 100, suffix: str = "") -> MEVPattern:
    txs = (
        make_tx(f"0xa{suffix}", from_address=wallet(1), block_number=block_number, position=0),
        make_tx(f"0xb{suffix}", from_address=wallet(2), block_number=block_number, position=1),
        make_tx(f"0xc{suffix}", from_address=wallet(1), block_number=block_number, position=2),
    )
    return MEVPattern(
        pattern_id=f"sandwich_0xa{suffix}_0xb{suffix}_0xc{suffix}",
        pattern_type=MEVPatternType.SANDWICH,
        transactions=txs,
        block_number=block_number,
        confidence=0.8,
        detected_at=900.0,
    )


def front_run_pattern(block_number: int = 100) -> MEVPattern:
    txs = (
        make_tx("0xf", from_address=wallet(3), block_number=block_number, position=0, gas_price=50),
        make_tx("0xe", from_address=wallet(4), block_number=block_number, position=3, gas_price=10),
    )
    return MEVPattern(
        pattern_id="frontrun_0xf_0xe",
        pattern_type=MEVPatternType.FRONT_RUN,
        transactions=txs,
        block_number=block_number,
        confidence=0.7,
        detected_at=900.0,
    )


class TestFairnessAnalyzer:
    """Test violation detection, scoring and evidence."""

    def setup_method(self):
        self.sink = InMemoryEvidenceSink()
        self.analyzer = FairnessAnalyzer(evidence_sink=self.sink, clock=lambda: 2_000.0)

    async def analyze(self, transactions, patterns=(), start_block=100, end_block=100, **kwargs):
        return await self.analyzer.analyze(
            event_id="evt-1",
            event_type="nft_mint",
            chain="ethereum",
            contract_address=CONTRACT.upper().replace("0X", "0x"),
            start_block=start_block,
            end_block=end_block,
            window_transactions=transactions,
            window_patterns=patterns,
            **kwargs
        )

    @pytest.mark.asyncio
    async def test_bot_concentration_high_severity(self):
        """One wallet with 15 of 100 transactions is a high-severity concentration."""
        txs = spaced_transactions(85)
        txs += [
            make_tx(f"0xbb{i:02d}", from_address=BOT, position=100 + i, nonce=1_000 + i,
                    block_timestamp=5_000.0 + i * 12)
            for i in range(15)
        ]

        analysis = await self.analyze(txs)

        bot = [v for v in analysis.violations if v.type == ViolationType.BOT_CONCENTRATION]
        assert len(bot) == 1
        assert bot[0].severity == Severity.HIGH
        assert bot[0].confidence == 0.8
        assert bot[0].evidence.wallet_addresses == [BOT]
        assert len(bot[0].evidence.transaction_hashes) == 15
        assert analysis.total_transactions == 100
        assert analysis.total_participants == 86

    @pytest.mark.asyncio
    async def test_medium_severity_when_top_share_below_ten_percent(self):
        """Eleven transactions out of 200 exceeds the count threshold only."""
        txs = spaced_transactions(189)
        txs += [
            make_tx(f"0xbb{i:02d}", from_address=BOT, position=300 + i, nonce=1_000 + i,
                    block_timestamp=9_000.0 + i * 12)
            for i in range(11)
        ]

        analysis = await self.analyze(txs)

        bot = [v for v in analysis.violations if v.type == ViolationType.BOT_CONCENTRATION]
        assert bot[0].severity == Severity.MEDIUM

    @pytest.mark.asyncio
    async def test_even_distribution_has_no_bot_violation(self):
        """100 wallets with one transaction each is not concentrated."""
        analysis = await self.analyze(spaced_transactions(100))

        assert analysis.violations == []
        assert analysis.wallet_clusters == []
        assert analysis.concentration_metrics.gini_coefficient == pytest.approx(0.0)
        assert analysis.overall_score == 100.0
        assert analysis.score_category == ScoreCategory.EXCELLENT

    @pytest.mark.asyncio
    async def test_only_contract_transactions_in_range_count(self):
        """Transactions to other contracts or outside the block range are ignored."""
        txs = spaced_transactions(5)
        txs.append(make_tx("0xother", to="0x" + "d" * 40, position=50))
        txs.append(make_tx("0xlater", block_number=105, position=0))

        analysis = await self.analyze(txs)

        assert analysis.total_transactions == 5
        assert analysis.contract_address == CONTRACT

    @pytest.mark.asyncio
    async def test_mev_violations_and_metrics(self):
        """Sandwich and front-run patterns become violations and penalties."""
        patterns = [sandwich_pattern(), front_run_pattern(), sandwich_pattern(block_number=150, suffix="x")]

        analysis = await self.analyze(spaced_transactions(100), patterns)

        kinds = sorted(v.type.value for v in analysis.violations)
        assert kinds == ["mev_front_running", "sandwich_attack"]
        assert analysis.mev_metrics.sandwich_attacks == 1
        assert analysis.mev_metrics.front_running_txs == 1
        # 100 - 20*0.8 - 10*0.7 - 20 - 10
        assert analysis.overall_score == pytest.approx(47.0)
        assert analysis.score_category == ScoreCategory.POOR

        sandwich = next(v for v in analysis.violations if v.type == ViolationType.SANDWICH_ATTACK)
        assert sandwich.severity == Severity.HIGH
        assert sandwich.confidence == 0.8
        assert sandwich.evidence.transaction_hashes == ["0xa", "0xb", "0xc"]
        assert sandwich.evidence.block_numbers == [100]

    @pytest.mark.asyncio
    async def test_mev_detection_toggle(self):
        """Disabling MEV detection drops MEV violations and penalties."""
        analysis = await self.analyze(
            spaced_transactions(100),
            [sandwich_pattern()],
            options=AnalysisOptions(mev_detection=False),
        )

        assert analysis.violations == []
        assert analysis.mev_metrics.sandwich_attacks == 0
        assert analysis.overall_score == 100.0

    @pytest.mark.asyncio
    async def test_timing_manipulation(self):
        """Mostly sub-second gaps are flagged when timing analysis is on."""
        txs = spaced_transactions(100, spacing=0.5)

        analysis = await self.analyze(txs)
        timing = [v for v in analysis.violations if v.type == ViolationType.TIMING_MANIPULATION]
        assert len(timing) == 1
        assert timing[0].severity == Severity.MEDIUM
        assert timing[0].confidence == 0.7
        assert analysis.timing_metrics.average_confirmation_time == pytest.approx(0.5)

        disabled = await self.analyze(txs, options=AnalysisOptions(timing_analysis=False))
        assert disabled.violations == []
        assert disabled.timing_metrics.average_confirmation_time == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_timing_needs_ten_transactions(self):
        analysis = await self.analyze(spaced_transactions(9, spacing=0.1))

        assert not any(v.type == ViolationType.TIMING_MANIPULATION for v in analysis.violations)

    @pytest.mark.asyncio
    async def test_wallet_clusters(self):
        """Wallets sharing nonce and gas price are clustered."""
        txs = [
            make_tx("0x1", from_address=wallet(1), nonce=7, gas_price=33, position=0, block_timestamp=10.0),
            make_tx("0x2", from_address=wallet(2), nonce=7, gas_price=33, position=1, block_timestamp=20.0),
            make_tx("0x3", from_address=wallet(3), nonce=8, gas_price=33, position=2, block_timestamp=30.0),
        ]

        analysis = await self.analyze(txs)

        assert len(analysis.wallet_clusters) == 1
        cluster = analysis.wallet_clusters[0]
        assert cluster.cluster_id == "cluster_7_33"
        assert cluster.wallet_addresses == [wallet(1), wallet(2)]
        assert cluster.similarity_score == 0.8
        assert set(cluster.behavioral_signals) == {"similar_nonce", "similar_gas_price"}
        assert (cluster.first_seen, cluster.last_seen) == (10.0, 20.0)

        no_bots = await self.analyze(txs, options=AnalysisOptions(bot_detection=False))
        assert no_bots.wallet_clusters == []

    @pytest.mark.asyncio
    async def test_wallet_joins_one_cluster(self):
        """A wallet already clustered is not repeated in a later cluster."""
        txs = [
            make_tx("0x1", from_address=wallet(1), nonce=1, gas_price=5, position=0),
            make_tx("0x2", from_address=wallet(2), nonce=1, gas_price=5, position=1),
            make_tx("0x3", from_address=wallet(1), nonce=2, gas_price=5, position=2),
            make_tx("0x4", from_address=wallet(3), nonce=2, gas_price=5, position=3),
        ]

        analysis = await self.analyze(txs)

        assert [c.wallet_addresses for c in analysis.wallet_clusters] == [[wallet(1), wallet(2)]]

    @pytest.mark.asyncio
    async def test_score_is_clamped(self):
        """Heavy penalties never push the score below zero."""
        patterns = [sandwich_pattern(suffix=str(i)) for i in range(10)]

        analysis = await self.analyze(spaced_transactions(100), patterns)

        assert analysis.overall_score == 0.0
        assert analysis.score_category == ScoreCategory.POOR

    @pytest.mark.asyncio
    async def test_analysis_is_deterministic(self):
        """Identical inputs give identical hashes and score."""
        txs = spaced_transactions(20, spacing=0.5)
        patterns = [sandwich_pattern()]

        first = await self.analyze(txs, patterns)
        second = await self.analyze(list(txs), list(patterns))

        assert first.evidence.manifest_hash == second.evidence.manifest_hash
        assert first.evidence.raw_data_hash == second.evidence.raw_data_hash
        assert first.overall_score == second.overall_score
        assert [v.violation_id for v in first.violations] == [v.violation_id for v in second.violations]

    @pytest.mark.asyncio
    async def test_evidence_published(self):
        analysis = await self.analyze(spaced_transactions(3))

        assert analysis.evidence.published is True
        assert self.sink.get(analysis.evidence.content_uri) is not None
        assert self.sink.get(analysis.evidence.notebook_uri) is not None

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_analysis(self):
        class OfflineSink:
            async def publish(self, data: bytes) -> str:
                raise PublishFailure("ipfs unreachable")

        analyzer = FairnessAnalyzer(evidence_sink=OfflineSink())
        analysis = await analyzer.analyze(
            "evt-1", "airdrop", "polygon", CONTRACT, 100, 100, spaced_transactions(3), []
        )

        assert analysis.evidence.published is False
        assert analysis.evidence.content_uri == ""
        assert analysis.evidence.publish_error == "ipfs unreachable"
        assert analysis.evidence.manifest_hash.startswith("0x")

    @pytest.mark.asyncio
    async def test_fetches_blocks_missing_from_window(self):
        """Blocks not reported as ingested are read from the chain reader."""
        fetched = Block(
            number=101,
            timestamp=1_212.0,
            transactions=(
                make_tx("0xf1", from_address=wallet(50), block_number=101, position=0, block_timestamp=1_212.0),
                make_tx("0xf2", from_address=wallet(51), to="0x" + "d" * 40, block_number=101, position=1),
            ),
        )
        reader = FakeChainReader({101: fetched}, latest=102)
        analyzer = FairnessAnalyzer(chain_reader=reader, evidence_sink=self.sink)

        analysis = await analyzer.analyze(
            "evt-1", "ido", "ethereum", CONTRACT, 100, 102, spaced_transactions(2), [],
            covered_blocks=[100]
        )

        assert sorted(reader.block_requests) == [101, 102]
        assert analysis.total_transactions == 3

    @pytest.mark.asyncio
    async def test_partial_snapshot_block_is_refetched(self):
        """A block present in the snapshot but not marked ingested is still read."""
        block = Block(number=100, timestamp=1_200.0, transactions=tuple(spaced_transactions(3)))
        reader = FakeChainReader({100: block}, latest=100)
        analyzer = FairnessAnalyzer(chain_reader=reader, evidence_sink=self.sink)

        analysis = await analyzer.analyze(
            "evt-1", "ido", "ethereum", CONTRACT, 100, 100, spaced_transactions(1), []
        )

        assert reader.block_requests == [100]
        assert analysis.total_transactions == 3

    @pytest.mark.asyncio
    async def test_watch_filtered_block_is_refetched_for_other_contract(self):
        """A monitor watching another address leaves the event contract's transactions to be fetched."""
        watched = "0x" + "a" * 40
        block = Block(
            number=100,
            timestamp=1_200.0,
            transactions=(
                make_tx("0x01", from_address=wallet(1), to=watched, position=0),
                make_tx("0x02", from_address=wallet(2), position=1),
                make_tx("0x03", from_address=wallet(3), position=2),
            ),
        )
        reader = FakeChainReader({100: block}, latest=100)
        store = TransactionWindowStore()
        monitor = ChainMonitor(
            chain_reader=reader,
            transaction_store=store,
            pattern_detector=MEVPatternDetector(store),
            event_bus=EventBus(),
            chains=["ethereum"],
            watch_addresses={watched},
        )
        await monitor.poll_once("ethereum")
        reader.block_requests.clear()

        transactions, covered = store.query_with_coverage("ethereum", CONTRACT)
        analyzer = FairnessAnalyzer(chain_reader=reader, evidence_sink=self.sink)
        analysis = await analyzer.analyze(
            "evt-1", "ido", "ethereum", CONTRACT, 100, 100, transactions, [], covered_blocks=covered
        )

        assert covered == set()
        assert reader.block_requests == [100]
        assert analysis.total_transactions == 2

        _, watched_covered = store.query_with_coverage("ethereum", watched)
        assert watched_covered == {100}

    @pytest.mark.asyncio
    async def test_unavailable_block_raises(self):
        reader = FakeChainReader({}, latest=105, fail_blocks={103})
        analyzer = FairnessAnalyzer(chain_reader=reader, evidence_sink=self.sink)

        with pytest.raises(DataUnavailable):
            await analyzer.analyze("evt-1", "ido", "ethereum", CONTRACT, 100, 105, [], [])

    @pytest.mark.asyncio
    async def test_inverted_range_is_invalid(self):
        with pytest.raises(InvalidRequest):
            await self.analyze([], start_block=10, end_block=5)

    @pytest.mark.asyncio
    async def test_empty_window(self):
        analysis = await self.analyze([])

        assert analysis.total_participants == 0
        assert analysis.overall_score == 100.0
        assert analysis.concentration_metrics.herfindahl_index == 0.0


class TestCalculateScore:
    """Test the scoring formula in isolation."""

    def violation(self, severity: Severity, confidence: float) -> Violation:
        return Violation(
            violation_id="v",
            type=ViolationType.BOT_CONCENTRATION,
            severity=severity,
            description="test",
            evidence=ViolationEvidence(timestamp=0),
            impact=ViolationImpact(),
            confidence=confidence,
        )

    def test_severity_weights(self):
        analyzer = FairnessAnalyzer()
        violations = [self.violation(Severity.CRITICAL, 1.0), self.violation(Severity.LOW, 0.5)]

        assert analyzer.calculate_score(violations, 0.0, MEVMetrics()) == pytest.approx(67.5)

    @pytest.mark.parametrize("gini,expected", [(0.5, 100.0), (0.51, 90.0), (0.7, 90.0), (0.71, 85.0)])
    def test_gini_penalty(self, gini, expected):
        assert FairnessAnalyzer().calculate_score([], gini, MEVMetrics()) == pytest.approx(expected)
