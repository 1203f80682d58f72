"""Unit tests for MEV pattern detection."""
from unittest.mock import patch

from conftest import make_tx

from crypto_fairness.mev_detection.models import MEVPatternType
from crypto_fairness.mev_detection.pattern_detector import MEVPatternDetector, is_front_run, is_sandwich
from crypto_fairness.mev_detection.transaction_store import TransactionWindowStore

X = "0x" + "a" * 40
Y = "0x" + "b" * 40
W1 = "0x" + "1" * 40
W2 = "0x" + "2" * 40


class TestPatternPredicates:
    """Test the structural predicates."""

    def test_is_sandwich(self):
        a = make_tx("0xa", from_address=W1, to=X, position=0)
        b = make_tx("0xb", from_address=W2, to=X, position=1)
        c = make_tx("0xc", from_address=W1, to=X, position=2)

        assert is_sandwich(a, b, c)

    def test_sandwich_needs_distinct_victim(self):
        a = make_tx("0xa", from_address=W1, to=X, position=0)
        b = make_tx("0xb", from_address=W1, to=X, position=1)
        c = make_tx("0xc", from_address=W1, to=X, position=2)

        assert not is_sandwich(a, b, c)

    def test_is_front_run(self):
        original = make_tx("0xe", to=X, data="0x1234", gas_price=10, position=3)
        front_runner = make_tx("0xf", to=X, data="0x1234", gas_price=50, position=1)

        assert is_front_run(original, front_runner)
        assert not is_front_run(front_runner, original)

    def test_front_run_requires_same_call(self):
        original = make_tx("0xe", to=X, data="0x1234", gas_price=10, position=3)
        other_call = make_tx("0xf", to=X, data="0x9999", gas_price=50, position=1)

        assert not is_front_run(original, other_call)


class TestMEVPatternDetector:
    """Test detection driven by newly observed transactions."""

    def setup_method(self):
        self.store = TransactionWindowStore()
        self.detector = MEVPatternDetector(self.store, clock=lambda: 500.0)

    def observe(self, tx, chain="ethereum"):
        self.store.insert(chain, tx)
        return self.detector.on_transaction(chain, tx)

    def test_sandwich_detected(self):
        """A(W1) B(W2) C(W1) to the same target form a sandwich."""
        a = make_tx("0xa", from_address=W1, to=X, position=0)
        b = make_tx("0xb", from_address=W2, to=X, position=1)
        c = make_tx("0xc", from_address=W1, to=X, position=2)

        assert self.observe(a) == []
        assert self.observe(b) == []
        patterns = self.observe(c)

        assert len(patterns) == 1
        pattern = patterns[0]
        assert pattern.pattern_type == MEVPatternType.SANDWICH
        assert pattern.transaction_hashes == ["0xa", "0xb", "0xc"]
        assert pattern.confidence == 0.8
        assert pattern.block_number == 100
        assert pattern.detected_at == 500.0

    def test_no_sandwich_for_different_targets(self):
        """Two transactions to different contracts never form a sandwich."""
        self.observe(make_tx("0xa", from_address=W1, to=X, position=0))
        patterns = self.observe(make_tx("0xb", from_address=W2, to=Y, position=1))

        assert patterns == []
        assert self.detector.get_patterns("ethereum") == []

    def test_rescan_does_not_duplicate(self):
        """Later transactions in the block do not re-emit known patterns."""
        self.observe(make_tx("0xa", from_address=W1, to=X, position=0))
        self.observe(make_tx("0xb", from_address=W2, to=X, position=1))
        self.observe(make_tx("0xc", from_address=W1, to=X, position=2))
        self.observe(make_tx("0xd", from_address=W2, to=Y, position=3))

        assert self.detector.count("ethereum") == 1

    def test_front_run_detected_when_original_arrives_later(self):
        """The copied call with higher gas included first is a front-run."""
        front_runner = make_tx("0xf", from_address=W2, to=X, data="0xabcd", gas_price=90, position=0)
        original = make_tx("0xe", from_address=W1, to=X, data="0xabcd", gas_price=30, position=5)

        self.observe(front_runner)
        patterns = self.observe(original)

        assert len(patterns) == 1
        assert patterns[0].pattern_type == MEVPatternType.FRONT_RUN
        assert patterns[0].transaction_hashes == ["0xf", "0xe"]
        assert patterns[0].confidence == 0.7

    def test_patterns_only_reference_one_block(self):
        """Transactions in other blocks are never combined."""
        self.observe(make_tx("0xa", from_address=W1, to=X, position=0, block_number=100))
        self.observe(make_tx("0xb", from_address=W2, to=X, position=1, block_number=101))
        patterns = self.observe(make_tx("0xc", from_address=W1, to=X, position=2, block_number=102))

        assert patterns == []

    def test_detection_failure_is_isolated(self):
        """An error on one transaction is counted and the next one is still processed."""
        a = make_tx("0xa", from_address=W1, to=X, position=0)
        b = make_tx("0xb", from_address=W2, to=X, position=1)
        c = make_tx("0xc", from_address=W1, to=X, position=2)
        self.observe(a)

        with patch.object(self.store, "block_transactions", side_effect=RuntimeError("boom")):
            assert self.observe(b) == []

        assert self.detector.stats["detection_failures"] == 1
        patterns = self.observe(c)
        assert len(patterns) == 1

    def test_get_patterns_filters(self):
        """Patterns can be filtered by chain and block range."""
        for chain in ("ethereum", "polygon"):
            self.observe(make_tx("0xa", from_address=W1, to=X, position=0), chain)
            self.observe(make_tx("0xb", from_address=W2, to=X, position=1), chain)
            self.observe(make_tx("0xc", from_address=W1, to=X, position=2), chain)

        assert self.detector.count() == 2
        assert len(self.detector.get_patterns("polygon")) == 1
        assert self.detector.get_patterns("ethereum", from_block=101) == []
        assert len(self.detector.get_patterns("ethereum", from_block=100, to_block=100)) == 1

    def test_evict_older_than(self):
        """Patterns are evicted by detection age."""
        self.observe(make_tx("0xa", from_address=W1, to=X, position=0))
        self.observe(make_tx("0xb", from_address=W2, to=X, position=1))
        self.observe(make_tx("0xc", from_address=W1, to=X, position=2))

        assert self.detector.evict_older_than(600, now=1_000.0) == 0
        assert self.detector.evict_older_than(600, now=1_101.0) == 1
        assert self.detector.count() == 0

    def test_pattern_store_is_bounded(self):
        """Oldest patterns are dropped past the per-chain cap."""
        detector = MEVPatternDetector(self.store, max_patterns_per_chain=1)
        for block in (100, 101):
            txs = [
                make_tx(f"0xa{block}", from_address=W1, to=X, position=0, block_number=block),
                make_tx(f"0xb{block}", from_address=W2, to=X, position=1, block_number=block),
                make_tx(f"0xc{block}", from_address=W1, to=X, position=2, block_number=block),
            ]
            for tx in txs:
                self.store.insert("ethereum", tx)
                detector.on_transaction("ethereum", tx)

        patterns = detector.get_patterns("ethereum")
        assert len(patterns) == 1
        assert patterns[0].block_number == 101
