"""Unit tests for the transaction window store."""
import threading

from conftest import CONTRACT, make_tx

from crypto_fairness.mev_detection.transaction_store import TransactionFilter, TransactionWindowStore


class TestTransactionWindowStore:
    """Test insert, query and eviction behavior."""

    def setup_method(self):
        self.store = TransactionWindowStore()

    def test_insert_is_idempotent(self):
        """Inserting the same hash twice leaves one entry."""
        tx = make_tx("0xaa")

        assert self.store.insert("ethereum", tx) is True
        assert self.store.insert("ethereum", tx) is False

        assert self.store.count("ethereum") == 1
        assert [t.hash for t in self.store.query("ethereum")] == ["0xaa"]

    def test_same_hash_on_different_chains(self):
        """Chains are independent partitions."""
        tx = make_tx("0xaa")

        assert self.store.insert("ethereum", tx)
        assert self.store.insert("polygon", tx)
        assert self.store.count() == 2
        assert sorted(self.store.chains()) == ["ethereum", "polygon"]

    def test_query_returns_copy(self):
        """Mutating a query result does not touch the store."""
        self.store.insert("ethereum", make_tx("0xaa"))

        snapshot = self.store.query("ethereum")
        snapshot.clear()

        assert self.store.count("ethereum") == 1

    def test_query_orders_by_block_and_position(self):
        """Results are sorted by block then position."""
        self.store.insert("ethereum", make_tx("0x03", block_number=101, position=0))
        self.store.insert("ethereum", make_tx("0x02", block_number=100, position=5))
        self.store.insert("ethereum", make_tx("0x01", block_number=100, position=1))

        assert [t.hash for t in self.store.query("ethereum")] == ["0x01", "0x02", "0x03"]

    def test_query_with_filter(self):
        """Filters restrict by block range and recipient."""
        other = "0x" + "d" * 40
        self.store.insert("ethereum", make_tx("0x01", block_number=99))
        self.store.insert("ethereum", make_tx("0x02", block_number=100))
        self.store.insert("ethereum", make_tx("0x03", block_number=100, to=other, position=1))

        in_range = self.store.query("ethereum", TransactionFilter(from_block=100, to_block=100))
        assert {t.hash for t in in_range} == {"0x02", "0x03"}

        to_other = self.store.query("ethereum", TransactionFilter(to_address=other.upper().replace("0X", "0x")))
        assert [t.hash for t in to_other] == ["0x03"]

    def test_unknown_chain_is_empty(self):
        """Querying a chain with no data returns nothing."""
        assert self.store.query("base") == []
        assert self.store.count("base") == 0
        assert self.store.get("base", "0xaa") is None

    def test_eviction_window_boundaries(self):
        """A transaction is kept just inside the window and evicted just after it."""
        retention = 300.0
        inserted_at = 1_000.0
        self.store.insert("ethereum", make_tx("0xaa", observed_at=inserted_at))

        removed = self.store.evict_older_than(retention, now=inserted_at + retention - 1)
        assert removed == 0
        assert [t.hash for t in self.store.query("ethereum")] == ["0xaa"]

        removed = self.store.evict_older_than(retention, now=inserted_at + retention + 1)
        assert removed == 1
        assert self.store.query("ethereum") == []
        assert self.store.block_transactions("ethereum", 100) == []

    def test_eviction_uses_injected_clock(self, clock):
        """Without an explicit time the store's clock is used."""
        store = TransactionWindowStore(clock=clock)
        store.insert("ethereum", make_tx("0xaa", observed_at=clock.now))

        clock.advance(61)
        assert store.evict_older_than(60) == 1

    def test_snapshot_survives_eviction(self):
        """A query taken before eviction still holds its transactions."""
        self.store.insert("ethereum", make_tx("0xaa", observed_at=0.0))
        snapshot = self.store.query("ethereum")

        self.store.evict_older_than(10, now=1_000.0)

        assert [t.hash for t in snapshot] == ["0xaa"]

    def test_block_coverage_follows_recipient_scope(self):
        """An unscoped block covers every recipient, a scoped one only its recipients."""
        watched = "0x" + "a" * 40
        other = "0x" + "c" * 40
        self.store.insert("ethereum", make_tx("0xaa", to=watched, block_number=100))
        self.store.mark_block_ingested("ethereum", 100, [watched.upper().replace("0X", "0x")], observed_at=1_000.0)
        self.store.mark_block_ingested("ethereum", 101, None, observed_at=1_000.0)
        self.store.mark_block_ingested("ethereum", 102, [], observed_at=1_000.0)

        snapshot, covered = self.store.query_with_coverage("ethereum", watched)
        assert [t.hash for t in snapshot] == ["0xaa"]
        assert covered == {100, 101, 102}

        _, covered = self.store.query_with_coverage("ethereum", other)
        assert covered == {101, 102}

        assert self.store.query_with_coverage("base", watched) == ([], set())

    def test_eviction_drops_block_coverage(self):
        """Losing a transaction or aging out uncovers its block."""
        self.store.insert("ethereum", make_tx("0xaa", block_number=100, observed_at=0.0))
        self.store.insert("ethereum", make_tx("0xbb", block_number=101, observed_at=900.0))
        self.store.mark_block_ingested("ethereum", 100, observed_at=900.0)
        self.store.mark_block_ingested("ethereum", 101, observed_at=900.0)
        self.store.mark_block_ingested("ethereum", 102, observed_at=0.0)

        self.store.evict_older_than(300, now=1_000.0)

        snapshot, covered = self.store.query_with_coverage("ethereum", CONTRACT)
        assert [t.hash for t in snapshot] == ["0xbb"]
        assert covered == {101}

    def test_concurrent_inserts(self):
        """Parallel writers never produce duplicate entries."""
        txs = [make_tx(f"0x{i:04x}", position=i) for i in range(200)]

        def writer():
            for tx in txs:
                self.store.insert("ethereum", tx)

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert self.store.count("ethereum") == 200
