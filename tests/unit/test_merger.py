"""
Unit Tests - Upsert Merger
"""
from concurrent.futures import ThreadPoolExecutor

import pytest

from orderflat.ingestion.merger import (
    KeyedOrderStore,
    MergeAction,
    merge,
    merge_batch,
    partition_for,
)
from orderflat.transformation.normalizers import normalize


def _order(order_id, items, customer_id="C1", **extra):
    raw = {
        "order_id": order_id,
        "customer": {"customer_id": customer_id},
        "order_items": [{"product_id": p, "price": price, "seller_id": "S1"} for p, price in items],
    }
    raw.update(extra)
    return normalize(raw)


class TestMerge:
    """Tests for merge()"""

    def test_insert_then_replace(self, canonical_store):
        """First merge inserts, a later one with the same key replaces"""
        first = merge(_order("O1", [("P1", 10)]), canonical_store)
        second = merge(_order("O1", [("P2", 20)]), canonical_store)

        assert first.action == MergeAction.INSERT
        assert first.inserted
        assert second.action == MergeAction.REPLACE
        assert second.previous.order_items[0].product_id == "P1"
        assert len(canonical_store) == 1

    def test_replace_is_wholesale(self, canonical_store):
        """No field of the first record survives a replace"""
        merge(
            _order(
                "O2",
                [("P1", 10), ("P2", 20)],
                customer_id="C1",
                order_status="shipped",
                campaign_details={"coupon_code": "SALE", "discount": 3},
            ),
            canonical_store,
        )
        incoming = _order("O2", [("P9", 99)], customer_id="C7")
        merge(incoming, canonical_store)

        stored = canonical_store.get("O2")
        assert stored == incoming
        assert stored.customer.customer_id == "C7"
        assert stored.order_status == "unknown"
        assert not stored.campaign_details.is_campaign

    def test_shorter_items_truncate(self, canonical_store):
        """An incoming record with fewer items truncates the stored array"""
        merge(_order("O3", [("P1", 1), ("P2", 2), ("P3", 3)]), canonical_store)
        merge(_order("O3", [("P1", 1)]), canonical_store)

        assert canonical_store.get("O3").item_count == 1

    def test_idempotent(self):
        """Merging the same record twice equals merging it once"""
        order = _order("O4", [("P1", 10)])
        once, twice = KeyedOrderStore(), KeyedOrderStore()

        merge(order, once)
        merge(order, twice)
        merge(order, twice)

        assert once == twice
        assert once.snapshot() == {"O4": order}

    def test_distinct_keys_independent(self, canonical_store):
        """Merging one key never touches another"""
        a = _order("A", [("P1", 1)])
        merge(a, canonical_store)
        merge(_order("B", [("P2", 2)]), canonical_store)
        merge(_order("B", [("P3", 3)]), canonical_store)

        assert canonical_store.get("A") == a
        assert [o.order_id for o in canonical_store] == ["A", "B"]

    def test_delete(self, canonical_store):
        """Explicit deletion removes the order"""
        merge(_order("O5", [("P1", 1)]), canonical_store)

        assert canonical_store.delete("O5")
        assert "O5" not in canonical_store
        assert not canonical_store.delete("O5")


class TestConcurrentMerge:
    """Tests for key-partitioned parallel merging"""

    def test_merge_batch_last_record_wins(self, canonical_store):
        """Per key, records apply in input order"""
        orders = []
        for version in range(5):
            for key in ("K1", "K2", "K3"):
                orders.append(_order(key, [(f"P{version}", version)]))

        results = merge_batch(orders, canonical_store, max_workers=4)

        assert len(results) == len(orders)
        assert sum(r.inserted for r in results) == 3
        for key in ("K1", "K2", "K3"):
            assert canonical_store.get(key).order_items[0].product_id == "P4"

    def test_merge_batch_matches_sequential(self):
        """Parallel merge ends in the same state as a sequential one"""
        orders = [_order(f"O{i % 7}", [(f"P{i}", i)]) for i in range(50)]
        sequential, parallel = KeyedOrderStore(), KeyedOrderStore()

        for order in orders:
            merge(order, sequential)
        merge_batch(orders, parallel, max_workers=8)

        assert sequential.snapshot() == parallel.snapshot()

    def test_threads_on_same_key_serialize(self, canonical_store):
        """Concurrent merges of one key leave one complete record"""
        orders = [_order("HOT", [(f"P{i}", i)] * (i % 3 + 1)) for i in range(40)]

        with ThreadPoolExecutor(max_workers=8) as executor:
            list(executor.map(lambda o: merge(o, canonical_store), orders))

        assert len(canonical_store) == 1
        assert canonical_store.get("HOT") in orders

    def test_key_churn_keeps_lock_pool_fixed(self):
        """Inserting and deleting many distinct keys does not grow the lock pool"""
        store = KeyedOrderStore(lock_stripes=8)

        def churn(i):
            merge(_order(f"TMP{i}", [("P1", 1)]), store)
            return store.delete(f"TMP{i}")

        with ThreadPoolExecutor(max_workers=8) as executor:
            deleted = list(executor.map(churn, range(500)))

        assert all(deleted)
        assert len(store) == 0
        assert len(store._key_locks) == 8

    def test_partition_is_stable(self):
        """Key-hash partition is deterministic and in range"""
        assert partition_for("O1", 4) == partition_for("O1", 4)
        assert all(0 <= partition_for(f"O{i}", 4) < 4 for i in range(100))


class TestPersistence:
    """Tests for dump/load"""

    def test_dump_and_load(self, canonical_store, orders, tmp_path):
        """NDJSON snapshot restores the same store"""
        for order in orders:
            merge(order, canonical_store)

        path = canonical_store.dump(tmp_path / "state" / "orders.jsonl")
        restored = KeyedOrderStore.load(path)

        assert restored == canonical_store
        assert [o.order_id for o in restored] == [o.order_id for o in canonical_store]

    def test_load_missing_file(self, tmp_path):
        """A missing snapshot gives an empty store"""
        assert len(KeyedOrderStore.load(tmp_path / "absent.jsonl")) == 0
