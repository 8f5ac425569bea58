"""
Unit Tests - Synthetic Data Generator
"""
import json

from orderflat.data.generators import CLEAN, NestedOrderGenerator, generate_dataset
from orderflat.ingestion.readers import RawRecord, read_records
from orderflat.transformation.transformers import process_record


class TestNestedOrderGenerator:
    """Tests for NestedOrderGenerator"""

    def test_reproducible(self):
        """Same seed, same records"""
        first = NestedOrderGenerator(seed=11).generate(30)
        second = NestedOrderGenerator(seed=11).generate(30)

        assert json.dumps(first, default=str) == json.dumps(second, default=str)

    def test_record_shape(self):
        """Records carry the nested order structure"""
        record = NestedOrderGenerator(seed=1, noise=CLEAN).order()

        assert {"order_id", "customer", "order_items", "order_status"} <= set(record)
        assert record["customer"]["customer_id"]
        assert len(record["order_items"]) >= 1

    def test_clean_profile_always_accepted(self):
        """Without noise every record normalizes and validates"""
        records = NestedOrderGenerator(seed=3, noise=CLEAN).generate(100)

        outcomes = [process_record(RawRecord(offset=i, data=r)) for i, r in enumerate(records)]

        assert all(outcome.accepted for outcome in outcomes)

    def test_noisy_records_never_raise(self):
        """Noisy records are accepted or rejected, never crash the worker"""
        records = NestedOrderGenerator(seed=5).generate(300)

        outcomes = [process_record(RawRecord(offset=i, data=r)) for i, r in enumerate(records)]

        assert len(outcomes) == len(records)
        assert sum(outcome.accepted for outcome in outcomes) > len(records) * 0.9


class TestGenerateDataset:
    """Tests for generate_dataset()"""

    def test_writes_ndjson(self, tmp_path):
        """Every line is one JSON object"""
        path = generate_dataset(25, tmp_path / "orders.jsonl", seed=2)

        records = list(read_records(path))

        assert len(records) >= 25
        assert all(record.ok for record in records)
