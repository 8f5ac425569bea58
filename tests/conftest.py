"""
Test Suite Configuration
"""
from datetime import datetime, timezone
from typing import Any, Dict, List

import polars as pl
import pytest

from orderflat.config import Settings
from orderflat.database.connection import SqlTableStore
from orderflat.database.store import PolarsTableStore
from orderflat.ingestion.merger import KeyedOrderStore
from orderflat.models.records import Order
from orderflat.transformation.normalizers import normalize
from orderflat.transformation.projector import project_orders, to_frame


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
    )


@pytest.fixture
def minimal_raw_order() -> Dict[str, Any]:
    """Smallest valid raw order: no campaign structs, no geography"""
    return {
        "order_id": "O1",
        "customer": {"customer_id": "C1"},
        "order_items": [{"product_id": "P1", "price": 10.0, "seller_id": "S1"}],
        "campaign_details": None,
    }


@pytest.fixture
def full_raw_order() -> Dict[str, Any]:
    """Raw order with every field present and some noise"""
    return {
        "order_id": " O100 ",
        "customer": {"customer_id": "C9", "city": "  Sao Paulo ", "state": "SP"},
        "order_status": "delivered",
        "order_timestamp": "2024-03-05 14:30:00",
        "order_items": [
            {
                "product_id": "P1",
                "price": "$1,250.50",
                "shipping_limit_date": "2024-03-10T00:00:00+00:00",
                "seller_id": "S1",
                "campaign_details": {"discount": 5, "channel": " Email ", "coupon_code": "SPRING5"},
            },
            {
                "product_id": "P2",
                "price": 20,
                "seller_id": "S2",
            },
        ],
        "campaign_details": {"discount": "10.00", "channel": "Social", "coupon_code": "NO_CAMPAIGN"},
    }


@pytest.fixture
def raw_orders() -> List[Dict[str, Any]]:
    """Small batch covering three customers, two sellers and campaigns"""
    return [
        {
            "order_id": "A",
            "customer": {"customer_id": "C1", "city": "rio", "state": "RJ"},
            "order_status": "delivered",
            "order_timestamp": "2024-01-10T09:00:00Z",
            "order_items": [
                {"product_id": "P1", "price": 10, "seller_id": "S1"},
                {"product_id": "P2", "price": 30, "seller_id": "S2"},
            ],
            "campaign_details": {"discount": 5, "channel": "email", "coupon_code": "WELCOME"},
        },
        {
            "order_id": "B",
            "customer": {"customer_id": "C2", "city": "rio", "state": "RJ"},
            "order_status": "shipped",
            "order_timestamp": "2024-02-15T18:30:00Z",
            "order_items": [
                {"product_id": "P1", "price": 20, "seller_id": "S1"},
            ],
        },
        {
            "order_id": "C",
            "customer": {"customer_id": "C1", "city": "rio", "state": "RJ"},
            "order_status": "delivered",
            "order_timestamp": "2024-03-01T12:00:00Z",
            "order_items": [
                {
                    "product_id": "P3",
                    "price": 40,
                    "seller_id": "S1",
                    "campaign_details": {"discount": 2, "channel": "push", "coupon_code": "ITEM2"},
                },
            ],
        },
        {
            "order_id": "D",
            "customer": {"customer_id": "C3", "city": "curitiba", "state": "PR"},
            "order_status": "delivered",
            "order_timestamp": "2024-03-20T08:15:00Z",
            "order_items": [
                {"product_id": "P2", "price": 50, "seller_id": "S2"},
                {"product_id": "P2", "price": 50, "seller_id": "S2"},
            ],
            "campaign_details": {"discount": 10, "channel": "email", "coupon_code": "WELCOME"},
        },
    ]


@pytest.fixture
def orders(raw_orders) -> List[Order]:
    """Normalized canonical orders"""
    return [normalize(raw) for raw in raw_orders]


@pytest.fixture
def flat_df(orders) -> pl.DataFrame:
    """Flattened projection of the sample batch"""
    return to_frame(project_orders(orders))


@pytest.fixture
def canonical_store() -> KeyedOrderStore:
    """Empty keyed canonical store"""
    return KeyedOrderStore()


@pytest.fixture
def polars_store() -> PolarsTableStore:
    """In-memory polars table store"""
    return PolarsTableStore()


@pytest.fixture
def sql_store():
    """In-memory SQLite table store"""
    store = SqlTableStore("sqlite://")
    yield store
    store.close()


@pytest.fixture(params=["polars", "sqlite"])
def table_store(request):
    """Both TableStore implementations"""
    if request.param == "polars":
        yield PolarsTableStore()
    else:
        store = SqlTableStore("sqlite://")
        yield store
        store.close()


@pytest.fixture
def reference_date() -> datetime:
    """Fixed reference date for recency/churn"""
    return datetime(2024, 4, 1, tzinfo=timezone.utc)
