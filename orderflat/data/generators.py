"""
Synthetic Data Generator

Generates nested raw order records for testing and development, with the
kinds of gaps and noise real feeds carry:
- Absent or null campaign structs at order and item level
- Sentinel coupons in mixed case, padded city/state text
- Prices as strings with currency symbols, mixed timestamp formats
- Redelivered orders (same order_id, different line items)
- A small share of invalid records (no customer, no items, bad price)
"""

import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
import structlog
from faker import Faker

from orderflat.config import get_settings

logger = structlog.get_logger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

ORDER_STATUSES = [
    ("delivered", 0.80),
    ("shipped", 0.08),
    ("processing", 0.04),
    ("canceled", 0.04),
    ("invoiced", 0.02),
    ("unavailable", 0.02),
]

CHANNELS = ["email", "social", "search", "affiliate", "push"]
COUPONS = ["WELCOME10", "SUMMER25", "FREESHIP", "VIP15", "FLASH50", "BUNDLE20"]


@dataclass
class NoiseProfile:
    """Probabilities of each kind of mess in generated records"""
    missing_order_campaign: float = 0.55
    missing_item_campaign: float = 0.70
    upper_case_sentinel: float = 0.10
    padded_text: float = 0.10
    missing_geo: float = 0.05
    string_price: float = 0.10
    missing_timestamp: float = 0.02
    redelivery: float = 0.03
    invalid: float = 0.02


CLEAN = NoiseProfile(
    missing_order_campaign=0.5,
    missing_item_campaign=0.7,
    upper_case_sentinel=0.0,
    padded_text=0.0,
    missing_geo=0.0,
    string_price=0.0,
    missing_timestamp=0.0,
    redelivery=0.0,
    invalid=0.0,
)


# =============================================================================
# GENERATOR
# =============================================================================

class NestedOrderGenerator:
    """
    Generate nested raw order records.

    Example:
        generator = NestedOrderGenerator(seed=42)
        records = generator.generate(1000)
    """

    def __init__(
        self,
        n_customers: int = 200,
        n_products: int = 300,
        n_sellers: int = 40,
        start_date: Optional[datetime] = None,
        days: int = 365,
        noise: Optional[NoiseProfile] = None,
        seed: int = 42,
    ):
        self.rng = np.random.default_rng(seed)
        self.fake = Faker()
        self.fake.seed_instance(seed)
        self.noise = noise or NoiseProfile()
        self.start_date = start_date or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.days = days

        self.customers = [
            {
                "customer_id": uuid.UUID(int=int(self.rng.integers(0, 2**63))).hex,
                "city": self.fake.city(),
                "state": self.fake.state_abbr(),
            }
            for _ in range(n_customers)
        ]
        self.product_ids = [f"P{i:06d}" for i in range(n_products)]
        self.seller_ids = [f"S{i:04d}" for i in range(n_sellers)]
        # Long-tailed catalogue prices
        self.base_prices = np.round(self.rng.lognormal(mean=3.8, sigma=0.9, size=n_products), 2)

        statuses, weights = zip(*ORDER_STATUSES)
        self._statuses = list(statuses)
        self._status_weights = np.array(weights) / sum(weights)

    def _chance(self, p: float) -> bool:
        return bool(self.rng.random() < p)

    def _text(self, value: str) -> str:
        if self._chance(self.noise.padded_text):
            return f"  {value.upper()} "
        return value

    def _campaign(self, missing_rate: float) -> Optional[Dict[str, Any]]:
        if self._chance(missing_rate):
            return None
        if self._chance(0.2):
            sentinel = "NO_CAMPAIGN" if self._chance(self.noise.upper_case_sentinel) else "no_campaign"
            return {"discount": 0, "channel": sentinel, "coupon_code": sentinel}
        return {
            "discount": round(float(self.rng.choice([5, 10, 15, 20, 25, 50])), 2),
            "channel": self._text(str(self.rng.choice(CHANNELS))),
            "coupon_code": str(self.rng.choice(COUPONS)),
        }

    def _price(self, product_index: int) -> Any:
        price = round(float(self.base_prices[product_index] * self.rng.uniform(0.9, 1.1)), 2)
        if self._chance(self.noise.string_price):
            return f"${price:,.2f}"
        return price

    def _timestamp(self, moment: datetime) -> Any:
        if self._chance(self.noise.missing_timestamp):
            return None
        style = int(self.rng.integers(0, 3))
        if style == 0:
            return moment.isoformat()
        if style == 1:
            return moment.strftime("%Y-%m-%d %H:%M:%S")
        return int(moment.timestamp())

    def _items(self, ordered_at: datetime) -> List[Dict[str, Any]]:
        n_items = int(min(self.rng.geometric(0.6), 6))
        items = []
        for _ in range(n_items):
            product_index = int(self.rng.integers(0, len(self.product_ids)))
            item: Dict[str, Any] = {
                "product_id": self.product_ids[product_index],
                "price": self._price(product_index),
                "shipping_limit_date": (ordered_at + timedelta(days=int(self.rng.integers(2, 10)))).isoformat(),
                "seller_id": str(self.rng.choice(self.seller_ids)),
            }
            campaign = self._campaign(self.noise.missing_item_campaign)
            if campaign is not None:
                item["campaign_details"] = campaign
            items.append(item)
        return items

    def _invalid(self, record: Dict[str, Any]) -> Dict[str, Any]:
        kind = int(self.rng.integers(0, 3))
        if kind == 0:
            record["customer"] = {k: v for k, v in record["customer"].items() if k != "customer_id"}
        elif kind == 1:
            record["order_items"] = []
        else:
            record["order_items"][0]["price"] = "n/a"
        return record

    def order(self) -> Dict[str, Any]:
        """One raw nested order"""
        customer = self.customers[int(self.rng.integers(0, len(self.customers)))]
        ordered_at = self.start_date + timedelta(seconds=int(self.rng.integers(0, self.days * 86400)))

        customer_struct: Dict[str, Any] = {"customer_id": customer["customer_id"]}
        if not self._chance(self.noise.missing_geo):
            customer_struct["city"] = self._text(customer["city"])
            customer_struct["state"] = self._text(customer["state"])

        record: Dict[str, Any] = {
            "order_id": uuid.UUID(int=int(self.rng.integers(0, 2**63))).hex,
            "customer": customer_struct,
            "order_status": str(self.rng.choice(self._statuses, p=self._status_weights)),
            "order_timestamp": self._timestamp(ordered_at),
            "order_items": self._items(ordered_at),
            "campaign_details": self._campaign(self.noise.missing_order_campaign),
        }

        if self._chance(self.noise.invalid):
            return self._invalid(record)
        return record

    def generate(self, n: int = 1000) -> List[Dict[str, Any]]:
        """Generate n records, plus redeliveries of earlier orders"""
        records = []
        for _ in range(n):
            record = self.order()
            records.append(record)
            if self._chance(self.noise.redelivery) and record["order_items"]:
                redelivered = json.loads(json.dumps(record))
                redelivered["order_status"] = "delivered"
                redelivered["order_items"] = redelivered["order_items"][:1]
                records.append(redelivered)

        logger.info("Generated raw orders", orders=n, records=len(records))
        return records


def write_ndjson(records: Iterable[Dict[str, Any]], path: Union[str, Path]) -> Path:
    """Write raw records one JSON object per line"""
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)
    with open(output, "w", encoding="utf-8") as fh:
        for record in records:
            fh.write(json.dumps(record, default=str))
            fh.write("\n")
    return output


def generate_dataset(
    n_orders: int = 1000,
    output_path: Optional[Union[str, Path]] = None,
    seed: int = 42,
    noise: Optional[NoiseProfile] = None,
) -> Path:
    """
    Convenience function to write a synthetic NDJSON dataset.

    Args:
        n_orders: Number of orders
        output_path: Target file (defaults to <raw_path>/orders.jsonl)
        seed: Random seed
        noise: Noise profile

    Returns:
        Path written
    """
    if output_path is None:
        output_path = Path(get_settings().data_lake.raw_path) / "orders.jsonl"

    records = NestedOrderGenerator(seed=seed, noise=noise).generate(n_orders)
    path = write_ndjson(records, output_path)
    logger.info("Dataset written", path=str(path), records=len(records))
    return path
