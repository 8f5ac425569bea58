"""
Canonical Record Model

Typed shape of an order after normalization:

- Order: root entity, keyed by order_id
- Customer: struct owned by its order
- LineItem: one product within an order
- CampaignInfo: discount/channel/coupon, at order and item level

Every struct is always present and every field populated once a record
has been through the normalizer, so downstream code never null-checks a
sub-structure.
"""

from dataclasses import asdict, dataclass, fields
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# SENTINELS
# =============================================================================

UNKNOWN = "unknown"
NO_CAMPAIGN = "no_campaign"

CAMPAIGN_USED = "Campaign Used"
NOT_USING_CAMPAIGNS = "Not Using Campaigns"


# =============================================================================
# NESTED RECORD
# =============================================================================

class CampaignInfo(BaseModel):
    """Discount/channel/coupon attached to an order or a line item"""

    model_config = ConfigDict(frozen=True)

    discount: Decimal = Field(default=Decimal("0"), ge=0)
    channel: str = NO_CAMPAIGN
    coupon_code: str = NO_CAMPAIGN

    @property
    def is_campaign(self) -> bool:
        """True unless the coupon is the no-campaign sentinel"""
        return self.coupon_code != NO_CAMPAIGN


class Customer(BaseModel):
    """Customer struct, owned exclusively by one order"""

    model_config = ConfigDict(frozen=True)

    customer_id: str = ""
    city: str = UNKNOWN
    state: str = UNKNOWN


class LineItem(BaseModel):
    """One product entry within an order"""

    model_config = ConfigDict(frozen=True)

    product_id: str = UNKNOWN
    price: Decimal = Field(default=Decimal("0"), ge=0)
    shipping_limit_date: Optional[datetime] = None
    seller_id: str = UNKNOWN
    campaign_details: CampaignInfo = Field(default_factory=CampaignInfo)


class Order(BaseModel):
    """Root entity: one customer purchase transaction"""

    model_config = ConfigDict(frozen=True)

    order_id: str = ""
    customer: Customer = Field(default_factory=Customer)
    order_status: str = UNKNOWN
    order_timestamp: Optional[datetime] = None
    order_items: Tuple[LineItem, ...] = ()
    campaign_details: CampaignInfo = Field(default_factory=CampaignInfo)

    @property
    def item_count(self) -> int:
        return len(self.order_items)

    @property
    def total_price(self) -> Decimal:
        """Sum of line-item prices"""
        return sum((item.price for item in self.order_items), Decimal("0"))


# =============================================================================
# FLATTENED ROW
# =============================================================================

@dataclass(frozen=True)
class FlatRow:
    """One line item with its order-level context denormalized onto it"""
    order_id: str
    item_position: int
    customer_id: str
    customer_city: str
    customer_state: str
    order_status: str
    order_timestamp: Optional[datetime]
    product_id: str
    price: Decimal
    seller_id: str
    shipping_limit_date: Optional[datetime]
    item_campaign_discount: Decimal
    item_campaign_channel: str
    item_campaign_coupon: str
    order_campaign_discount: Decimal
    order_campaign_channel: str
    order_campaign_coupon: str

    @property
    def key(self) -> Tuple[str, int]:
        """(order_id, item_position) - unique across the projection"""
        return (self.order_id, self.item_position)

    def to_record(self) -> Dict[str, Any]:
        """Plain dict with money as float, for row-oriented export"""
        record = asdict(self)
        for name in ("price", "item_campaign_discount", "order_campaign_discount"):
            record[name] = float(record[name])
        return record


FLAT_COLUMNS: Tuple[str, ...] = tuple(f.name for f in fields(FlatRow))
