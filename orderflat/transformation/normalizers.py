"""
Null/Default Normalizer

Turns a loosely-typed nested order record into the canonical model.
Handles:
- Absent or null sub-structures (replaced by fully-defaulted structs)
- Sentinel defaults for missing scalars
- Text normalization for grouping fields (trim + lower-case)
- Decimal coercion of money fields (currency symbols stripped)
- Timestamp parsing to UTC
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional
import math
import re

import structlog

from orderflat.errors import TypeCoercionError
from orderflat.models.records import (
    NO_CAMPAIGN,
    UNKNOWN,
    CampaignInfo,
    Customer,
    LineItem,
    Order,
)

logger = structlog.get_logger(__name__)

# one currency symbol at either end
_CURRENCY_SYMBOL = re.compile(r"^[$€£¥]\s*|\s*[$€£¥]$")
_THOUSANDS = re.compile(r"^-?\d{1,3}(,\d{3})+(\.\d+)?$")

_DATETIME_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
    "%d-%m-%Y",
]

_SCALARS = (str, int, float, Decimal)


class OrderNormalizer:
    """
    Record-level normalizer producing canonical Orders.

    Pure: the same raw record always yields the same Order. The only
    failure mode is TypeCoercionError, raised for money fields that are
    not numeric (or negative) and for structures of the wrong shape.

    Example:
        normalizer = OrderNormalizer()
        order = normalizer.normalize(raw)
    """

    def __init__(
        self,
        geo_default: str = UNKNOWN,
        campaign_default: str = NO_CAMPAIGN,
    ):
        self.geo_default = geo_default
        self.campaign_default = campaign_default

    # -------------------------------------------------------------------------
    # Scalars
    # -------------------------------------------------------------------------

    def _text(self, value: Any, path: str, default: str) -> str:
        """Trimmed string; absent, null or blank becomes the default"""
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, _SCALARS):
            raise TypeCoercionError(path, value, "expected a string")
        text = str(value).strip()
        return text or default

    def _grouping_text(self, value: Any, path: str, default: str) -> str:
        """Text used for grouping: trimmed and lower-cased"""
        return self._text(value, path, default).lower()

    def _identity(self, value: Any, path: str) -> str:
        """Identity key; trimmed, case kept, empty when absent"""
        return self._text(value, path, "")

    def _decimal(self, value: Any, path: str) -> Decimal:
        """Non-negative decimal; absent or null becomes 0"""
        if value is None:
            return Decimal("0")
        if isinstance(value, bool):
            raise TypeCoercionError(path, value, "expected a number")

        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, int):
            amount = Decimal(value)
        elif isinstance(value, float):
            if not math.isfinite(value):
                raise TypeCoercionError(path, value, "expected a finite number")
            amount = Decimal(str(value))
        elif isinstance(value, str):
            cleaned = value.strip()
            if not cleaned:
                return Decimal("0")
            cleaned = _CURRENCY_SYMBOL.sub("", cleaned)
            if "," in cleaned:
                if not _THOUSANDS.match(cleaned):
                    raise TypeCoercionError(path, value, "ambiguous thousands separator")
                cleaned = cleaned.replace(",", "")
            if "_" in cleaned:
                raise TypeCoercionError(path, value, "expected a number")
            try:
                amount = Decimal(cleaned)
            except InvalidOperation:
                raise TypeCoercionError(path, value, "expected a number") from None
        else:
            raise TypeCoercionError(path, value, "expected a number")

        if not amount.is_finite():
            raise TypeCoercionError(path, value, "expected a finite number")
        if amount < 0:
            raise TypeCoercionError(path, value, "must be non-negative")
        return amount

    def _timestamp(self, value: Any, path: str) -> Optional[datetime]:
        """UTC instant; naive values are taken as UTC, unparseable ones dropped"""
        if value is None or value == "":
            return None

        parsed: Optional[datetime] = None
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                parsed = datetime.fromtimestamp(value, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                parsed = None
        elif isinstance(value, str):
            parsed = self._parse_datetime_text(value.strip())

        if parsed is None:
            logger.warning("Unparseable timestamp dropped", path=path, value=repr(value))
            return None

        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    @staticmethod
    def _parse_datetime_text(text: str) -> Optional[datetime]:
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            pass
        for fmt in _DATETIME_FORMATS:
            try:
                return datetime.strptime(text, fmt)
            except ValueError:
                continue
        return None

    # -------------------------------------------------------------------------
    # Structures
    # -------------------------------------------------------------------------

    @staticmethod
    def _struct(value: Any, path: str) -> Mapping[str, Any]:
        """Absent or null struct becomes an empty mapping"""
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise TypeCoercionError(path, value, "expected an object")
        return value

    def _campaign(self, value: Any, path: str) -> CampaignInfo:
        raw = self._struct(value, path)
        return CampaignInfo(
            discount=self._decimal(raw.get("discount"), f"{path}.discount"),
            channel=self._grouping_text(raw.get("channel"), f"{path}.channel", self.campaign_default),
            coupon_code=self._grouping_text(raw.get("coupon_code"), f"{path}.coupon_code", self.campaign_default),
        )

    def _customer(self, value: Any) -> Customer:
        raw = self._struct(value, "customer")
        return Customer(
            customer_id=self._identity(raw.get("customer_id"), "customer.customer_id"),
            city=self._grouping_text(raw.get("city"), "customer.city", self.geo_default),
            state=self._grouping_text(raw.get("state"), "customer.state", self.geo_default),
        )

    def _line_item(self, value: Any, path: str) -> LineItem:
        if not isinstance(value, Mapping):
            raise TypeCoercionError(path, value, "expected an object")
        return LineItem(
            product_id=self._text(value.get("product_id"), f"{path}.product_id", UNKNOWN),
            price=self._decimal(value.get("price"), f"{path}.price"),
            shipping_limit_date=self._timestamp(value.get("shipping_limit_date"), f"{path}.shipping_limit_date"),
            seller_id=self._text(value.get("seller_id"), f"{path}.seller_id", UNKNOWN),
            campaign_details=self._campaign(value.get("campaign_details"), f"{path}.campaign_details"),
        )

    def _line_items(self, value: Any) -> List[LineItem]:
        if value is None:
            return []
        if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, (list, tuple)):
            raise TypeCoercionError("order_items", value, "expected an array")
        return [
            self._line_item(item, f"order_items[{position}]")
            for position, item in enumerate(value)
        ]

    def _status(self, value: Any) -> str:
        """Open enumeration stored as-is"""
        if value is None:
            return UNKNOWN
        if isinstance(value, bool) or not isinstance(value, _SCALARS):
            raise TypeCoercionError("order_status", value, "expected a string")
        return str(value)

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def normalize(self, raw: Any) -> Order:
        """
        Normalize one raw record.

        Args:
            raw: Nested record (mapping) with any field absent, null or mistyped

        Returns:
            Canonical Order with every struct populated

        Raises:
            TypeCoercionError: A field could not be coerced; the record is rejected
        """
        if not isinstance(raw, Mapping):
            raise TypeCoercionError("$", raw, "expected an object")

        try:
            return Order(
                order_id=self._identity(raw.get("order_id"), "order_id"),
                customer=self._customer(raw.get("customer")),
                order_status=self._status(raw.get("order_status")),
                order_timestamp=self._timestamp(raw.get("order_timestamp"), "order_timestamp"),
                order_items=tuple(self._line_items(raw.get("order_items"))),
                campaign_details=self._campaign(raw.get("campaign_details"), "campaign_details"),
            )
        except TypeCoercionError as e:
            e.order_id = raw.get("order_id") if isinstance(raw.get("order_id"), str) else None
            raise


_default_normalizer = OrderNormalizer()


def normalize(raw: Any) -> Order:
    """
    Convenience function to normalize a raw record with default sentinels.

    Args:
        raw: Loosely-typed nested order record

    Returns:
        Canonical Order
    """
    return _default_normalizer.normalize(raw)


def raw_from_order(order: Order) -> Dict[str, Any]:
    """JSON-compatible nested record; normalizing it yields the same Order"""
    return order.model_dump(mode="json")
