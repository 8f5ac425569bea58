"""
Unit Tests - Null/Default Normalizer
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from orderflat.errors import RejectionReason, TypeCoercionError
from orderflat.models.records import NO_CAMPAIGN, UNKNOWN, CampaignInfo
from orderflat.transformation.normalizers import OrderNormalizer, normalize, raw_from_order


class TestCampaignDefaults:
    """Tests for absent/null campaign structures"""

    def test_missing_campaign_structs_get_sentinels(self, minimal_raw_order):
        """Absent order- and item-level campaigns become sentinel structs"""
        order = normalize(minimal_raw_order)

        for campaign in (order.campaign_details, order.order_items[0].campaign_details):
            assert campaign.channel == NO_CAMPAIGN
            assert campaign.coupon_code == NO_CAMPAIGN
            assert campaign.discount == Decimal("0")

    def test_partial_campaign_struct_is_completed(self):
        """Missing fields inside a present campaign struct are defaulted"""
        order = normalize({
            "order_id": "O1",
            "customer": {"customer_id": "C1"},
            "order_items": [{"price": 1}],
            "campaign_details": {"coupon_code": "SALE"},
        })

        assert order.campaign_details == CampaignInfo(discount=Decimal("0"), channel=NO_CAMPAIGN, coupon_code="sale")

    def test_sentinel_is_case_insensitive(self, full_raw_order):
        """NO_CAMPAIGN in any case collapses to the lower-case sentinel"""
        order = normalize(full_raw_order)

        assert order.campaign_details.coupon_code == NO_CAMPAIGN
        assert not order.campaign_details.is_campaign

    def test_blank_coupon_becomes_sentinel(self):
        """Whitespace-only coupon is treated as absent"""
        order = normalize({
            "order_id": "O1",
            "customer": {"customer_id": "C1"},
            "order_items": [{"price": 1, "campaign_details": {"coupon_code": "   "}}],
        })

        assert order.order_items[0].campaign_details.coupon_code == NO_CAMPAIGN


class TestScalarNormalization:
    """Tests for text, identity and money fields"""

    def test_grouping_text_trimmed_and_lowercased(self, full_raw_order):
        """city/state/channel are trimmed and lower-cased"""
        order = normalize(full_raw_order)

        assert order.customer.city == "sao paulo"
        assert order.customer.state == "sp"
        assert order.order_items[0].campaign_details.channel == "email"

    def test_identity_trimmed_case_kept(self, full_raw_order):
        """order_id is trimmed but keeps its case"""
        order = normalize(full_raw_order)

        assert order.order_id == "O100"
        assert order.order_items[0].product_id == "P1"

    def test_missing_geography_defaults_to_unknown(self, minimal_raw_order):
        """Absent city/state become 'unknown'"""
        order = normalize(minimal_raw_order)

        assert order.customer.city == UNKNOWN
        assert order.customer.state == UNKNOWN
        assert order.order_status == UNKNOWN

    def test_missing_customer_struct(self):
        """Absent customer struct becomes a defaulted struct with empty id"""
        order = normalize({"order_id": "O1", "order_items": [{"price": 1}]})

        assert order.customer.customer_id == ""
        assert order.customer.city == UNKNOWN

    def test_money_with_currency_symbols(self, full_raw_order):
        """Currency symbols and thousands separators are stripped"""
        order = normalize(full_raw_order)

        assert order.order_items[0].price == Decimal("1250.50")
        assert order.campaign_details.discount == Decimal("10.00")

    def test_missing_price_defaults_to_zero(self):
        """Absent or null price becomes 0"""
        order = normalize({
            "order_id": "O1",
            "customer": {"customer_id": "C1"},
            "order_items": [{"product_id": "P1"}, {"product_id": "P2", "price": None}],
        })

        assert [item.price for item in order.order_items] == [Decimal("0"), Decimal("0")]
        assert order.order_items[0].seller_id == UNKNOWN

    @pytest.mark.parametrize("price,expected", [
        ("1,250", "1250"),
        ("12,345,678.90", "12345678.90"),
        ("€ 12.50", "12.50"),
        ("12.50 £", "12.50"),
        ("  7.25  ", "7.25"),
    ])
    def test_well_formed_money_text(self, minimal_raw_order, price, expected):
        """Grouped thousands, a single currency symbol and padding are accepted"""
        minimal_raw_order["order_items"][0]["price"] = price
        order = normalize(minimal_raw_order)

        assert order.order_items[0].price == Decimal(expected)

    def test_float_price_keeps_decimal_value(self, minimal_raw_order):
        """Floats convert through their repr, not binary expansion"""
        minimal_raw_order["order_items"][0]["price"] = 0.1
        order = normalize(minimal_raw_order)

        assert order.order_items[0].price == Decimal("0.1")

    def test_status_stored_as_is(self, minimal_raw_order):
        """order_status is an open set and keeps its value"""
        minimal_raw_order["order_status"] = "Awaiting_Pickup"
        order = normalize(minimal_raw_order)

        assert order.order_status == "Awaiting_Pickup"


class TestTypeCoercion:
    """Tests for rejected values"""

    @pytest.mark.parametrize("price", [
        "ten", "n/a", True, [1], -5, "-1.5", float("nan"),
        "10,50", "10 50", "1,2,3", "12,34.5", "1_000", "$$5",
    ])
    def test_bad_price_raises(self, minimal_raw_order, price):
        """Non-numeric, negative or non-finite prices reject the record"""
        minimal_raw_order["order_items"][0]["price"] = price

        with pytest.raises(TypeCoercionError) as exc_info:
            normalize(minimal_raw_order)

        assert exc_info.value.path == "order_items[0].price"
        assert exc_info.value.reason == RejectionReason.TYPE_COERCION
        assert exc_info.value.order_id == "O1"

    def test_bad_discount_carries_path_and_value(self, minimal_raw_order):
        """Coercion errors carry the field path and the raw value"""
        minimal_raw_order["campaign_details"] = {"discount": "lots"}

        with pytest.raises(TypeCoercionError) as exc_info:
            normalize(minimal_raw_order)

        assert exc_info.value.path == "campaign_details.discount"
        assert exc_info.value.value == "lots"

    def test_items_not_an_array(self, minimal_raw_order):
        """order_items must be an array"""
        minimal_raw_order["order_items"] = {"product_id": "P1"}

        with pytest.raises(TypeCoercionError):
            normalize(minimal_raw_order)

    def test_struct_of_wrong_shape(self, minimal_raw_order):
        """customer must be an object"""
        minimal_raw_order["customer"] = "C1"

        with pytest.raises(TypeCoercionError) as exc_info:
            normalize(minimal_raw_order)

        assert exc_info.value.path == "customer"

    def test_record_not_an_object(self):
        """A non-mapping record is rejected"""
        with pytest.raises(TypeCoercionError):
            normalize(["O1"])


class TestTimestamps:
    """Tests for timestamp parsing"""

    @pytest.mark.parametrize("value", [
        "2024-03-05 14:30:00",
        "2024-03-05T14:30:00",
        "2024-03-05T14:30:00Z",
        "2024-03-05T11:30:00-03:00",
        1709649000,
        datetime(2024, 3, 5, 14, 30),
    ])
    def test_formats_parse_to_utc(self, minimal_raw_order, value):
        """ISO strings, offsets, epoch seconds and datetimes all land in UTC"""
        minimal_raw_order["order_timestamp"] = value
        order = normalize(minimal_raw_order)

        assert order.order_timestamp == datetime(2024, 3, 5, 14, 30, tzinfo=timezone.utc)

    def test_unparseable_timestamp_is_dropped(self, minimal_raw_order):
        """Bad timestamps become None without rejecting the record"""
        minimal_raw_order["order_timestamp"] = "yesterday-ish"
        order = normalize(minimal_raw_order)

        assert order.order_timestamp is None
        assert order.order_id == "O1"


class TestNormalizerContract:
    """Tests for purity and custom defaults"""

    def test_deterministic(self, full_raw_order):
        """The same input always yields the same Order"""
        assert normalize(full_raw_order) == normalize(full_raw_order)

    def test_absent_items_normalize_to_empty(self):
        """Missing order_items becomes an empty tuple rather than failing"""
        order = normalize({"order_id": "O1", "customer": {"customer_id": "C1"}})

        assert order.order_items == ()

    def test_canonical_dump_renormalizes_to_same_order(self, full_raw_order):
        """A canonical order dumped to JSON normalizes back to itself"""
        order = normalize(full_raw_order)

        assert normalize(raw_from_order(order)) == order

    def test_custom_geo_default(self, minimal_raw_order):
        """Normalizer sentinels are configurable"""
        order = OrderNormalizer(geo_default="n/a").normalize(minimal_raw_order)

        assert order.customer.city == "n/a"
