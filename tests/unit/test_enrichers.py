"""
Unit Tests - Flat Row Enrichment
"""
from datetime import date

import polars as pl
import pytest

from orderflat.models.records import CAMPAIGN_USED, NOT_USING_CAMPAIGNS
from orderflat.transformation.enrichers import (
    add_campaign_flag,
    add_time_features,
    apply_campaign_flag,
)


class TestCampaignFlag:
    """Tests for campaign_flag derivation"""

    def test_flag_from_order_coupon(self, flat_df):
        """Orders with a real coupon are flagged as using a campaign"""
        result = add_campaign_flag(flat_df)
        flags = dict(zip(result["order_id"].to_list(), result["campaign_flag"].to_list()))

        assert flags["A"] == CAMPAIGN_USED
        assert flags["B"] == NOT_USING_CAMPAIGNS
        assert flags["C"] == NOT_USING_CAMPAIGNS
        assert flags["D"] == CAMPAIGN_USED

    def test_flag_from_item_coupon(self, flat_df):
        """The coupon column is selectable"""
        result = add_campaign_flag(flat_df, coupon_column="item_campaign_coupon")

        used = result.filter(pl.col("campaign_flag") == CAMPAIGN_USED)
        assert used["order_id"].to_list() == ["C"]

    def test_sentinel_compared_lower_case(self):
        """An upper-case sentinel in the frame still means no campaign"""
        df = pl.DataFrame({"order_campaign_coupon": ["NO_CAMPAIGN", "no_campaign", "SALE"]})

        result = add_campaign_flag(df)

        assert result["campaign_flag"].to_list() == [NOT_USING_CAMPAIGNS, NOT_USING_CAMPAIGNS, CAMPAIGN_USED]

    def test_recompute_replaces_column(self, flat_df):
        """Re-applying the derivation does not duplicate the column"""
        once = add_campaign_flag(flat_df)
        twice = add_campaign_flag(once)

        assert twice.columns.count("campaign_flag") == 1
        assert twice.equals(once)

    def test_missing_column_raises(self):
        """Unknown coupon column is refused"""
        with pytest.raises(ValueError):
            add_campaign_flag(pl.DataFrame({"x": [1]}))

    def test_store_migration(self, table_store, flat_df):
        """campaign_flag applied as a batch migration inside the store"""
        table_store.create_or_replace_table("flat", flat_df)

        used = apply_campaign_flag(table_store, "flat")
        table = table_store.read_table("flat")

        assert used == 4
        assert "campaign_flag" in table.columns
        assert table.sort(["order_id", "item_position"])["campaign_flag"].to_list() == (
            add_campaign_flag(flat_df).sort(["order_id", "item_position"])["campaign_flag"].to_list()
        )

    def test_store_migration_rerun(self, polars_store, flat_df):
        """Running the migration twice keeps one column with the same values"""
        polars_store.create_or_replace_table("flat", flat_df)

        apply_campaign_flag(polars_store, "flat")
        apply_campaign_flag(polars_store, "flat")

        assert polars_store.read_table("flat").columns.count("campaign_flag") == 1


class TestTimeFeatures:
    """Tests for time grouping keys"""

    def test_features(self, flat_df):
        """Hour, date, month and weekday derive from order_timestamp"""
        result = add_time_features(flat_df).filter(pl.col("order_id") == "A")

        assert result["order_hour"].to_list() == [9, 9]
        assert result["order_date"][0] == date(2024, 1, 10)
        assert result["order_month"][0] == "2024-01"
        assert result["order_day_of_week"][0] == 3

    def test_null_timestamp_gives_null_features(self):
        """Rows without a timestamp get null time keys"""
        df = pl.DataFrame(
            {"order_timestamp": [None]},
            schema={"order_timestamp": pl.Datetime("us", "UTC")},
        )

        result = add_time_features(df)

        assert result["order_month"].to_list() == [None]
        assert result["order_hour"].to_list() == [None]
