"""
Flat Row Enrichment Module

Derived columns computed from the flattened projection only, so they can be
recomputed without re-running the pipeline from raw input.
Includes:
- campaign_flag (frame derivation and store-side batch migration)
- Time grouping keys (hour, day, month, day of week)
"""

import polars as pl
import structlog

from orderflat.database.store import TableStore
from orderflat.models.records import CAMPAIGN_USED, NO_CAMPAIGN, NOT_USING_CAMPAIGNS

logger = structlog.get_logger(__name__)


CAMPAIGN_FLAG_COLUMN = "campaign_flag"
ORDER_COUPON_COLUMN = "order_campaign_coupon"
ITEM_COUPON_COLUMN = "item_campaign_coupon"

TIME_FEATURE_COLUMNS = ("order_hour", "order_date", "order_month", "order_day_of_week")


def campaign_flag_expr(coupon_column: str = ORDER_COUPON_COLUMN) -> pl.Expr:
    """'Not Using Campaigns' iff the lower-cased coupon equals the sentinel"""
    return (
        pl.when(pl.col(coupon_column).str.to_lowercase() == NO_CAMPAIGN)
        .then(pl.lit(NOT_USING_CAMPAIGNS))
        .otherwise(pl.lit(CAMPAIGN_USED))
        .alias(CAMPAIGN_FLAG_COLUMN)
    )


def add_campaign_flag(
    df: pl.DataFrame,
    coupon_column: str = ORDER_COUPON_COLUMN,
) -> pl.DataFrame:
    """
    Derive campaign_flag from a flattened frame.

    Args:
        df: Flattened rows
        coupon_column: Order- or item-level coupon column

    Returns:
        Frame with campaign_flag (replaced if already present)
    """
    if coupon_column not in df.columns:
        raise ValueError(f"Coupon column not found: {coupon_column}")
    return df.with_columns(campaign_flag_expr(coupon_column))


def apply_campaign_flag(
    store: TableStore,
    table: str,
    coupon_column: str = ORDER_COUPON_COLUMN,
) -> int:
    """
    Recompute campaign_flag inside the store as a batch migration.

    Adds the column when missing, then sets it with two updates. Sentinel
    coupons are already lower-case after normalization, so the store-side
    comparison is exact.

    Returns:
        Rows flagged as using a campaign
    """
    if CAMPAIGN_FLAG_COLUMN not in store.read_table(table).columns:
        store.add_column(table, CAMPAIGN_FLAG_COLUMN, "str")

    store.update_where(
        table,
        [(coupon_column, "==", NO_CAMPAIGN)],
        {CAMPAIGN_FLAG_COLUMN: NOT_USING_CAMPAIGNS},
    )
    used = store.update_where(
        table,
        [(coupon_column, "!=", NO_CAMPAIGN)],
        {CAMPAIGN_FLAG_COLUMN: CAMPAIGN_USED},
    )

    logger.info("campaign_flag applied", table=table, coupon_column=coupon_column, campaign_rows=used)
    return used


def add_time_features(
    df: pl.DataFrame,
    timestamp_column: str = "order_timestamp",
) -> pl.DataFrame:
    """
    Add time grouping keys.

    Features added:
    - order_hour (0-23)
    - order_date
    - order_month as YYYY-MM
    - order_day_of_week (1 = Monday)

    Rows without a timestamp get nulls.
    """
    if timestamp_column not in df.columns:
        return df

    ts = pl.col(timestamp_column)
    return df.with_columns([
        ts.dt.hour().cast(pl.Int32).alias("order_hour"),
        ts.dt.date().alias("order_date"),
        ts.dt.strftime("%Y-%m").alias("order_month"),
        ts.dt.weekday().cast(pl.Int32).alias("order_day_of_week"),
    ])
