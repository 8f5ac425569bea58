"""
Aggregation Contracts

Stateless reducers over the flattened projection. Every contract groups by
a key and reports:

- row_count: line items in the group
- order_count: distinct order_id in the group
- revenue: sum(price)
- avg_order_value: revenue / order_count (one order contributes many rows,
  so never revenue / row_count)
- avg_item_price: revenue / row_count

Partial-aggregate-then-combine is supported for partitions that hold whole
orders: distinct order counts are then additive across partitions.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence

import polars as pl
import structlog

from orderflat.transformation.enrichers import add_time_features, campaign_flag_expr

logger = structlog.get_logger(__name__)


METRIC_COLUMNS = ("row_count", "order_count", "revenue", "avg_order_value", "avg_item_price")

TIME_GRAINS = {
    "hour": "order_hour",
    "day": "order_date",
    "month": "order_month",
    "weekday": "order_day_of_week",
}


def _derive_ratios(df: pl.DataFrame) -> pl.DataFrame:
    return df.with_columns([
        (pl.col("revenue") / pl.col("order_count")).alias("avg_order_value"),
        (pl.col("revenue") / pl.col("row_count")).alias("avg_item_price"),
    ])


def _by_revenue(df: pl.DataFrame, keys: Sequence[str]) -> pl.DataFrame:
    keys = list(keys)
    return df.sort(
        ["revenue"] + keys,
        descending=[True] + [False] * len(keys),
        nulls_last=True,
        maintain_order=True,
    )


def revenue_by(
    df: pl.DataFrame,
    keys: Sequence[str],
    extra: Optional[Sequence[pl.Expr]] = None,
) -> pl.DataFrame:
    """
    Grouped revenue metrics.

    Args:
        df: Flattened rows
        keys: Grouping columns
        extra: Additional aggregation expressions

    Returns:
        One row per key combination, sorted by revenue descending then keys
    """
    keys = list(keys)
    missing = [k for k in keys if k not in df.columns]
    if missing:
        raise ValueError(f"Grouping columns not found: {missing}")

    grouped = df.group_by(keys, maintain_order=True).agg(
        [
            pl.len().alias("row_count"),
            pl.col("order_id").n_unique().alias("order_count"),
            pl.col("price").sum().alias("revenue"),
        ]
        + list(extra or [])
    )
    result = _derive_ratios(grouped)
    ordered = keys + list(METRIC_COLUMNS)
    result = result.select(ordered + [c for c in result.columns if c not in ordered])
    return _by_revenue(result, keys)


def product_performance(df: pl.DataFrame, limit: Optional[int] = None) -> pl.DataFrame:
    """Revenue per product"""
    result = revenue_by(df, ["product_id"], extra=[pl.col("seller_id").n_unique().alias("seller_count")])
    return result.head(limit) if limit else result


def seller_performance(df: pl.DataFrame, limit: Optional[int] = None) -> pl.DataFrame:
    """Revenue per seller with distinct customers and products"""
    result = revenue_by(
        df,
        ["seller_id"],
        extra=[
            pl.col("customer_id").n_unique().alias("customer_count"),
            pl.col("product_id").n_unique().alias("product_count"),
        ],
    )
    return result.head(limit) if limit else result


def campaign_attribution(df: pl.DataFrame, level: str = "order") -> pl.DataFrame:
    """
    Revenue per campaign, at order or item level.

    Order-level discounts repeat on every row of an order, so they are
    summed once per order; item-level discounts are summed per row.

    Args:
        df: Flattened rows
        level: "order" or "item"
    """
    if level not in ("order", "item"):
        raise ValueError(f"Unknown campaign level: {level}")

    coupon = f"{level}_campaign_coupon"
    channel = f"{level}_campaign_channel"
    discount = pl.col(f"{level}_campaign_discount")
    if level == "order":
        discount = discount.filter(pl.col("order_id").is_first_distinct())

    result = revenue_by(df, [coupon, channel], extra=[discount.sum().alias("total_discount")])
    return result.with_columns(campaign_flag_expr(coupon))


def geographic_revenue(df: pl.DataFrame) -> pl.DataFrame:
    """Revenue per (state, city)"""
    return revenue_by(
        df,
        ["customer_state", "customer_city"],
        extra=[pl.col("customer_id").n_unique().alias("customer_count")],
    )


def revenue_over_time(df: pl.DataFrame, grain: str = "day") -> pl.DataFrame:
    """
    Revenue per time bucket, in time order.

    Rows without an order_timestamp carry no time key and are excluded.

    Args:
        df: Flattened rows
        grain: "hour", "day", "month" or "weekday"
    """
    if grain not in TIME_GRAINS:
        raise ValueError(f"Unknown time grain: {grain}")
    key = TIME_GRAINS[grain]

    timed = df.filter(pl.col("order_timestamp").is_not_null())
    excluded = df.height - timed.height
    if excluded:
        logger.info("Rows without timestamp excluded", rows=excluded, grain=grain)

    return revenue_by(add_time_features(timed), [key]).sort(key)


def customer_seller_pairs(df: pl.DataFrame, limit: Optional[int] = None) -> pl.DataFrame:
    """Revenue per (customer_id, seller_id) pair"""
    result = revenue_by(df, ["customer_id", "seller_id"])
    return result.head(limit) if limit else result


# =============================================================================
# PARTIAL AGGREGATION
# =============================================================================

def partial_revenue(df: pl.DataFrame, keys: Sequence[str]) -> pl.DataFrame:
    """Additive partial sums for one order-complete partition"""
    return df.group_by(list(keys), maintain_order=True).agg([
        pl.len().alias("row_count"),
        pl.col("order_id").n_unique().alias("order_count"),
        pl.col("price").sum().alias("revenue"),
    ])


def combine_partials(partials: Iterable[pl.DataFrame], keys: Sequence[str]) -> pl.DataFrame:
    """
    Combine partial sums into final revenue metrics.

    Combination is associative and commutative: partials may arrive in any
    order. Matches revenue_by() when each order lies in exactly one partition.
    """
    keys = list(keys)
    frames: List[pl.DataFrame] = [p for p in partials if p.height]
    if not frames:
        empty = pl.DataFrame(
            schema={**{k: pl.Utf8 for k in keys}, "row_count": pl.UInt32, "order_count": pl.UInt32, "revenue": pl.Float64}
        )
        return _derive_ratios(empty).select(keys + list(METRIC_COLUMNS))

    combined = pl.concat(frames, how="vertical_relaxed").group_by(keys).agg([
        pl.col("row_count").sum(),
        pl.col("order_count").sum(),
        pl.col("revenue").sum(),
    ])
    return _by_revenue(_derive_ratios(combined).select(keys + list(METRIC_COLUMNS)), keys)


def partition_by_order(df: pl.DataFrame, partitions: int) -> List[pl.DataFrame]:
    """Split rows into partitions that each hold whole orders"""
    if partitions <= 1 or df.is_empty():
        return [df]
    keyed = df.with_columns((pl.col("order_id").hash(seed=0) % partitions).alias("_partition"))
    return [part.drop("_partition") for part in keyed.partition_by("_partition", maintain_order=True)]


def aggregate_parallel(
    df: pl.DataFrame,
    keys: Sequence[str],
    partitions: int = 4,
    max_workers: Optional[int] = None,
) -> pl.DataFrame:
    """
    revenue_by() computed as partial aggregates on worker threads, then combined.

    Args:
        df: Flattened rows
        keys: Grouping columns
        partitions: Number of order-complete partitions
        max_workers: Thread count (defaults to partitions)
    """
    parts = partition_by_order(df, partitions)
    with ThreadPoolExecutor(max_workers=max_workers or len(parts)) as executor:
        partials = list(executor.map(lambda part: partial_revenue(part, keys), parts))

    logger.debug("Partial aggregates computed", partitions=len(parts), keys=list(keys))
    return combine_partials(partials, keys)
