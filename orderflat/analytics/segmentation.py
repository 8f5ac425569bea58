"""
Customer Segmentation

Customer-level aggregates (one row per customer_id) and deterministic
rank-based binning over them:

- CLV terciles on total spend
- RFM quintile scores (recency, frequency, monetary)
- Churn flags from days since the last order

Bins are equal-sized groups ordered by the metric. Exact ties are broken by
first-seen order so the earlier customer lands in the lower bin, which makes
results reproducible across runs regardless of the engine's own ranking.
"""

from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import polars as pl
import structlog

from orderflat.config import get_settings

logger = structlog.get_logger(__name__)


def customer_value(df: pl.DataFrame) -> pl.DataFrame:
    """
    Aggregate flattened rows to one row per customer, in first-seen order.

    Returns:
        customer_id, total_spend, order_count, item_count, first_order_at,
        last_order_at, avg_order_value
    """
    return (
        df.group_by("customer_id", maintain_order=True)
        .agg([
            pl.col("price").sum().alias("total_spend"),
            pl.col("order_id").n_unique().alias("order_count"),
            pl.len().alias("item_count"),
            pl.col("order_timestamp").min().alias("first_order_at"),
            pl.col("order_timestamp").max().alias("last_order_at"),
        ])
        .with_columns((pl.col("total_spend") / pl.col("order_count")).alias("avg_order_value"))
    )


def _customers(df: pl.DataFrame) -> pl.DataFrame:
    # Accept either flattened rows or an existing customer_value() frame
    if "total_spend" in df.columns:
        return df
    return customer_value(df)


def assign_rank_bins(
    frame: pl.DataFrame,
    metric: str,
    labels: Sequence[Any],
    column: Optional[str] = None,
    nulls_last: bool = True,
) -> pl.DataFrame:
    """
    Split rows into len(labels) equal-sized bins ordered by `metric`.

    Rows are sorted ascending by the metric, ties by their position in
    `frame`; the row at rank r of n gets labels[r * k // n]. Row order of
    the input is preserved in the output.

    Args:
        frame: One row per entity
        metric: Column to rank by
        labels: Bin labels from lowest to highest metric
        column: Output column (defaults to f"{metric}_bin")
        nulls_last: Rank null metrics after every value

    Returns:
        frame with the label column added
    """
    if not labels:
        raise ValueError("At least one bin label is required")

    column = column or f"{metric}_bin"
    labels = list(labels)
    k, n = len(labels), frame.height

    if n == 0:
        return frame.with_columns(pl.Series(column, [], dtype=pl.Series(labels).dtype))

    ranked = (
        frame.with_row_index("_seen")
        .sort([metric, "_seen"], nulls_last=nulls_last, maintain_order=True)
    )
    binned = [labels[rank * k // n] for rank in range(n)]
    ranked = ranked.with_columns(pl.Series(column, binned))

    return ranked.sort("_seen").drop("_seen")


def clv_segments(
    df: pl.DataFrame,
    labels: Optional[Sequence[str]] = None,
    metric: str = "total_spend",
) -> pl.DataFrame:
    """
    CLV terciles over total historical spend.

    Args:
        df: Flattened rows or customer_value() output
        labels: Low-to-high labels (defaults to analytics settings)
        metric: Customer-level metric to bin

    Returns:
        Customer frame with clv_segment
    """
    labels = labels or get_settings().analytics.clv_labels
    return assign_rank_bins(_customers(df), metric, labels, column="clv_segment")


def _reference(df: pl.DataFrame, reference_date: Optional[datetime]) -> Optional[datetime]:
    if reference_date is None:
        latest = df["last_order_at"].max() if "last_order_at" in df.columns else None
        return latest
    if reference_date.tzinfo is None:
        return reference_date.replace(tzinfo=timezone.utc)
    return reference_date.astimezone(timezone.utc)


def _days_since_last_order(reference: Optional[datetime]) -> pl.Expr:
    if reference is None:
        return pl.lit(None, dtype=pl.Float64)
    return (pl.lit(reference) - pl.col("last_order_at")).dt.total_seconds() / 86400


def rfm_scores(
    df: pl.DataFrame,
    reference_date: Optional[datetime] = None,
    bins: Optional[int] = None,
) -> pl.DataFrame:
    """
    RFM scores per customer.

    - Recency: days from last order to the reference date; most recent
      customers score highest, customers without a timestamp score lowest
    - Frequency: distinct orders
    - Monetary: total spend

    Args:
        df: Flattened rows or customer_value() output
        reference_date: Defaults to the latest order timestamp in the data
        bins: Score range 1..bins (defaults to analytics settings)

    Returns:
        Customer frame with recency_days, r/f/m scores, rfm_score ("RFM"
        digits) and rfm_total
    """
    bins = bins or get_settings().analytics.rfm_bins
    customers = _customers(df)
    reference = _reference(customers, reference_date)

    scores = list(range(1, bins + 1))
    rfm = customers.with_columns(_days_since_last_order(reference).alias("recency_days"))
    rfm = assign_rank_bins(rfm, "recency_days", scores[::-1], column="recency_score")
    rfm = assign_rank_bins(rfm, "order_count", scores, column="frequency_score")
    rfm = assign_rank_bins(rfm, "total_spend", scores, column="monetary_score")

    rfm = rfm.with_columns([
        pl.concat_str(
            [pl.col(c).cast(pl.Utf8) for c in ("recency_score", "frequency_score", "monetary_score")]
        ).alias("rfm_score"),
        (pl.col("recency_score") + pl.col("frequency_score") + pl.col("monetary_score"))
        .alias("rfm_total"),
    ])

    logger.info("RFM scores computed", customers=rfm.height, reference_date=str(reference))
    return rfm


def churn_flags(
    df: pl.DataFrame,
    reference_date: Optional[datetime] = None,
    inactive_days: Optional[int] = None,
) -> pl.DataFrame:
    """
    Flag customers whose last order is older than `inactive_days`.

    Customers with no timestamped order get churned = null (unknown).

    Args:
        df: Flattened rows or customer_value() output
        reference_date: Defaults to the latest order timestamp in the data
        inactive_days: Threshold (defaults to analytics settings)
    """
    if inactive_days is None:
        inactive_days = get_settings().analytics.churn_inactive_days
    customers = _customers(df)
    reference = _reference(customers, reference_date)

    return customers.with_columns(
        _days_since_last_order(reference).alias("days_inactive")
    ).with_columns(
        (pl.col("days_inactive") > inactive_days).alias("churned")
    )


def segment_summary(segments: pl.DataFrame, column: str) -> pl.DataFrame:
    """Customer count and spend per segment label"""
    return (
        segments.group_by(column, maintain_order=True)
        .agg([
            pl.len().alias("customers"),
            pl.col("total_spend").sum().alias("total_spend"),
            pl.col("total_spend").mean().alias("avg_spend"),
        ])
        .sort(column)
    )
