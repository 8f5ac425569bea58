"""
KPI Reports

Bundles the aggregation contracts and segmentations into named tables for
reporting output, and writes them for BI tooling.
"""

from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Union

import polars as pl
import structlog

from orderflat.transformation.projector import export_frame
from .aggregations import (
    campaign_attribution,
    customer_seller_pairs,
    geographic_revenue,
    product_performance,
    revenue_over_time,
    seller_performance,
)
from .segmentation import churn_flags, clv_segments, rfm_scores, segment_summary

logger = structlog.get_logger(__name__)


def build_report(
    df: pl.DataFrame,
    reference_date: Optional[datetime] = None,
    top: int = 20,
) -> Dict[str, pl.DataFrame]:
    """
    Compute every KPI table over a flattened frame.

    Args:
        df: Flattened rows
        reference_date: Reference for recency and churn
        top: Row limit for product/seller/pair rankings

    Returns:
        Table name -> DataFrame
    """
    clv = clv_segments(df)
    rfm = rfm_scores(df, reference_date=reference_date)

    tables = {
        "top_products": product_performance(df, limit=top),
        "top_sellers": seller_performance(df, limit=top),
        "customer_seller_pairs": customer_seller_pairs(df, limit=top),
        "campaigns_order_level": campaign_attribution(df, level="order"),
        "campaigns_item_level": campaign_attribution(df, level="item"),
        "revenue_by_state_city": geographic_revenue(df),
        "revenue_by_month": revenue_over_time(df, grain="month"),
        "revenue_by_hour": revenue_over_time(df, grain="hour"),
        "clv_segments": clv,
        "clv_summary": segment_summary(clv, "clv_segment"),
        "rfm_scores": rfm,
        "churn": churn_flags(df, reference_date=reference_date),
    }
    logger.info("Report built", tables=len(tables), rows=df.height)
    return tables


def write_report(
    tables: Dict[str, pl.DataFrame],
    output_dir: Union[str, Path],
    file_format: str = "csv",
) -> Dict[str, Path]:
    """Write each report table to <output_dir>/<name>.<format>"""
    directory = Path(output_dir)
    return {
        name: export_frame(table, directory / f"{name}.{file_format}", file_format)
        for name, table in tables.items()
    }
