"""
Analytics Module
"""
from .aggregations import (
    aggregate_parallel,
    campaign_attribution,
    customer_seller_pairs,
    geographic_revenue,
    product_performance,
    revenue_by,
    revenue_over_time,
    seller_performance,
)
from .segmentation import assign_rank_bins, churn_flags, clv_segments, customer_value, rfm_scores

__all__ = [
    "aggregate_parallel",
    "campaign_attribution",
    "customer_seller_pairs",
    "geographic_revenue",
    "product_performance",
    "revenue_by",
    "revenue_over_time",
    "seller_performance",
    "assign_rank_bins",
    "churn_flags",
    "clv_segments",
    "customer_value",
    "rfm_scores",
]
