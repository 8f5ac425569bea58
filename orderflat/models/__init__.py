"""
Canonical Record Model
"""
from .records import (
    CAMPAIGN_USED,
    FLAT_COLUMNS,
    NO_CAMPAIGN,
    NOT_USING_CAMPAIGNS,
    UNKNOWN,
    CampaignInfo,
    Customer,
    FlatRow,
    LineItem,
    Order,
)

__all__ = [
    "CAMPAIGN_USED",
    "FLAT_COLUMNS",
    "NO_CAMPAIGN",
    "NOT_USING_CAMPAIGNS",
    "UNKNOWN",
    "CampaignInfo",
    "Customer",
    "FlatRow",
    "LineItem",
    "Order",
]
