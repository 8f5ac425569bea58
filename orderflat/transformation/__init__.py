"""
Data Transformation Module
"""
from .normalizers import OrderNormalizer, normalize
from .projector import OrderProjection, project, project_orders, to_frame, export_frame
from .enrichers import add_campaign_flag, apply_campaign_flag, add_time_features
from .transformers import OrderPipeline, RunSummary, RunStatus

__all__ = [
    "OrderNormalizer",
    "normalize",
    "OrderProjection",
    "project",
    "project_orders",
    "to_frame",
    "export_frame",
    "add_campaign_flag",
    "apply_campaign_flag",
    "add_time_features",
    "OrderPipeline",
    "RunSummary",
    "RunStatus",
]
