"""
Data Ingestion Module
"""
from .readers import RawRecord, read_records
from .merger import KeyedOrderStore, MergeAction, MergeResult, merge, merge_batch
from .checkpoint import Checkpoint

__all__ = [
    "RawRecord",
    "read_records",
    "KeyedOrderStore",
    "MergeAction",
    "MergeResult",
    "merge",
    "merge_batch",
    "Checkpoint",
]
