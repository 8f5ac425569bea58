"""
Error Taxonomy

Per-record rejections are isolated and counted; store errors abort the batch.
"""

from enum import Enum
from typing import Any, Optional


class RejectionReason(str, Enum):
    """Why a raw record was kept out of the canonical store"""
    TYPE_COERCION = "type_coercion"
    MISSING_IDENTITY = "missing_identity"
    EMPTY_LINE_ITEMS = "empty_line_items"
    MALFORMED_RECORD = "malformed_record"


class OrderFlatError(Exception):
    """Base exception for the order flattening pipeline."""


# =============================================================================
# RECORD-LEVEL
# =============================================================================

class RecordRejected(OrderFlatError):
    """A single record cannot enter the canonical store."""

    reason: RejectionReason = RejectionReason.MALFORMED_RECORD

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id


class TypeCoercionError(RecordRejected):
    """A field could not be coerced to its canonical type."""

    reason = RejectionReason.TYPE_COERCION

    def __init__(self, path: str, value: Any, message: Optional[str] = None):
        self.path = path
        self.value = value
        detail = message or "cannot be coerced"
        super().__init__(f"{path}: {detail} (got {value!r})")


class MissingIdentity(RecordRejected):
    """order_id or customer.customer_id is empty."""

    reason = RejectionReason.MISSING_IDENTITY


class EmptyLineItems(RecordRejected):
    """The order carries no line items."""

    reason = RejectionReason.EMPTY_LINE_ITEMS


class MalformedRecord(RecordRejected):
    """The input line is not a JSON object."""

    reason = RejectionReason.MALFORMED_RECORD


# =============================================================================
# STORE / BATCH-LEVEL
# =============================================================================

class StoreError(OrderFlatError):
    """Base class for storage/query engine failures."""


class StoreUnavailable(StoreError):
    """Transient store failure; the batch write may be retried."""


class SchemaMismatch(StoreError):
    """Rows do not match the target table schema. Requires an operator."""


class BatchAborted(OrderFlatError):
    """
    A batch stopped on a store error.

    `committed` is the number of records already merged and checkpointed,
    so a re-run resumes after them.
    """

    def __init__(self, message: str, committed: int = 0, summary: Any = None):
        super().__init__(message)
        self.committed = committed
        self.summary = summary
