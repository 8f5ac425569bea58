"""
Order Pipeline

Batch orchestrator that combines normalization, validation, merging,
projection and the store write into one resumable run:

1. Fan out normalize + validate over raw records (serial, threads or processes)
2. Merge accepted orders into the keyed canonical store, in input order,
   checkpointing after every fully processed record
3. Re-project the whole canonical store
4. Replace the flattened table in the store, retrying transient failures

Per-record failures are counted and never abort the batch; store failures
abort it with the number of records already committed.
"""

from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from itertools import islice
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union
import time

import polars as pl
import structlog
from prometheus_client import Counter, Histogram
from pydantic import BaseModel, Field
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from orderflat.config import get_settings
from orderflat.database.connection import create_store
from orderflat.database.store import TableStore
from orderflat.errors import BatchAborted, RecordRejected, RejectionReason, SchemaMismatch, StoreUnavailable
from orderflat.ingestion.checkpoint import Checkpoint
from orderflat.ingestion.merger import KeyedOrderStore, MergeAction, merge
from orderflat.ingestion.readers import RawRecord, records_from
from orderflat.models.records import Order
from orderflat.quality.validators import create_projection_validator, validate
from .enrichers import apply_campaign_flag
from .normalizers import normalize
from .projector import project_orders, to_frame

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

RECORDS_PROCESSED = Counter(
    "orderflat_records_total",
    "Raw records processed by outcome",
    ["outcome"],
)

STORE_WRITE_RETRIES = Counter(
    "orderflat_store_write_retries_total",
    "Retried batch writes after a transient store failure",
)

BATCH_DURATION = Histogram(
    "orderflat_batch_duration_seconds",
    "Wall time of a pipeline run",
)


# =============================================================================
# RESULTS
# =============================================================================

class RunStatus(str, Enum):
    """Pipeline run status"""
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RunSummary(BaseModel):
    """Counts reported at the end of a run"""
    source: Optional[str] = None
    status: RunStatus = RunStatus.RUNNING
    normalized: int = 0
    rejected: Dict[str, int] = Field(default_factory=dict)
    merged_inserted: int = 0
    merged_updated: int = 0
    projected_rows: int = 0
    skipped: int = 0
    cancelled: bool = False
    table: Optional[str] = None
    quality_status: Optional[str] = None
    error_message: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    timings: Dict[str, float] = Field(default_factory=dict)

    @property
    def total_rejected(self) -> int:
        return sum(self.rejected.values())

    @property
    def committed(self) -> int:
        """Records merged into the canonical store during this run"""
        return self.merged_inserted + self.merged_updated

    def reject(self, reason: RejectionReason) -> None:
        self.rejected[reason.value] = self.rejected.get(reason.value, 0) + 1

    def finish(self, status: RunStatus) -> None:
        self.status = status
        self.completed_at = datetime.now(timezone.utc)
        self.timings["total"] = (self.completed_at - self.started_at).total_seconds()


@dataclass(frozen=True)
class RecordOutcome:
    """Normalize + validate result for one raw record"""
    offset: int
    order: Optional[Order] = None
    reason: Optional[RejectionReason] = None
    order_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.order is not None


def process_record(record: RawRecord) -> RecordOutcome:
    """
    Normalize and validate one raw record.

    Pure and module-level so it can run on any worker, including a
    separate process.
    """
    if not record.ok:
        return RecordOutcome(
            record.offset,
            reason=RejectionReason.MALFORMED_RECORD,
            error=record.parse_error,
        )

    try:
        order = normalize(record.data)
    except RecordRejected as e:
        return RecordOutcome(record.offset, reason=e.reason, order_id=e.order_id, error=str(e))

    validation = validate(order)
    if not validation.passed:
        return RecordOutcome(
            record.offset,
            reason=validation.reason,
            order_id=order.order_id or None,
            error=str(validation.error),
        )
    return RecordOutcome(record.offset, order=order, order_id=order.order_id)


def _chunks(records: Iterable[RawRecord], size: int) -> Iterator[List[RawRecord]]:
    iterator = iter(records)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


# =============================================================================
# PIPELINE
# =============================================================================

class OrderPipeline:
    """
    Main batch pipeline orchestrator.

    The canonical store and checkpoint live on the instance, so a cancelled
    or aborted run resumes on the next run() call; pass a state_path and a
    file-backed Checkpoint to resume across processes. A completed run
    clears the checkpoint.

    Example:
        pipeline = OrderPipeline(store=create_store("sqlite:///warehouse.db"))
        summary = pipeline.run(read_records("orders.jsonl"))
    """

    def __init__(
        self,
        store: Optional[TableStore] = None,
        canonical: Optional[KeyedOrderStore] = None,
        checkpoint: Optional[Checkpoint] = None,
        table: Optional[str] = None,
        executor: Optional[str] = None,
        max_workers: Optional[int] = None,
        chunk_size: Optional[int] = None,
        state_path: Optional[str] = None,
        retry_attempts: Optional[int] = None,
        retry_wait: Optional[wait_base] = None,
        campaign_flag: bool = False,
    ):
        settings = get_settings()
        self.store = store if store is not None else create_store()
        self.table = table or settings.store.flat_table
        self.executor = executor or settings.pipeline.executor
        self.max_workers = max_workers or settings.pipeline.max_workers
        self.chunk_size = chunk_size or settings.pipeline.chunk_size
        self.state_path = state_path if state_path is not None else settings.pipeline.state_path
        self.campaign_flag = campaign_flag

        if canonical is None:
            canonical = KeyedOrderStore.load(self.state_path) if self.state_path else KeyedOrderStore()
        self.canonical = canonical

        self.checkpoint = checkpoint or Checkpoint(
            settings.pipeline.checkpoint_path,
            interval=settings.pipeline.checkpoint_interval,
        )
        if self.state_path:
            # State goes to disk before any offset that depends on it
            self.checkpoint.on_save = self._save_state

        self.retry_attempts = retry_attempts or settings.store.retry_attempts
        self.retry_wait = retry_wait or wait_exponential(
            multiplier=settings.store.retry_multiplier,
            min=settings.store.retry_min_seconds,
            max=settings.store.retry_max_seconds,
        )

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    @contextmanager
    def _pool(self) -> Iterator[Optional[Executor]]:
        if self.executor == "serial" or self.max_workers <= 1:
            yield None
        elif self.executor == "process":
            with ProcessPoolExecutor(max_workers=self.max_workers) as pool:
                yield pool
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                yield pool

    def _outcomes(self, pool: Optional[Executor], chunk: List[RawRecord]) -> Iterator[RecordOutcome]:
        if pool is None:
            return map(process_record, chunk)
        if isinstance(pool, ProcessPoolExecutor):
            return pool.map(process_record, chunk, chunksize=max(len(chunk) // self.max_workers, 1))
        return pool.map(process_record, chunk)

    # -------------------------------------------------------------------------
    # Per-record bookkeeping
    # -------------------------------------------------------------------------

    def _apply(self, outcome: RecordOutcome, summary: RunSummary) -> None:
        # Validation rejections were normalized before being rejected
        if outcome.reason not in (RejectionReason.TYPE_COERCION, RejectionReason.MALFORMED_RECORD):
            summary.normalized += 1

        if not outcome.accepted:
            summary.reject(outcome.reason)
            RECORDS_PROCESSED.labels(outcome=outcome.reason.value).inc()
            logger.warning(
                "Record rejected",
                offset=outcome.offset,
                order_id=outcome.order_id,
                reason=outcome.reason.value,
                error=outcome.error,
            )
            return

        result = merge(outcome.order, self.canonical)
        if result.action == MergeAction.INSERT:
            summary.merged_inserted += 1
            RECORDS_PROCESSED.labels(outcome="inserted").inc()
        else:
            summary.merged_updated += 1
            RECORDS_PROCESSED.labels(outcome="updated").inc()

    # -------------------------------------------------------------------------
    # Store write
    # -------------------------------------------------------------------------

    def _log_retry(self, retry_state: RetryCallState) -> None:
        STORE_WRITE_RETRIES.inc()
        logger.warning(
            "Store write failed, retrying",
            table=self.table,
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        )

    def _publish(self, df: pl.DataFrame) -> int:
        written = self.store.create_or_replace_table(self.table, df)
        if self.campaign_flag:
            apply_campaign_flag(self.store, self.table)
        return written

    def _write(self, df: pl.DataFrame, summary: RunSummary) -> None:
        retryer = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception_type(StoreUnavailable),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            retryer(self._publish, df)
        except (StoreUnavailable, SchemaMismatch) as e:
            summary.error_message = str(e)
            summary.finish(RunStatus.FAILED)
            logger.error(
                "Batch aborted on store error",
                table=self.table,
                error=str(e),
                committed=summary.committed,
            )
            raise BatchAborted(
                f"Store write to {self.table} failed: {e}",
                committed=summary.committed,
                summary=summary,
            ) from e

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _save_state(self) -> None:
        self.canonical.dump(self.state_path)

    def _persist(self) -> None:
        """Write canonical state, then the checkpoint that depends on it"""
        self.checkpoint.save()
        if self.state_path and self.checkpoint.path is None:
            self._save_state()

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def projection(self) -> pl.DataFrame:
        """Flattened frame of the whole canonical store"""
        return to_frame(project_orders(self.canonical.orders()))

    def run(
        self,
        records: Iterable[Union[RawRecord, Dict[str, Any]]],
        cancel_event: Optional[Any] = None,
        source: Optional[str] = None,
    ) -> RunSummary:
        """
        Process a batch of raw records.

        Args:
            records: RawRecords (e.g. from read_records()) or raw dicts
            cancel_event: threading.Event-like; checked between records
            source: Input label for logs and the summary; binds the checkpoint
                to this source

        Returns:
            RunSummary

        Raises:
            BatchAborted: The store write failed fatally or ran out of retries
        """
        summary = RunSummary(source=source, table=self.table)
        checkpoint = self.checkpoint
        if source is not None:
            checkpoint.bind(source)
        started = time.perf_counter()

        logger.info(
            "Batch started",
            source=source,
            executor=self.executor,
            max_workers=self.max_workers,
            resume_after=checkpoint.last_offset,
        )

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        try:
            with self._pool() as pool:
                for chunk in _chunks(records_from(records), self.chunk_size):
                    if cancelled():
                        summary.cancelled = True
                        break

                    pending = [r for r in chunk if not checkpoint.is_done(r.offset)]
                    summary.skipped += len(chunk) - len(pending)
                    if len(pending) < len(chunk):
                        RECORDS_PROCESSED.labels(outcome="skipped").inc(len(chunk) - len(pending))

                    for outcome in self._outcomes(pool, pending):
                        if cancelled():
                            summary.cancelled = True
                            break
                        self._apply(outcome, summary)
                        checkpoint.mark(outcome.offset)

                    if summary.cancelled:
                        break
        finally:
            # Also on a crash mid-stream, so a rerun resumes with matching state
            self._persist()
        summary.timings["process"] = time.perf_counter() - started

        if summary.cancelled:
            summary.finish(RunStatus.CANCELLED)
            logger.info("Batch cancelled", committed=summary.committed, last_offset=checkpoint.last_offset)
            return summary

        projected = time.perf_counter()
        df = self.projection()
        summary.projected_rows = df.height
        quality = create_projection_validator(
            expected_rows=sum(order.item_count for order in self.canonical.orders())
        ).validate(df)
        summary.quality_status = quality.status.value
        summary.timings["project"] = time.perf_counter() - projected

        written = time.perf_counter()
        self._write(df, summary)
        summary.timings["write"] = time.perf_counter() - written

        # The batch is fully published; the next run starts from offset 0
        checkpoint.clear()
        summary.finish(RunStatus.COMPLETED)
        BATCH_DURATION.observe(time.perf_counter() - started)
        logger.info(
            "Batch completed",
            source=source,
            normalized=summary.normalized,
            rejected=summary.rejected,
            inserted=summary.merged_inserted,
            updated=summary.merged_updated,
            projected_rows=summary.projected_rows,
            skipped=summary.skipped,
        )
        return summary
