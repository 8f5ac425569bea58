"""
Upsert Merger

Keyed canonical store of Orders with insert-or-full-replace semantics.

- Keyed by order_id; a matching key is replaced wholesale (no field-level
  merge: a shorter order_items tuple truncates the stored one)
- Same-key merges are serialized by a striped key lock; distinct keys
  mostly proceed independently
- Re-applying the same record leaves the store unchanged
"""

from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, Iterator, List, Optional, Union
import json
import zlib

import structlog

from orderflat.models.records import Order

logger = structlog.get_logger(__name__)


class MergeAction(str, Enum):
    """What a merge did to the store"""
    INSERT = "insert"
    REPLACE = "replace"


@dataclass(frozen=True)
class MergeResult:
    """Outcome of merging one incoming order"""
    action: MergeAction
    order_id: str
    previous: Optional[Order] = None

    @property
    def inserted(self) -> bool:
        return self.action == MergeAction.INSERT


class KeyedOrderStore:
    """
    In-memory canonical store keyed by order_id.

    Orders iterate in first-insertion order; a replace keeps the key's
    original position.

    Example:
        store = KeyedOrderStore()
        result = store.upsert(order)
    """

    def __init__(self, orders: Optional[Iterable[Order]] = None, lock_stripes: int = 64):
        self._orders: Dict[str, Order] = {}
        # Keys hash onto a fixed pool of locks
        self._key_locks: List[Lock] = [Lock() for _ in range(max(lock_stripes, 1))]
        self._registry_lock = Lock()
        for order in orders or []:
            self.upsert(order)

    def _lock_for(self, order_id: str) -> Lock:
        return self._key_locks[partition_for(order_id, len(self._key_locks))]

    def upsert(self, incoming: Order) -> MergeResult:
        """Insert the order, or replace every field of the stored one"""
        with self._lock_for(incoming.order_id):
            previous = self._orders.get(incoming.order_id)
            with self._registry_lock:
                self._orders[incoming.order_id] = incoming

        if previous is None:
            return MergeResult(MergeAction.INSERT, incoming.order_id)
        return MergeResult(MergeAction.REPLACE, incoming.order_id, previous)

    def delete(self, order_id: str) -> bool:
        """Remove an order; returns False when the key is absent"""
        with self._lock_for(order_id):
            with self._registry_lock:
                removed = self._orders.pop(order_id, None)
        if removed is not None:
            logger.info("Order deleted", order_id=order_id)
        return removed is not None

    def get(self, order_id: str) -> Optional[Order]:
        with self._registry_lock:
            return self._orders.get(order_id)

    def orders(self) -> List[Order]:
        """Snapshot of stored orders in insertion order"""
        with self._registry_lock:
            return list(self._orders.values())

    def snapshot(self) -> Dict[str, Order]:
        with self._registry_lock:
            return dict(self._orders)

    def __contains__(self, order_id: object) -> bool:
        with self._registry_lock:
            return order_id in self._orders

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._orders)

    def __iter__(self) -> Iterator[Order]:
        return iter(self.orders())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyedOrderStore):
            return NotImplemented
        return self.snapshot() == other.snapshot()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def dump(self, path: Union[str, Path]) -> Path:
        """Write the store as NDJSON, one canonical order per line"""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            for order in self.orders():
                fh.write(order.model_dump_json())
                fh.write("\n")
        tmp.replace(target)
        logger.info("Canonical store saved", path=str(target), orders=len(self))
        return target

    @classmethod
    def load(cls, path: Union[str, Path]) -> "KeyedOrderStore":
        """Read a store written by dump(); a missing file gives an empty store"""
        source = Path(path)
        store = cls()
        if not source.exists():
            return store
        with open(source, "r", encoding="utf-8") as fh:
            for line in fh:
                if line.strip():
                    store.upsert(Order.model_validate(json.loads(line)))
        logger.info("Canonical store loaded", path=str(source), orders=len(store))
        return store


def merge(incoming: Order, store: KeyedOrderStore) -> MergeResult:
    """
    Upsert one canonical order.

    Args:
        incoming: Validated order
        store: Keyed canonical store

    Returns:
        MergeResult tagged INSERT or REPLACE
    """
    result = store.upsert(incoming)
    logger.debug("Order merged", order_id=incoming.order_id, action=result.action.value)
    return result


def partition_for(order_id: str, partitions: int) -> int:
    """Stable key-hash partition for an order_id"""
    return zlib.crc32(order_id.encode("utf-8")) % partitions


def merge_batch(
    incoming: Iterable[Order],
    store: KeyedOrderStore,
    max_workers: int = 4,
) -> List[MergeResult]:
    """
    Merge many orders with key-partitioned parallelism.

    Orders are partitioned by key hash so every key is handled by exactly
    one worker, in input order; the last record for a key wins.

    Returns:
        MergeResults in input order
    """
    orders = list(incoming)
    if max_workers <= 1 or len(orders) <= 1:
        return [merge(order, store) for order in orders]

    partitions: Dict[int, List[int]] = defaultdict(list)
    for index, order in enumerate(orders):
        partitions[partition_for(order.order_id, max_workers)].append(index)

    results: List[Optional[MergeResult]] = [None] * len(orders)

    def run_partition(indices: List[int]) -> None:
        for index in indices:
            results[index] = merge(orders[index], store)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        for future in [executor.submit(run_partition, idx) for idx in partitions.values()]:
            future.result()

    return [r for r in results if r is not None]
