"""
Storage/Query Engine Boundary

The pipeline talks to the columnar store only through TableStore:
create/replace, insert, update, schema evolution and grouped queries.
PolarsTableStore keeps every table as an in-memory polars DataFrame;
SqlTableStore (connection.py) runs the same contract on SQLAlchemy.
"""

from abc import ABC, abstractmethod
from threading import RLock
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import polars as pl
import structlog

from orderflat.errors import SchemaMismatch

logger = structlog.get_logger(__name__)


Rows = Union[pl.DataFrame, Sequence[Mapping[str, Any]]]
Filter = Tuple[str, str, Any]
Aggregate = Tuple[str, str]
Ordering = Tuple[str, bool]

FILTER_OPS = ("==", "!=", "<", "<=", ">", ">=", "in")
AGGREGATE_FUNCS = ("count", "sum", "mean", "min", "max", "n_unique")

COLUMN_TYPES: Dict[str, pl.DataType] = {
    "str": pl.Utf8,
    "int": pl.Int64,
    "float": pl.Float64,
    "bool": pl.Boolean,
    "datetime": pl.Datetime("us", "UTC"),
}


def check_filters(filters: Optional[Sequence[Filter]]) -> List[Filter]:
    """Validate (column, op, value) triples"""
    checked = []
    for column, op, value in filters or []:
        if op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter operator: {op}")
        checked.append((column, op, value))
    return checked


def check_aggregates(aggregates: Mapping[str, Aggregate]) -> Dict[str, Aggregate]:
    """Validate {alias: (func, column)} specs"""
    for alias, (func, _column) in aggregates.items():
        if func not in AGGREGATE_FUNCS:
            raise ValueError(f"Unsupported aggregate for {alias}: {func}")
    return dict(aggregates)


class TableStore(ABC):
    """Opaque columnar store used at the batch boundary"""

    @abstractmethod
    def create_or_replace_table(self, name: str, rows: Rows) -> int:
        """Create `name` from rows, dropping any previous table. Returns row count."""

    @abstractmethod
    def insert_rows(self, table: str, rows: Rows) -> int:
        """Append rows whose columns match the table. Returns row count."""

    @abstractmethod
    def update_where(
        self,
        table: str,
        filters: Sequence[Filter],
        assignments: Mapping[str, Any],
    ) -> int:
        """Set columns on matching rows. Returns number of rows matched."""

    @abstractmethod
    def add_column(self, table: str, column: str, column_type: str, default: Any = None) -> None:
        """Add a column of type str/int/float/bool/datetime to every row"""

    @abstractmethod
    def drop_column(self, table: str, column: str) -> None:
        """Remove a column from every row"""

    @abstractmethod
    def query_group_by(
        self,
        table: str,
        keys: Sequence[str],
        aggregates: Mapping[str, Aggregate],
        filters: Optional[Sequence[Filter]] = None,
        order_by: Optional[Sequence[Ordering]] = None,
        limit: Optional[int] = None,
    ) -> pl.DataFrame:
        """Grouped aggregation returning one row per key combination"""

    @abstractmethod
    def read_table(self, table: str) -> pl.DataFrame:
        """Full table contents"""

    @abstractmethod
    def table_names(self) -> List[str]:
        """Names of existing tables"""


# =============================================================================
# POLARS BACKEND
# =============================================================================

def as_frame(rows: Rows) -> pl.DataFrame:
    if isinstance(rows, pl.DataFrame):
        return rows
    return pl.DataFrame(list(rows))


def filter_expr(filters: Sequence[Filter]) -> pl.Expr:
    """Combine filter triples into one polars predicate (AND)"""
    exprs = []
    for column, op, value in check_filters(filters):
        col = pl.col(column)
        if op == "==":
            exprs.append(col == value)
        elif op == "!=":
            exprs.append(col != value)
        elif op == "<":
            exprs.append(col < value)
        elif op == "<=":
            exprs.append(col <= value)
        elif op == ">":
            exprs.append(col > value)
        elif op == ">=":
            exprs.append(col >= value)
        else:
            exprs.append(col.is_in(list(value)))
    if not exprs:
        return pl.lit(True)
    return pl.all_horizontal(exprs)


def aggregate_expr(alias: str, func: str, column: str) -> pl.Expr:
    if func == "count":
        return pl.len().alias(alias) if column == "*" else pl.col(column).count().alias(alias)
    if func == "n_unique":
        return pl.col(column).n_unique().alias(alias)
    return getattr(pl.col(column), func)().alias(alias)


class PolarsTableStore(TableStore):
    """
    In-memory columnar store backed by polars DataFrames.

    Thread-safe: every operation holds one re-entrant lock.
    """

    def __init__(self):
        self._tables: Dict[str, pl.DataFrame] = {}
        self._lock = RLock()

    def _get(self, table: str) -> pl.DataFrame:
        try:
            return self._tables[table]
        except KeyError:
            raise SchemaMismatch(f"Table not found: {table}") from None

    def create_or_replace_table(self, name: str, rows: Rows) -> int:
        df = as_frame(rows)
        with self._lock:
            self._tables[name] = df
        logger.info("Table replaced", table=name, rows=df.height)
        return df.height

    def insert_rows(self, table: str, rows: Rows) -> int:
        df = as_frame(rows)
        with self._lock:
            current = self._get(table)
            if set(df.columns) != set(current.columns):
                raise SchemaMismatch(
                    f"Columns {sorted(df.columns)} do not match table {table} {sorted(current.columns)}"
                )
            try:
                df = df.select(current.columns).cast(current.schema)
            except pl.exceptions.PolarsError as e:
                raise SchemaMismatch(f"Rows do not fit table {table}: {e}") from e
            self._tables[table] = pl.concat([current, df], how="vertical")
        logger.info("Rows inserted", table=table, rows=df.height)
        return df.height

    def update_where(
        self,
        table: str,
        filters: Sequence[Filter],
        assignments: Mapping[str, Any],
    ) -> int:
        with self._lock:
            current = self._get(table)
            for column in assignments:
                if column not in current.columns:
                    raise SchemaMismatch(f"Column not found in {table}: {column}")

            predicate = filter_expr(filters)
            matched = current.filter(predicate).height
            self._tables[table] = current.with_columns(
                [
                    pl.when(predicate)
                    .then(pl.lit(value, dtype=current.schema[column]))
                    .otherwise(pl.col(column))
                    .alias(column)
                    for column, value in assignments.items()
                ]
            )
        logger.info("Rows updated", table=table, rows=matched, columns=list(assignments))
        return matched

    def add_column(self, table: str, column: str, column_type: str, default: Any = None) -> None:
        if column_type not in COLUMN_TYPES:
            raise ValueError(f"Unsupported column type: {column_type}")
        with self._lock:
            current = self._get(table)
            if column in current.columns:
                raise SchemaMismatch(f"Column already exists in {table}: {column}")
            self._tables[table] = current.with_columns(
                pl.lit(default, dtype=COLUMN_TYPES[column_type]).alias(column)
            )
        logger.info("Column added", table=table, column=column, type=column_type)

    def drop_column(self, table: str, column: str) -> None:
        with self._lock:
            current = self._get(table)
            if column not in current.columns:
                raise SchemaMismatch(f"Column not found in {table}: {column}")
            self._tables[table] = current.drop(column)
        logger.info("Column dropped", table=table, column=column)

    def query_group_by(
        self,
        table: str,
        keys: Sequence[str],
        aggregates: Mapping[str, Aggregate],
        filters: Optional[Sequence[Filter]] = None,
        order_by: Optional[Sequence[Ordering]] = None,
        limit: Optional[int] = None,
    ) -> pl.DataFrame:
        aggregates = check_aggregates(aggregates)
        with self._lock:
            df = self._get(table)

        if filters:
            df = df.filter(filter_expr(filters))

        exprs = [aggregate_expr(alias, func, column) for alias, (func, column) in aggregates.items()]
        if keys:
            result = df.group_by(list(keys), maintain_order=True).agg(exprs)
        else:
            result = df.select(exprs)

        if order_by:
            result = result.sort(
                [column for column, _ in order_by],
                descending=[descending for _, descending in order_by],
                maintain_order=True,
            )
        if limit is not None:
            result = result.head(limit)
        return result

    def read_table(self, table: str) -> pl.DataFrame:
        with self._lock:
            return self._get(table)

    def table_names(self) -> List[str]:
        with self._lock:
            return list(self._tables)
