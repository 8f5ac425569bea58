"""
SQL Store Connection Management

SQLAlchemy 2.0 implementation of the TableStore contract. Driver and
connectivity failures surface as StoreUnavailable (retryable); schema
problems surface as SchemaMismatch (fatal).
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

import polars as pl
import structlog
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    and_,
    create_engine,
    distinct,
    func,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    NoSuchTableError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.pool import StaticPool

from orderflat.config import get_settings
from orderflat.database.store import (
    Aggregate,
    Filter,
    Ordering,
    Rows,
    TableStore,
    PolarsTableStore,
    as_frame,
    check_aggregates,
    check_filters,
)
from orderflat.errors import SchemaMismatch, StoreError, StoreUnavailable

logger = structlog.get_logger(__name__)


_SQL_TYPES = {
    "str": String,
    "int": Integer,
    "float": Float,
    "bool": Boolean,
    "datetime": lambda: DateTime(timezone=True),
}


def _sql_type_for(dtype: pl.DataType):
    """SQLAlchemy column type for a polars dtype"""
    if dtype == pl.Boolean:
        return Boolean()
    if dtype.is_integer():
        return Integer()
    if dtype.is_float() or dtype.is_decimal():
        return Float()
    if isinstance(dtype, pl.Datetime):
        return DateTime(timezone=True)
    return String()


class SqlTableStore(TableStore):
    """
    TableStore on a SQL database via SQLAlchemy Core.

    Example:
        store = SqlTableStore("sqlite:///warehouse.db")
        store.create_or_replace_table("order_items_flat", df)
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        engine_config: Dict[str, Any] = {"echo": echo, "pool_pre_ping": True}

        # In-memory SQLite lives on one connection; share it across threads
        if url in ("sqlite://", "sqlite:///:memory:"):
            engine_config.update(
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )

        self._engine: Engine = create_engine(url, **engine_config)
        logger.info("SQL store created", dialect=self._engine.dialect.name)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Translate driver errors into the store error taxonomy"""
        try:
            yield
        except NoSuchTableError as e:
            raise SchemaMismatch(f"{operation}: table not found: {e}") from e
        except (OperationalError, InterfaceError, DisconnectionError) as e:
            logger.warning("Store unavailable", operation=operation, error=str(e))
            raise StoreUnavailable(f"{operation}: {e}") from e
        except SQLAlchemyError as e:
            raise StoreError(f"{operation}: {e}") from e

    def _quote(self, identifier: str) -> str:
        return self._engine.dialect.identifier_preparer.quote(identifier)

    def _reflect(self, table: str) -> Table:
        return Table(table, MetaData(), autoload_with=self._engine)

    @staticmethod
    def _require_columns(table: Table, columns: Sequence[str]) -> None:
        missing = [c for c in columns if c not in table.c]
        if missing:
            raise SchemaMismatch(f"Columns not found in {table.name}: {missing}")

    @staticmethod
    def _where(table: Table, filters: Optional[Sequence[Filter]]):
        conditions = []
        for column, op, value in check_filters(filters):
            col = table.c[column]
            if op == "==":
                conditions.append(col == value)
            elif op == "!=":
                conditions.append(col != value)
            elif op == "<":
                conditions.append(col < value)
            elif op == "<=":
                conditions.append(col <= value)
            elif op == ">":
                conditions.append(col > value)
            elif op == ">=":
                conditions.append(col >= value)
            else:
                conditions.append(col.in_(list(value)))
        return and_(*conditions) if conditions else None

    # -------------------------------------------------------------------------
    # TableStore
    # -------------------------------------------------------------------------

    def create_or_replace_table(self, name: str, rows: Rows) -> int:
        df = as_frame(rows)
        columns = [Column(column, _sql_type_for(dtype)) for column, dtype in df.schema.items()]
        records = df.to_dicts()

        with self._guard("create_or_replace_table"):
            with self._engine.begin() as conn:
                conn.execute(text(f"DROP TABLE IF EXISTS {self._quote(name)}"))
                table = Table(name, MetaData(), *columns)
                table.create(conn)
                if records:
                    conn.execute(table.insert(), records)

        logger.info("Table replaced", table=name, rows=len(records))
        return len(records)

    def insert_rows(self, table: str, rows: Rows) -> int:
        df = as_frame(rows)
        with self._guard("insert_rows"):
            target = self._reflect(table)
            expected = {c.name for c in target.columns}
            if set(df.columns) != expected:
                raise SchemaMismatch(
                    f"Columns {sorted(df.columns)} do not match table {table} {sorted(expected)}"
                )
            records = df.to_dicts()
            if records:
                with self._engine.begin() as conn:
                    conn.execute(target.insert(), records)

        logger.info("Rows inserted", table=table, rows=len(records))
        return len(records)

    def update_where(
        self,
        table: str,
        filters: Sequence[Filter],
        assignments: Mapping[str, Any],
    ) -> int:
        with self._guard("update_where"):
            target = self._reflect(table)
            self._require_columns(target, [c for c, _, _ in filters] + list(assignments))
            stmt = update(target).values(**assignments)
            where = self._where(target, filters)
            if where is not None:
                stmt = stmt.where(where)
            with self._engine.begin() as conn:
                matched = conn.execute(stmt).rowcount

        logger.info("Rows updated", table=table, rows=matched, columns=list(assignments))
        return matched

    def add_column(self, table: str, column: str, column_type: str, default: Any = None) -> None:
        if column_type not in _SQL_TYPES:
            raise ValueError(f"Unsupported column type: {column_type}")
        with self._guard("add_column"):
            target = self._reflect(table)
            if column in target.c:
                raise SchemaMismatch(f"Column already exists in {table}: {column}")
            sql_type = _SQL_TYPES[column_type]().compile(dialect=self._engine.dialect)
            with self._engine.begin() as conn:
                conn.execute(
                    text(f"ALTER TABLE {self._quote(table)} ADD COLUMN {self._quote(column)} {sql_type}")
                )
        if default is not None:
            self.update_where(table, [], {column: default})
        logger.info("Column added", table=table, column=column, type=column_type)

    def drop_column(self, table: str, column: str) -> None:
        with self._guard("drop_column"):
            target = self._reflect(table)
            self._require_columns(target, [column])
            with self._engine.begin() as conn:
                conn.execute(
                    text(f"ALTER TABLE {self._quote(table)} DROP COLUMN {self._quote(column)}")
                )
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
        with self._guard("query_group_by"):
            target = self._reflect(table)
            self._require_columns(
                target,
                list(keys) + [c for _, c in aggregates.values() if c != "*"],
            )

            labelled = {key: target.c[key] for key in keys}
            for alias, (agg, column) in aggregates.items():
                if agg == "count":
                    expr = func.count() if column == "*" else func.count(target.c[column])
                elif agg == "n_unique":
                    expr = func.count(distinct(target.c[column]))
                elif agg == "mean":
                    expr = func.avg(target.c[column])
                else:
                    expr = getattr(func, agg)(target.c[column])
                labelled[alias] = expr.label(alias)

            stmt = select(*labelled.values())
            where = self._where(target, filters)
            if where is not None:
                stmt = stmt.where(where)
            if keys:
                stmt = stmt.group_by(*[target.c[key] for key in keys])
            for column, descending in order_by or []:
                expr = labelled[column]
                stmt = stmt.order_by(expr.desc() if descending else expr.asc())
            if limit is not None:
                stmt = stmt.limit(limit)

            with self._engine.connect() as conn:
                rows = [dict(r) for r in conn.execute(stmt).mappings()]

        if not rows:
            return pl.DataFrame({name: [] for name in labelled})
        return pl.DataFrame(rows, infer_schema_length=None)

    def read_table(self, table: str) -> pl.DataFrame:
        with self._guard("read_table"):
            target = self._reflect(table)
            with self._engine.connect() as conn:
                rows = [dict(r) for r in conn.execute(select(target)).mappings()]
        if not rows:
            return pl.DataFrame({c.name: [] for c in target.columns})
        return pl.DataFrame(rows, infer_schema_length=None)

    def table_names(self) -> List[str]:
        with self._guard("table_names"):
            metadata = MetaData()
            metadata.reflect(bind=self._engine)
            return list(metadata.tables)

    def ping(self) -> None:
        """Round-trip to the database; raises StoreUnavailable when down"""
        with self._guard("ping"):
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))

    def close(self) -> None:
        """Dispose the connection pool"""
        self._engine.dispose()
        logger.info("SQL store connection pool closed")


def create_store(url: Optional[str] = None, echo: Optional[bool] = None) -> TableStore:
    """
    Build the configured store.

    Args:
        url: SQLAlchemy URL; empty selects the in-memory polars store
        echo: Echo SQL statements

    Returns:
        TableStore implementation
    """
    settings = get_settings()
    url = settings.store.url if url is None else url
    if not url:
        return PolarsTableStore()
    return SqlTableStore(url, echo=settings.store.echo if echo is None else echo)
