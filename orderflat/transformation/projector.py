"""
Flattening Projector

Expands a canonical nested Order into one FlatRow per line item. Order-level
fields (customer, status, timestamp, order campaign) are threaded onto every
row; item-level campaign fields sit beside the order-level ones and never
overwrite them.
"""

from itertools import chain
from pathlib import Path
from typing import Dict, Iterable, Iterator, Sequence, Union

import polars as pl
import structlog

from orderflat.models.records import FlatRow, Order

logger = structlog.get_logger(__name__)


FLAT_SCHEMA: Dict[str, pl.DataType] = {
    "order_id": pl.Utf8,
    "item_position": pl.Int64,
    "customer_id": pl.Utf8,
    "customer_city": pl.Utf8,
    "customer_state": pl.Utf8,
    "order_status": pl.Utf8,
    "order_timestamp": pl.Datetime("us", "UTC"),
    "product_id": pl.Utf8,
    "price": pl.Float64,
    "seller_id": pl.Utf8,
    "shipping_limit_date": pl.Datetime("us", "UTC"),
    "item_campaign_discount": pl.Float64,
    "item_campaign_channel": pl.Utf8,
    "item_campaign_coupon": pl.Utf8,
    "order_campaign_discount": pl.Float64,
    "order_campaign_channel": pl.Utf8,
    "order_campaign_coupon": pl.Utf8,
}

# UTC wall time; CSV carries no zone
CSV_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S%.f"


class OrderProjection(Sequence[FlatRow]):
    """
    Lazy, sized, re-iterable projection of one order.

    Rows are built on iteration; iterating again yields the same rows in
    the same order.
    """

    def __init__(self, order: Order):
        self.order = order

    def __len__(self) -> int:
        return len(self.order.order_items)

    def __iter__(self) -> Iterator[FlatRow]:
        for position in range(len(self)):
            yield self._row(position)

    def __getitem__(self, position):
        if isinstance(position, slice):
            return [self._row(i) for i in range(*position.indices(len(self)))]
        if position < 0:
            position += len(self)
        if not 0 <= position < len(self):
            raise IndexError("line-item position out of range")
        return self._row(position)

    def _row(self, position: int) -> FlatRow:
        order = self.order
        item = order.order_items[position]
        return FlatRow(
            order_id=order.order_id,
            item_position=position,
            customer_id=order.customer.customer_id,
            customer_city=order.customer.city,
            customer_state=order.customer.state,
            order_status=order.order_status,
            order_timestamp=order.order_timestamp,
            product_id=item.product_id,
            price=item.price,
            seller_id=item.seller_id,
            shipping_limit_date=item.shipping_limit_date,
            item_campaign_discount=item.campaign_details.discount,
            item_campaign_channel=item.campaign_details.channel,
            item_campaign_coupon=item.campaign_details.coupon_code,
            order_campaign_discount=order.campaign_details.discount,
            order_campaign_channel=order.campaign_details.channel,
            order_campaign_coupon=order.campaign_details.coupon_code,
        )

    def __repr__(self) -> str:
        return f"OrderProjection(order_id={self.order.order_id!r}, rows={len(self)})"


def project(order: Order) -> OrderProjection:
    """
    Project one order to its line-item rows.

    Args:
        order: Validated canonical order

    Returns:
        OrderProjection with exactly len(order.order_items) rows
    """
    return OrderProjection(order)


def project_orders(orders: Iterable[Order]) -> Iterator[FlatRow]:
    """Chain the projections of many orders, preserving order"""
    return chain.from_iterable(project(order) for order in orders)


def to_frame(rows: Iterable[FlatRow]) -> pl.DataFrame:
    """
    Build the flattened DataFrame with the fixed projection schema.

    Args:
        rows: Flat rows, e.g. from project_orders()

    Returns:
        DataFrame with one row per line item and FLAT_SCHEMA columns
    """
    records = [row.to_record() for row in rows]
    if not records:
        return pl.DataFrame(schema=FLAT_SCHEMA)
    return pl.DataFrame(records, schema=FLAT_SCHEMA)


def export_frame(
    df: pl.DataFrame,
    path: Union[str, Path],
    file_format: str = "parquet",
) -> Path:
    """
    Write a flattened frame for BI tooling.

    Args:
        df: Flattened frame
        path: Output file
        file_format: "parquet" or "csv"

    Returns:
        Path written
    """
    output = Path(path)
    output.parent.mkdir(parents=True, exist_ok=True)

    if file_format == "parquet":
        df.write_parquet(output)
    elif file_format == "csv":
        df.write_csv(output, datetime_format=CSV_DATETIME_FORMAT)
    else:
        raise ValueError(f"Unsupported export format: {file_format}")

    logger.info("Flattened projection exported", rows=df.height, path=str(output), format=file_format)
    return output


def read_export(path: Union[str, Path]) -> pl.DataFrame:
    """
    Read a frame written by export_frame().

    Parquet keeps the projection schema; CSV is read as text and cast back
    to FLAT_SCHEMA, other columns stay text.
    """
    source = Path(path)
    if source.suffix != ".csv":
        return pl.read_parquet(source)

    df = pl.read_csv(source, infer_schema=False)
    casts = []
    for name, dtype in FLAT_SCHEMA.items():
        if name not in df.columns:
            continue
        if isinstance(dtype, pl.Datetime):
            casts.append(
                pl.col(name)
                .str.strptime(pl.Datetime("us"), CSV_DATETIME_FORMAT, strict=False)
                .dt.replace_time_zone("UTC")
            )
        else:
            casts.append(pl.col(name).cast(dtype))
    return df.with_columns(casts)
