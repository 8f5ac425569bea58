"""
Nested Order Flattening Pipeline
Command-line entry point

Subcommands:
- run: raw NDJSON -> normalized, merged, flattened table (+ optional export)
- report: flattened export -> KPI tables
- generate: synthetic raw NDJSON
"""

import argparse
import json
import signal
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import structlog

from orderflat.analytics.reports import build_report, write_report
from orderflat.config import get_settings
from orderflat.config.logging import configure_logging
from orderflat.data.generators import generate_dataset
from orderflat.database.connection import create_store
from orderflat.errors import BatchAborted
from orderflat.ingestion.checkpoint import Checkpoint
from orderflat.ingestion.readers import read_records
from orderflat.transformation.projector import export_frame, read_export
from orderflat.transformation.transformers import OrderPipeline

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(prog="orderflat", description="Nested order normalization and flattening")
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--log-format", choices=["json", "text"], default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Normalize, merge and flatten raw orders")
    run.add_argument("input", help="NDJSON (.jsonl) or JSON array (.json) file")
    run.add_argument("--store-url", default=None, help="SQLAlchemy URL; empty for in-memory")
    run.add_argument("--table", default=None)
    run.add_argument("--export", default=None, help="Write the flattened projection here")
    run.add_argument("--format", choices=["parquet", "csv"], default=settings.data_lake.export_format)
    run.add_argument("--state", default=None, help="Canonical store snapshot for incremental loads")
    run.add_argument("--checkpoint", default=None, help="Checkpoint file for resumable runs")
    run.add_argument("--workers", type=int, default=None)
    run.add_argument("--executor", choices=["serial", "thread", "process"], default=None)
    run.add_argument("--campaign-flag", action="store_true", help="Add campaign_flag to the stored table")

    report = sub.add_parser("report", help="KPI tables from a flattened export")
    report.add_argument("input", help="Flattened parquet or csv file")
    report.add_argument("--out", default=None, help="Directory for report tables")
    report.add_argument("--format", choices=["parquet", "csv"], default="csv")
    report.add_argument("--reference-date", default=None, help="ISO date for recency/churn")
    report.add_argument("--top", type=int, default=20)

    generate = sub.add_parser("generate", help="Write synthetic raw orders")
    generate.add_argument("--orders", type=int, default=1000)
    generate.add_argument("--out", default=None)
    generate.add_argument("--seed", type=int, default=42)

    return parser


def _run(args: argparse.Namespace) -> int:
    store = create_store(args.store_url)
    source = str(Path(args.input).resolve())
    if args.checkpoint and not args.state:
        logger.warning("Checkpoint without --state: resumed runs will not see earlier orders")

    pipeline = OrderPipeline(
        store=store,
        checkpoint=Checkpoint(args.checkpoint, source=source) if args.checkpoint else None,
        table=args.table,
        executor=args.executor,
        max_workers=args.workers,
        state_path=args.state,
        campaign_flag=args.campaign_flag,
    )

    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.set())

    try:
        summary = pipeline.run(read_records(args.input), cancel_event=cancel, source=source)
    except BatchAborted as e:
        logger.error("Run aborted", error=str(e), committed=e.committed)
        if e.summary is not None:
            print(e.summary.model_dump_json(indent=2))
        return 2
    finally:
        signal.signal(signal.SIGINT, previous)

    if args.export and not summary.cancelled:
        export_frame(pipeline.projection(), args.export, args.format)

    print(summary.model_dump_json(indent=2))
    return 130 if summary.cancelled else 0


def _report(args: argparse.Namespace) -> int:
    df = read_export(args.input)
    reference = None
    if args.reference_date:
        reference = datetime.fromisoformat(args.reference_date)
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=timezone.utc)

    tables = build_report(df, reference_date=reference, top=args.top)
    if args.out:
        written = write_report(tables, args.out, args.format)
        print(json.dumps({name: str(path) for name, path in written.items()}, indent=2))
    else:
        for name, table in tables.items():
            print(f"== {name} ({table.height} rows)")
            print(table)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_format)

    if args.command == "run":
        return _run(args)
    if args.command == "report":
        return _report(args)
    if args.command == "generate":
        path = generate_dataset(args.orders, args.out, seed=args.seed)
        print(path)
        return 0
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
