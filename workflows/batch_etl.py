"""
Prefect Workflow Orchestration - Batch Flattening

Workflow for batch order processing with:
- Resumable pipeline runs (checkpoint + canonical store snapshot)
- Export of the flattened projection for BI tooling
- KPI report tables
- Alerting on rejected records and aborted batches
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

from prefect import flow, task, get_run_logger

from orderflat.analytics.reports import build_report, write_report
from orderflat.config import get_settings
from orderflat.database.connection import create_store
from orderflat.errors import BatchAborted
from orderflat.ingestion.checkpoint import Checkpoint
from orderflat.ingestion.readers import read_records
from orderflat.transformation.projector import export_frame, read_export
from orderflat.transformation.transformers import OrderPipeline

settings = get_settings()


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="flatten_orders",
    description="Normalize, validate, merge and flatten raw orders",
)
def flatten_orders(
    input_path: str,
    store_url: Optional[str] = None,
    export_path: Optional[str] = None,
) -> dict:
    """Run the pipeline over one raw NDJSON file"""
    logger = get_run_logger()

    curated = Path(settings.data_lake.curated_path)
    pipeline = OrderPipeline(
        store=create_store(store_url),
        checkpoint=Checkpoint(
            settings.pipeline.checkpoint_path or curated / "checkpoint.json",
            source=input_path,
            interval=settings.pipeline.checkpoint_interval,
        ),
        state_path=settings.pipeline.state_path or str(curated / "canonical_orders.jsonl"),
        campaign_flag=True,
    )

    summary = pipeline.run(read_records(input_path), source=input_path)
    logger.info(
        f"Pipeline {summary.status.value}: {summary.committed} merged, "
        f"{summary.total_rejected} rejected, {summary.projected_rows} rows projected"
    )

    export_path = export_path or str(curated / f"order_items_flat.{settings.data_lake.export_format}")
    export_frame(pipeline.projection(), export_path, settings.data_lake.export_format)

    result = summary.model_dump(mode="json")
    result["export_path"] = export_path
    return result


@task(
    name="build_reports",
    description="Compute KPI tables from the flattened export",
    retries=1,
    retry_delay_seconds=30,
)
def build_reports(export_path: str, output_dir: str) -> dict:
    """Aggregate the flattened export into report tables"""
    logger = get_run_logger()

    tables = build_report(read_export(export_path))
    written = write_report(tables, output_dir, "csv")

    logger.info(f"Wrote {len(written)} report tables to {output_dir}")
    return {name: str(path) for name, path in written.items()}


@task(
    name="send_alert",
    description="Send alert notification",
)
def send_alert(
    alert_type: str,
    message: str,
    severity: str = "info",
) -> None:
    """Send alert notification"""
    logger = get_run_logger()
    logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="batch_flatten_orders",
    description="Batch normalization and flattening of nested orders",
)
def batch_flatten_orders(
    input_path: Optional[str] = None,
    store_url: Optional[str] = None,
    report_dir: Optional[str] = None,
) -> dict:
    """
    Batch flattening pipeline.

    Steps:
    1. Flatten raw orders into the store and export the projection
    2. Build KPI report tables
    3. Alert on rejections or an aborted batch
    """
    logger = get_run_logger()

    input_path = input_path or str(Path(settings.data_lake.raw_path) / "orders.jsonl")
    report_dir = report_dir or str(Path(settings.data_lake.curated_path) / "reports")
    started = datetime.now()

    logger.info(f"Starting batch flattening for {input_path}")
    results = {"input_path": input_path, "steps": {}}

    try:
        run = flatten_orders(input_path, store_url=store_url)
        results["steps"]["flatten"] = run

        if sum(run["rejected"].values()):
            send_alert(
                alert_type="Rejected Records",
                message=f"{sum(run['rejected'].values())} records rejected: {run['rejected']}",
                severity="warning",
            )

        results["steps"]["reports"] = build_reports(run["export_path"], report_dir)
        results["status"] = "success"

    except BatchAborted as e:
        send_alert(
            alert_type="Batch Aborted",
            message=f"{e} ({e.committed} records committed; re-run resumes after them)",
            severity="critical",
        )
        results["status"] = "failed"
        results["error"] = str(e)
        raise

    results["duration_seconds"] = (datetime.now() - started).total_seconds()
    return results


if __name__ == "__main__":
    batch_flatten_orders()
