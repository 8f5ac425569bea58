"""
Unit Tests - Command Line
"""
import json

import polars as pl
import pytest

from orderflat.database import SqlTableStore
from orderflat.main import build_parser, main


@pytest.fixture
def raw_file(tmp_path, raw_orders):
    path = tmp_path / "orders.jsonl"
    path.write_text("\n".join(json.dumps(raw) for raw in raw_orders) + "\n", encoding="utf-8")
    return path


class TestParser:
    """Tests for argument parsing"""

    def test_subcommand_required(self):
        """Running without a subcommand is an error"""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_run_options(self):
        """run accepts store, export and fan-out options"""
        args = build_parser().parse_args(
            ["run", "orders.jsonl", "--store-url", "sqlite://", "--workers", "2", "--executor", "thread"]
        )

        assert args.command == "run"
        assert args.store_url == "sqlite://"
        assert args.workers == 2


class TestCommands:
    """End-to-end command tests"""

    def test_run_exports_projection(self, raw_file, tmp_path, capsys):
        """run prints the summary and writes the flattened export"""
        export = tmp_path / "flat.parquet"

        code = main(["run", str(raw_file), "--export", str(export), "--executor", "serial"])
        summary = json.loads(capsys.readouterr().out)

        assert code == 0
        assert summary["status"] == "completed"
        assert summary["merged_inserted"] == 4
        assert pl.read_parquet(export).height == 6

    def test_run_into_sql_store(self, raw_file, tmp_path, capsys):
        """The flattened table lands in a SQL database"""
        url = f"sqlite:///{tmp_path}/warehouse.db"

        code = main(["run", str(raw_file), "--store-url", url, "--table", "flat", "--campaign-flag"])
        capsys.readouterr()

        table = SqlTableStore(url).read_table("flat")
        assert code == 0
        assert table.height == 6
        assert "campaign_flag" in table.columns

    def test_report_from_csv_export(self, raw_file, tmp_path, capsys):
        """report reads an export and writes one file per KPI table"""
        export = tmp_path / "flat.csv"
        main(["run", str(raw_file), "--export", str(export), "--format", "csv", "--executor", "serial"])
        capsys.readouterr()

        out_dir = tmp_path / "report"
        code = main(["report", str(export), "--out", str(out_dir), "--reference-date", "2024-04-01"])
        written = json.loads(capsys.readouterr().out)

        assert code == 0
        assert {"top_products", "clv_segments", "rfm_scores", "churn"} <= set(written)
        clv = pl.read_csv(out_dir / "clv_segments.csv")
        assert dict(zip(clv["customer_id"], clv["clv_segment"])) == {"C1": "Mid", "C2": "Low", "C3": "High"}

    def test_generate(self, tmp_path, capsys):
        """generate writes synthetic NDJSON"""
        out = tmp_path / "raw" / "orders.jsonl"

        code = main(["generate", "--orders", "20", "--out", str(out), "--seed", "7"])

        assert code == 0
        assert capsys.readouterr().out.strip() == str(out)
        assert len(out.read_text(encoding="utf-8").splitlines()) >= 20
