"""Parquet + metadata export of flattened attribute sales."""

from __future__ import annotations

import hashlib
import json
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pyarrow as pa
import pyarrow.parquet as pq

from sales_ingestion.models import PipelineState

SALES_SCHEMA = pa.schema(
    [
        ("Category", pa.string()),
        ("Attribute", pa.string()),
        ("Price", pa.float64()),
        ("Currency", pa.string()),
        ("XCH value", pa.float64()),
        ("Dollar value", pa.float64()),
        ("NFT_Edition", pa.int64()),
        ("Trade_Date", pa.string()),
        ("Trade_Id", pa.string()),
    ]
)


@dataclass(frozen=True)
class ExportResult:
    """Paths and metadata from an export run."""

    parquet_path: str
    metadata_path: str
    metadata: dict[str, Any]


def _config_hash(config: dict[str, Any]) -> str:
    canonical = json.dumps(config, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _sha256_of(path: Path) -> str:
    with path.open("rb") as handle:
        return hashlib.file_digest(handle, "sha256").hexdigest()


def _export_prefix(dataset_name: str, dates: list[str], config_hash: str) -> str:
    first_day = dates[0].replace("-", "") if dates else "empty"
    last_day = dates[-1].replace("-", "") if dates else "empty"
    return f"{dataset_name}_{first_day}_{last_day}_{config_hash[:12]}"


def flatten_sales(state: PipelineState) -> list[dict[str, Any]]:
    """One row per attribute sale, in the backfill CSV column layout."""
    records: list[dict[str, Any]] = []
    for key in sorted(state.attributes):
        stats = state.attributes[key]
        records.extend(
            {
                "Category": stats.category,
                "Attribute": stats.value,
                "Price": sale.original_price,
                "Currency": sale.original_currency,
                "XCH value": sale.price_xch,
                "Dollar value": sale.price_usd,
                "NFT_Edition": sale.nft_edition,
                "Trade_Date": sale.date,
                "Trade_Id": sale.trade_id,
            }
            for sale in stats.sales
        )
    return records


def sales_table(state: PipelineState) -> pa.Table:
    """Build the typed sales table, tagged with the document it came from."""
    table = pa.Table.from_pylist(flatten_sales(state), schema=SALES_SCHEMA)
    return table.replace_schema_metadata(
        {
            "generated_at": state.generated_at,
            "xch_usd_rate": str(state.xch_usd_rate),
        }
    )


def export_sales(
    state: PipelineState,
    *,
    output_dir: str = "data/processed",
    dataset_name: str = "attribute_sales",
    config: dict[str, Any] | None = None,
) -> ExportResult:
    """Export flattened sales to Parquet and write metadata JSON."""
    export_config = config or {}
    config_hash = _config_hash(export_config)
    table = sales_table(state)
    dates = sorted(table.column("Trade_Date").to_pylist())

    processed_dir = Path(output_dir)
    processed_dir.mkdir(parents=True, exist_ok=True)
    prefix = _export_prefix(dataset_name, dates, config_hash)
    parquet_path = processed_dir / f"{prefix}.parquet"
    metadata_path = processed_dir / f"{prefix}.metadata.json"

    pq.write_table(table, parquet_path)

    metadata: dict[str, Any] = {
        "dataset_name": dataset_name,
        "window": {
            "first_trade_date": dates[0] if dates else None,
            "last_trade_date": dates[-1] if dates else None,
        },
        "row_count": table.num_rows,
        "column_count": table.num_columns,
        "columns": table.column_names,
        "null_counts": {
            name: table.column(name).null_count for name in table.column_names
        },
        "rows_per_category": dict(
            sorted(Counter(table.column("Category").to_pylist()).items())
        ),
        "total_attributes": state.total_attributes,
        "config_hash": config_hash,
        "config": export_config,
        "parquet_file": str(parquet_path),
        "parquet_sha256": _sha256_of(parquet_path),
    }
    metadata_path.write_text(
        json.dumps(metadata, indent=2, sort_keys=True, ensure_ascii=False),
        encoding="utf-8",
    )

    return ExportResult(
        parquet_path=str(parquet_path),
        metadata_path=str(metadata_path),
        metadata=metadata,
    )
