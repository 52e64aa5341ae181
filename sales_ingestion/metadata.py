"""Local NFT metadata index keyed by edition."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from sales_ingestion.models import NFTMetadata, Trait


class MetadataError(RuntimeError):
    """Raised when the metadata index cannot be read or parsed."""


def parse_metadata_index(payload: Any) -> dict[int, NFTMetadata]:
    """Build an edition -> metadata map from the collection metadata array."""
    if not isinstance(payload, list):
        raise MetadataError("metadata must be a JSON array")

    index: dict[int, NFTMetadata] = {}
    for position, row in enumerate(payload):
        if not isinstance(row, dict):
            raise MetadataError(f"metadata row {position} is not an object")
        try:
            edition = int(row["edition"])
            traits = tuple(
                Trait(trait_type=str(attr["trait_type"]), value=str(attr["value"]))
                for attr in row.get("attributes") or []
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MetadataError(f"metadata row {position} is malformed: {exc}") from exc
        index[edition] = NFTMetadata(edition=edition, attributes=traits)
    return index


def load_metadata_index(path: str | Path) -> dict[int, NFTMetadata]:
    """Load the metadata JSON file wholesale."""
    metadata_path = Path(path)
    try:
        payload = json.loads(metadata_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise MetadataError(f"cannot load metadata from {metadata_path}: {exc}") from exc
    return parse_metadata_index(payload)
