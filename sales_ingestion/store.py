"""Persistence for the statistics document: load, atomic write, single-writer lock."""

from __future__ import annotations

import json
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path

from filelock import FileLock

from sales_ingestion.models import PipelineState
from sales_ingestion.utils_time import format_utc


class StoreError(RuntimeError):
    """Raised when the statistics document cannot be read or written."""


def lock_path_for(stats_path: str | Path) -> Path:
    path = Path(stats_path)
    return path.with_name(f"{path.name}.lock")


def store_lock(stats_path: str | Path, *, timeout: float = 10.0) -> FileLock:
    """Return the lock guarding the store against overlapping runs."""
    lock_file = lock_path_for(stats_path)
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    return FileLock(str(lock_file), timeout=timeout)


def load_state(path: str | Path) -> PipelineState | None:
    """Read the persisted document, or None when it does not exist yet."""
    stats_path = Path(path)
    if not stats_path.exists():
        return None
    try:
        payload = json.loads(stats_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise StoreError(f"cannot read statistics from {stats_path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise StoreError(f"statistics document {stats_path} must be a JSON object")
    try:
        return PipelineState.from_document(payload)
    except (KeyError, TypeError, ValueError) as exc:
        raise StoreError(f"malformed statistics document {stats_path}: {exc}") from exc


def render_state(state: PipelineState) -> str:
    return json.dumps(state.to_document(), indent=2, ensure_ascii=False)


def write_state_atomic(
    path: str | Path,
    state: PipelineState,
    *,
    now: datetime | None = None,
) -> Path:
    """Stamp `generatedAt` and replace the document via a same-directory rename."""
    stats_path = Path(path)
    state.generated_at = format_utc(now or datetime.now(UTC))
    body = render_state(state)

    try:
        stats_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{stats_path.name}.",
            suffix=".tmp",
            dir=stats_path.parent,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(body)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, stats_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise StoreError(f"cannot write statistics to {stats_path}: {exc}") from exc

    return stats_path
