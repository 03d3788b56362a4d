"""Helpers to append phase warnings to an ops log."""

from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path
from typing import Any, Sequence

from persist.schemas import PersistWarning


def _normalize_warning(entry: Any) -> dict[str, Any]:
    if isinstance(entry, PersistWarning):
        return entry.model_dump()
    if hasattr(entry, "model_dump"):
        return entry.model_dump()
    if isinstance(entry, dict):
        return entry
    return {"code": str(entry)}


def append_warning_log(
    *,
    log_path: Path | None,
    phase: str,
    repository: str,
    run_id: str,
    dest_root: str | None,
    warnings: Sequence[Any],
) -> bool:
    """Append one JSON line describing the warnings a phase produced.

    No-op (returns ``False``) when no log path is configured or the phase
    produced no warnings.
    """

    if log_path is None or not warnings:
        return False
    record = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "phase": phase,
        "repository": repository,
        "run_id": run_id,
        "dest_root": dest_root,
        "warnings": [_normalize_warning(entry) for entry in warnings],
    }
    counts: dict[str, int] = {}
    for entry in record["warnings"]:
        code = str(entry.get("code", "unknown"))
        counts[code] = counts.get(code, 0) + 1
    record["counts"] = counts

    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record))
        handle.write("\n")
    return True
