"""skillboost_etl.shared

Shared utilities used by the ingestion engine, the gateways, and the CLI.
Includes the exception taxonomy, RejectWriter, RunCounters, header
normalization, and report-writing support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class CsvStructureError(ValueError):
    """Raised when a roster file cannot be ingested at all.

    Missing required columns, an unreadable file, or a file with no data
    rows.  Raised before any row is processed, so nothing is written.
    """

    def __init__(self, message: str, missing_columns: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing_columns = missing_columns or []


class UploadFailedError(RuntimeError):
    """Raised when the persistence step for one file fails.

    ``category`` is the operator-facing label ("duplicate entry",
    "constraint violation", "database error").  Chunks committed before
    the failure stay committed; the upload record is not created.
    """

    def __init__(self, filename: str, category: str, detail: str = "") -> None:
        msg = f"upload of {filename!r} failed: {category}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)
        self.filename = filename
        self.category = category


class UploadNotFoundError(LookupError):
    """Raised when deleting an upload id the store does not know."""


class EmailVerificationError(Exception):
    """Raised when the participant email gate rejects a lookup."""


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for dropped rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: dict[str, str], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()
            self._fh = None


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

@dataclass
class RunCounters:
    files_read: int = 0
    files_failed: int = 0
    rows_read: int = 0
    rows_skipped_missing_identity: int = 0
    participants_inserted: int = 0
    participants_matched_existing: int = 0
    participants_upserted: int = 0
    snapshots_built: int = 0
    snapshots_upserted: int = 0
    uploads_recorded: int = 0
    snapshots_deleted: int = 0
    participants_deleted: int = 0
    warnings: list[str] = field(default_factory=list)

    def merge(self, other: RunCounters) -> None:
        """Add every numeric counter of ``other`` into this one."""
        for name, value in other.to_dict().items():
            if name == "warnings":
                self.warnings.extend(value)
            else:
                setattr(self, name, getattr(self, name) + value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "files_read": self.files_read,
            "files_failed": self.files_failed,
            "rows_read": self.rows_read,
            "rows_skipped_missing_identity": self.rows_skipped_missing_identity,
            "participants_inserted": self.participants_inserted,
            "participants_matched_existing": self.participants_matched_existing,
            "participants_upserted": self.participants_upserted,
            "snapshots_built": self.snapshots_built,
            "snapshots_upserted": self.snapshots_upserted,
            "uploads_recorded": self.uploads_recorded,
            "snapshots_deleted": self.snapshots_deleted,
            "participants_deleted": self.participants_deleted,
            "warnings": self.warnings,
        }


# ---------------------------------------------------------------------------
# Header normalization
# ---------------------------------------------------------------------------

def normalize_headers(raw: dict[str, str]) -> dict[str, str]:
    """Return a new dict with header keys whitespace-stripped."""
    return {k.strip(): v for k, v in raw.items() if k is not None}


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, Any],
    counters: RunCounters,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
