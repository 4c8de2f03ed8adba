"""skillboost_etl.reconcile

Reconciliation engine: merge one roster file into the participant set,
build its daily snapshots, and persist everything through a gateway.

Per file (one logical transaction):
  1. Read + normalize the file (structural errors abort before any write).
  2. Take a batch-scoped read of the known participants.
  3. Merge: matching emails are replaced in place, new emails appended;
     within a file the last row for an email wins.
  4. One snapshot per fact at the report date, unique per
     (participant_id, date).
  5. Upsert participants, upsert snapshots, then record the upload with
     the post-merge participant count.

Queued files are folded sequentially: each file sees the previous file's
results because step 2 re-reads the store.

Deleting an upload removes every snapshot on its report date, then
garbage-collects participants left with no snapshots at all.  Mutable
participant fields are never rewound.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Sequence

import psycopg

from skillboost_etl.gateway import PersistenceGateway, describe_persistence_error
from skillboost_etl.models import CsvUpload, DailySnapshot, Participant, ParticipantFact
from skillboost_etl.normalize import report_date_for
from skillboost_etl.resolution_identity import IdentityResolver, new_identifier
from skillboost_etl.roster_csv import read_roster_file
from skillboost_etl.shared import (
    RejectWriter,
    RunCounters,
    UploadFailedError,
    UploadNotFoundError,
)
from skillboost_etl.snapshot_builder import build_snapshot

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class MergeResult:
    participants: list[Participant]
    snapshots: list[DailySnapshot]
    counters: RunCounters = field(default_factory=RunCounters)


@dataclass(frozen=True)
class UploadItem:
    """One queued file and the operator-entered upload date."""

    csv_path: Path
    upload_date: date


@dataclass
class IngestResult:
    upload: CsvUpload
    merge: MergeResult
    dry_run: bool = False


@dataclass(frozen=True)
class DeleteResult:
    upload: CsvUpload
    snapshots_deleted: int
    participants_deleted: int


# ---------------------------------------------------------------------------
# Merge (pure)
# ---------------------------------------------------------------------------

def merge_file(
    facts: Iterable[ParticipantFact],
    known_participants: Sequence[Participant],
    report_date: date,
    id_factory: Callable[[], str] = new_identifier,
) -> MergeResult:
    """Merge one file's facts into a copy of the known participant set.

    Known participants untouched by the file are carried over unchanged and
    keep their order; new participants are appended in first-seen order.
    """
    counters = RunCounters()
    resolver = IdentityResolver(known_participants, id_factory=id_factory)

    merged: list[Participant] = list(known_participants)
    position: dict[str, int] = {}
    for idx, p in enumerate(merged):
        position.setdefault(p.user_email, idx)

    snapshots: dict[tuple[str, date], DailySnapshot] = {}

    for fact in facts:
        resolution = resolver.resolve(fact)
        if resolution.is_new:
            counters.participants_inserted += 1
        elif resolver.lookup(fact.user_email) is not None:
            counters.participants_matched_existing += 1

        updated = Participant.from_fact(resolution.participant_id, fact)
        idx = position.get(fact.user_email)
        if idx is None:
            position[fact.user_email] = len(merged)
            merged.append(updated)
        else:
            merged[idx] = updated

        snapshot = build_snapshot(resolution.participant_id, fact, report_date)
        # dict assignment keeps the first key position, last value
        snapshots[snapshot.key] = snapshot

    counters.snapshots_built = len(snapshots)
    return MergeResult(
        participants=merged,
        snapshots=list(snapshots.values()),
        counters=counters,
    )


# ---------------------------------------------------------------------------
# Ingest one file
# ---------------------------------------------------------------------------

def ingest_file(
    gateway: PersistenceGateway,
    csv_path: Path,
    upload_date: date,
    counters: RunCounters | None = None,
    rejects: RejectWriter | None = None,
    dry_run: bool = False,
    now: datetime | None = None,
) -> IngestResult:
    """Ingest one roster file.

    Raises:
        CsvStructureError: the file is structurally unusable; nothing written.
        UploadFailedError: a gateway write failed; the upload is not recorded,
            chunks committed before the failure remain.
    """
    counters = counters if counters is not None else RunCounters()
    report_date = report_date_for(upload_date)

    facts = read_roster_file(csv_path, counters, rejects)
    counters.files_read += 1

    known = gateway.list_participants()
    merge = merge_file(facts, known, report_date)
    counters.merge(merge.counters)

    upload = CsvUpload(
        id=str(uuid.uuid4()),
        filename=csv_path.name,
        upload_date=now or datetime.now(timezone.utc),
        report_date=report_date,
        participant_count=len(merge.participants),
    )

    log.info(
        "%s: %d facts, report_date=%s, %d new, %d matched, %d snapshots",
        csv_path.name, len(facts), report_date.isoformat(),
        merge.counters.participants_inserted,
        merge.counters.participants_matched_existing,
        len(merge.snapshots),
    )

    if dry_run:
        return IngestResult(upload=upload, merge=merge, dry_run=True)

    try:
        counters.participants_upserted += gateway.upsert_participants(merge.participants)
        counters.snapshots_upserted += gateway.upsert_snapshots(merge.snapshots)
        gateway.record_upload(upload)
    except psycopg.Error as exc:
        category = describe_persistence_error(exc)
        log.error("%s: persistence failed (%s): %s", csv_path.name, category, exc)
        raise UploadFailedError(csv_path.name, category, str(exc)) from exc

    counters.uploads_recorded += 1
    return IngestResult(upload=upload, merge=merge)


def ingest_files(
    gateway: PersistenceGateway,
    items: Sequence[UploadItem],
    counters: RunCounters | None = None,
    rejects: RejectWriter | None = None,
    dry_run: bool = False,
    on_progress: Callable[[int, int, UploadItem], None] | None = None,
) -> list[IngestResult]:
    """Ingest queued files strictly in order, stopping at the first failure.

    Files ingested before a failure stay committed.  A dry run cannot see
    earlier files' merges because nothing is written.
    """
    counters = counters if counters is not None else RunCounters()
    results: list[IngestResult] = []
    for idx, item in enumerate(items):
        if on_progress is not None:
            on_progress(idx + 1, len(items), item)
        try:
            results.append(
                ingest_file(
                    gateway, item.csv_path, item.upload_date,
                    counters=counters, rejects=rejects, dry_run=dry_run,
                )
            )
        except Exception:
            counters.files_failed += 1
            raise
    return results


# ---------------------------------------------------------------------------
# Upload deletion + orphan cleanup
# ---------------------------------------------------------------------------

def find_orphan_participant_ids(gateway: PersistenceGateway) -> list[str]:
    active = {s.participant_id for s in gateway.list_snapshots()}
    return [p.id for p in gateway.list_participants() if p.id not in active]


def delete_upload(
    gateway: PersistenceGateway,
    upload_id: str,
    counters: RunCounters | None = None,
) -> DeleteResult:
    """Delete an upload, its report date's snapshots, and any orphaned participants."""
    counters = counters if counters is not None else RunCounters()
    upload = gateway.get_upload(upload_id)
    if upload is None:
        raise UploadNotFoundError(f"no upload with id {upload_id!r}")

    snapshots_deleted = gateway.delete_snapshots_for_date(upload.report_date)
    orphan_ids = find_orphan_participant_ids(gateway)
    participants_deleted = (
        gateway.delete_participants_by_id(orphan_ids) if orphan_ids else 0
    )
    gateway.delete_upload_record(upload_id)

    counters.snapshots_deleted += snapshots_deleted
    counters.participants_deleted += participants_deleted
    log.info(
        "deleted upload %s (%s): %d snapshots, %d orphaned participants",
        upload_id, upload.report_date.isoformat(),
        snapshots_deleted, participants_deleted,
    )
    return DeleteResult(
        upload=upload,
        snapshots_deleted=snapshots_deleted,
        participants_deleted=participants_deleted,
    )
