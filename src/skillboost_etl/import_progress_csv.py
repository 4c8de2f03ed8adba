"""skillboost_etl.import_progress_csv

Unified CLI entrypoint for skills-progress ingestion and inspection.

Modes (--mode):
  upload         — ingest one or more roster CSVs, in order (default)
  delete_upload  — delete an upload, its snapshots, and orphaned participants
  list_uploads   — show upload provenance, newest first
  timeline       — per-day badge deltas for one participant
  summary        — roster statistics, tier distribution, name search
  verify_email   — check a participant's email gate

Usage (upload, two queued files):
    python -m skillboost_etl.import_progress_csv \\
        --mode upload \\
        --db-dsn "$SKILLBOOST_DB_DSN" \\
        --csv-path "exports/progress-2025-10-08.csv" --upload-date 2025-10-08 \\
        --csv-path "exports/progress-2025-10-09.csv" --upload-date 2025-10-09

Usage (delete_upload):
    python -m skillboost_etl.import_progress_csv \\
        --mode delete_upload --upload-id 3f0c...

Snapshots are dated one day before the upload date.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import click

from skillboost_etl.gateway import DEFAULT_BATCH_SIZE, PersistenceGateway, PostgresGateway
from skillboost_etl.normalize import parse_upload_date
from skillboost_etl.progress_summary import (
    DEFAULT_TOP_N,
    load_roster_summary,
    search_participants,
    verify_participant_email,
)
from skillboost_etl.progress_tiers import (
    TierPolicy,
    TierPolicyValidationError,
    load_tier_policy,
)
from skillboost_etl.reconcile import UploadItem, delete_upload, ingest_files
from skillboost_etl.shared import (
    CsvStructureError,
    EmailVerificationError,
    RejectWriter,
    RunCounters,
    UploadFailedError,
    UploadNotFoundError,
    write_run_report,
)
from skillboost_etl.timeline import Timeline, progress_change

DEFAULT_TIER_FILE = "config/progress_tiers/default.yml"


# ---------------------------------------------------------------------------
# Gateway factory
# ---------------------------------------------------------------------------

def _open_gateway(db_dsn: str, batch_size: int) -> PersistenceGateway:
    return PostgresGateway.connect(db_dsn, batch_size=batch_size)


def _fatal(run_id: str, message: str) -> None:
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# Flag validation
# ---------------------------------------------------------------------------

def _validate_upload_flags(
    csv_paths: tuple[str, ...],
    upload_dates: tuple[str, ...],
    run_id: str,
) -> list[UploadItem]:
    if not csv_paths:
        _fatal(run_id, "Please select at least one CSV file to upload (--csv-path)")
    if len(upload_dates) != len(csv_paths):
        _fatal(
            run_id,
            f"--upload-date must be given once per --csv-path "
            f"({len(csv_paths)} paths, {len(upload_dates)} dates)",
        )
    items: list[UploadItem] = []
    for path, raw_date in zip(csv_paths, upload_dates):
        parsed = parse_upload_date(raw_date)
        if parsed is None:
            _fatal(run_id, f"invalid --upload-date {raw_date!r}; expected YYYY-MM-DD")
        items.append(UploadItem(csv_path=Path(path), upload_date=parsed))  # type: ignore[arg-type]
    return items


def _require(value: str | None, flag: str, mode: str, run_id: str) -> str:
    if not value:
        _fatal(run_id, f"{flag} is required for --mode {mode}")
    return value  # type: ignore[return-value]


def _load_tiers(tier_file: str | None, run_id: str) -> TierPolicy | None:
    if tier_file is None:
        return None
    try:
        return load_tier_policy(Path(tier_file))
    except FileNotFoundError:
        _fatal(run_id, f"tier policy file not found: {tier_file}")
    except TierPolicyValidationError as exc:
        _fatal(run_id, f"invalid tier policy {tier_file}: {exc}")
    return None


# ---------------------------------------------------------------------------
# Unified CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    default="upload",
    type=click.Choice([
        "upload", "delete_upload", "list_uploads",
        "timeline", "summary", "verify_email",
    ]),
    show_default=True,
    help="Operation to run",
)
@click.option("--db-dsn", required=True, envvar="SKILLBOOST_DB_DSN", help="PostgreSQL DSN")
# upload flags
@click.option("--csv-path", "csv_paths", multiple=True, type=click.Path(), help="[upload] Roster CSV; repeat to queue several files")
@click.option("--upload-date", "upload_dates", multiple=True, help="[upload] Upload date (YYYY-MM-DD), one per --csv-path, same order")
@click.option("--batch-size", default=DEFAULT_BATCH_SIZE, type=click.IntRange(min=1), show_default=True, help="[upload|delete_upload] Rows per write chunk")
@click.option("--rejects-path", default=None, type=click.Path(), help="[upload] Write dropped rows (missing name/email) to this CSV")
@click.option("--report-dir", default="./artifacts/reports", show_default=True, type=click.Path(), help="[upload|delete_upload] Run report directory")
# delete_upload flags
@click.option("--upload-id", default=None, help="[delete_upload] Upload id to delete")
# timeline / verify_email flags
@click.option("--participant-id", default=None, help="[timeline|verify_email] Participant id")
@click.option("--email", default=None, help="[verify_email] Email to check against the participant")
# summary flags
@click.option("--tier-file", default=DEFAULT_TIER_FILE, show_default=True, type=click.Path(), help="[summary|timeline] YAML tier policy")
@click.option("--search", default=None, help="[summary] Case-insensitive name filter")
@click.option("--top", "top_n", default=DEFAULT_TOP_N, type=click.IntRange(min=0), show_default=True, help="[summary] Number of top performers")
# shared flags
@click.option("--dry-run", is_flag=True, default=False, help="[upload] Merge and report without writing")
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable INFO logging")
def main(
    mode: str,
    db_dsn: str,
    csv_paths: tuple[str, ...],
    upload_dates: tuple[str, ...],
    batch_size: int,
    rejects_path: str | None,
    report_dir: str,
    upload_id: str | None,
    participant_id: str | None,
    email: str | None,
    tier_file: str | None,
    search: str | None,
    top_n: int,
    dry_run: bool,
    run_id: str | None,
    verbose: bool,
) -> None:
    """Unified skills-progress ingestion CLI."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()
    counters = RunCounters()

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    if mode == "upload":
        items = _validate_upload_flags(csv_paths, upload_dates, run_id)
        gateway = _open_gateway(db_dsn, batch_size)
        try:
            _run_upload(
                gateway, items, run_id, started_at, counters,
                rejects_path=rejects_path,
                report_dir=Path(report_dir),
                dry_run=dry_run,
            )
        finally:
            gateway.close()
    elif mode == "delete_upload":
        upload_id = _require(upload_id, "--upload-id", mode, run_id)
        gateway = _open_gateway(db_dsn, batch_size)
        try:
            _run_delete_upload(
                gateway, upload_id, run_id, started_at, counters, Path(report_dir)
            )
        finally:
            gateway.close()
    elif mode == "list_uploads":
        gateway = _open_gateway(db_dsn, batch_size)
        try:
            _run_list_uploads(gateway, run_id)
        finally:
            gateway.close()
    elif mode == "timeline":
        participant_id = _require(participant_id, "--participant-id", mode, run_id)
        gateway = _open_gateway(db_dsn, batch_size)
        try:
            _run_timeline(gateway, participant_id, _load_tiers(tier_file, run_id), run_id)
        finally:
            gateway.close()
    elif mode == "summary":
        policy = _load_tiers(tier_file, run_id)
        gateway = _open_gateway(db_dsn, batch_size)
        try:
            _run_summary(gateway, policy, search, top_n, run_id)
        finally:
            gateway.close()
    elif mode == "verify_email":
        participant_id = _require(participant_id, "--participant-id", mode, run_id)
        email = _require(email, "--email", mode, run_id)
        gateway = _open_gateway(db_dsn, batch_size)
        try:
            _run_verify_email(gateway, participant_id, email, run_id)
        finally:
            gateway.close()


# ---------------------------------------------------------------------------
# Mode runners
# ---------------------------------------------------------------------------

def _run_upload(
    gateway: PersistenceGateway,
    items: list[UploadItem],
    run_id: str,
    started_at: str,
    counters: RunCounters,
    rejects_path: str | None,
    report_dir: Path,
    dry_run: bool,
) -> None:
    rejects = RejectWriter(Path(rejects_path)) if rejects_path else None

    def _progress(idx: int, total: int, item: UploadItem) -> None:
        click.echo(
            f"[{run_id}] Processing file {idx} of {total}: {item.csv_path.name} "
            f"(upload date {item.upload_date.isoformat()})"
        )

    source_paths = {
        "csv_paths": [str(i.csv_path) for i in items],
        "upload_dates": [i.upload_date.isoformat() for i in items],
    }
    failure: str | None = None
    try:
        results = ingest_files(
            gateway, items, counters=counters, rejects=rejects,
            dry_run=dry_run, on_progress=_progress,
        )
    except CsvStructureError as exc:
        failure = str(exc)
    except UploadFailedError as exc:
        failure = f"{exc.filename}: {exc.category}"
        counters.warnings.append(str(exc))
    except Exception as exc:
        failure = f"unexpected error: {exc}"
        counters.warnings.append(f"{type(exc).__name__}: {exc}")
    finally:
        if rejects is not None:
            rejects.close()

    report_path = write_run_report(
        run_id, started_at, "upload", dry_run, source_paths, counters, report_dir
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if failure is not None:
        _fatal(run_id, f"Failed to process CSV files: {failure}")

    for result in results:
        upload = result.upload
        prefix = "[dry-run] " if result.dry_run else ""
        click.echo(
            f"[{run_id}] {prefix}{upload.filename}: report date "
            f"{upload.report_date.isoformat()}, {len(result.merge.snapshots)} snapshots, "
            f"{upload.participant_count} participants total"
            + ("" if result.dry_run else f", upload id {upload.id}")
        )
    if dry_run:
        click.echo(f"[{run_id}] [dry-run] Nothing written.")
    click.echo(
        f"[{run_id}] Successfully processed {len(results)} file(s): "
        f"{counters.rows_read} rows read, "
        f"{counters.rows_skipped_missing_identity} skipped, "
        f"{counters.participants_inserted} participants inserted, "
        f"{counters.participants_matched_existing} matched"
    )


def _run_delete_upload(
    gateway: PersistenceGateway,
    upload_id: str,
    run_id: str,
    started_at: str,
    counters: RunCounters,
    report_dir: Path,
) -> None:
    try:
        result = delete_upload(gateway, upload_id, counters)
    except UploadNotFoundError as exc:
        _fatal(run_id, str(exc))
        return
    write_run_report(
        run_id, started_at, "delete_upload", False,
        {"upload_id": upload_id}, counters, report_dir,
    )
    click.echo(
        f"[{run_id}] Deleted upload {upload_id} ({result.upload.filename}, report date "
        f"{result.upload.report_date.isoformat()}): {result.snapshots_deleted} snapshots, "
        f"{result.participants_deleted} orphaned participants removed"
    )


def _run_list_uploads(gateway: PersistenceGateway, run_id: str) -> None:
    uploads = gateway.list_uploads()
    if not uploads:
        click.echo(f"[{run_id}] No uploads recorded.")
        return
    for u in uploads:
        click.echo(
            f"{u.id}  {u.filename}  uploaded {u.upload_date.isoformat()}  "
            f"report date {u.report_date.isoformat()}  "
            f"{u.participant_count} participants"
        )


def _run_timeline(
    gateway: PersistenceGateway,
    participant_id: str,
    policy: TierPolicy | None,
    run_id: str,
) -> None:
    participant = gateway.get_participant(participant_id)
    if participant is None:
        _fatal(run_id, f"no participant with id {participant_id!r}")
        return
    history = gateway.list_snapshots_for_participant(participant_id)
    click.echo(
        f"{participant.user_name}: {participant.skill_badges_count} skill badges, "
        f"{participant.arcade_games_count} arcade games, "
        f"progress change {progress_change(history):+d}"
    )
    if policy is not None:
        tier = policy.classify_participant(participant)
        remaining = f" ({tier.remaining} to next milestone)" if tier.remaining else ""
        click.echo(f"Tier: {tier.label or tier.key}{remaining}")
    timeline = Timeline(history)
    if not timeline:
        click.echo("No history yet.")
        return
    for day in timeline:
        names = ", ".join(day.new_badge_names)
        click.echo(
            f"{day.date.isoformat()}  {day.new_badges:+d} badges "
            f"(total {day.total_badges})" + (f"  {names}" if names else "")
        )


def _run_summary(
    gateway: PersistenceGateway,
    policy: TierPolicy | None,
    search: str | None,
    top_n: int,
    run_id: str,
) -> None:
    summary = load_roster_summary(gateway, top_n=top_n)
    payload = summary.to_dict()
    participants = gateway.list_participants()
    if policy is not None:
        payload["tier_policy_version"] = policy.version
        payload["tier_distribution"] = policy.distribution(participants)
    if search is not None:
        payload["search"] = [
            {
                "id": p.id,
                "user_name": p.user_name,
                "skill_badges_count": p.skill_badges_count,
                "arcade_games_count": p.arcade_games_count,
                "tier": policy.classify_participant(p).key if policy else None,
            }
            for p in search_participants(participants, search)
        ]
    click.echo(json.dumps(payload, indent=2, default=str))


def _run_verify_email(
    gateway: PersistenceGateway,
    participant_id: str,
    email: str,
    run_id: str,
) -> None:
    try:
        participant = verify_participant_email(gateway, participant_id, email)
    except EmailVerificationError as exc:
        _fatal(run_id, str(exc))
        return
    click.echo(f"[{run_id}] Verified {participant.user_name}")


if __name__ == "__main__":
    main()
