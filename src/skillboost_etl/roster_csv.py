"""skillboost_etl.roster_csv

Row normalizer for skills-boost roster exports.

One export = one header row + one row per participant.  The file is
validated structurally (all required columns present) before any row is
looked at; rows are then normalized one at a time into ParticipantFact.

Leniency policy:
  - rows with a blank name or email are dropped (counted, never raised)
  - blank / non-numeric / negative counts become 0
"""

from __future__ import annotations

import csv
from pathlib import Path

from skillboost_etl.models import ParticipantFact
from skillboost_etl.normalize import parse_count, split_names, trim, trim_text
from skillboost_etl.shared import (
    CsvStructureError,
    RejectWriter,
    RunCounters,
    normalize_headers,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

COL_USER_NAME = "User Name"
COL_USER_EMAIL = "User Email"
COL_PROFILE_URL = "Google Cloud Skills Boost Profile URL"
COL_PROFILE_STATUS = "Profile URL Status"
COL_REDEMPTION_STATUS = "Access Code Redemption Status"
COL_ALL_COMPLETED = "All Skill Badges & Games Completed"
COL_SKILL_BADGES_COUNT = "# of Skill Badges Completed"
COL_SKILL_BADGE_NAMES = "Names of Completed Skill Badges"
COL_ARCADE_GAMES_COUNT = "# of Arcade Games Completed"
COL_ARCADE_GAME_NAMES = "Names of Completed Arcade Games"

REQUIRED_HEADERS = (
    COL_USER_NAME,
    COL_USER_EMAIL,
    COL_PROFILE_URL,
    COL_PROFILE_STATUS,
    COL_REDEMPTION_STATUS,
    COL_ALL_COMPLETED,
    COL_SKILL_BADGES_COUNT,
    COL_SKILL_BADGE_NAMES,
    COL_ARCADE_GAMES_COUNT,
    COL_ARCADE_GAME_NAMES,
)


# ---------------------------------------------------------------------------
# Structural validation
# ---------------------------------------------------------------------------

def validate_headers(fieldnames: list[str] | None) -> None:
    """Raise CsvStructureError naming every missing required column."""
    present = {f.strip() for f in (fieldnames or []) if f is not None}
    missing = sorted(set(REQUIRED_HEADERS) - present)
    if missing:
        raise CsvStructureError(
            f"Missing required columns: {', '.join(missing)}",
            missing_columns=missing,
        )


# ---------------------------------------------------------------------------
# Per-row normalization
# ---------------------------------------------------------------------------

def normalize_row(row: dict[str, str | None]) -> ParticipantFact | None:
    """Return the normalized fact for one row, or None when it cannot be identified."""
    user_name = trim(row.get(COL_USER_NAME))
    user_email = trim(row.get(COL_USER_EMAIL))
    if not user_name or not user_email:
        return None

    skill_badge_names = trim_text(row.get(COL_SKILL_BADGE_NAMES))
    arcade_game_names = trim_text(row.get(COL_ARCADE_GAME_NAMES))

    return ParticipantFact(
        user_name=user_name,
        user_email=user_email,
        profile_url=trim_text(row.get(COL_PROFILE_URL)),
        profile_status=trim_text(row.get(COL_PROFILE_STATUS)),
        redemption_status=trim_text(row.get(COL_REDEMPTION_STATUS)),
        all_completed=trim_text(row.get(COL_ALL_COMPLETED)),
        skill_badges_count=parse_count(row.get(COL_SKILL_BADGES_COUNT)),
        skill_badge_names=skill_badge_names,
        arcade_games_count=parse_count(row.get(COL_ARCADE_GAMES_COUNT)),
        arcade_game_names=arcade_game_names,
        skill_badge_list=tuple(split_names(skill_badge_names)),
        arcade_game_list=tuple(split_names(arcade_game_names)),
    )


def _drop_reason(row: dict[str, str | None]) -> str:
    return "missing_name" if not trim(row.get(COL_USER_NAME)) else "missing_email"


def normalize_rows(
    rows: list[dict[str, str | None]],
    counters: RunCounters,
    rejects: RejectWriter | None = None,
) -> list[ParticipantFact]:
    """Normalize already-parsed rows, keeping file order."""
    facts: list[ParticipantFact] = []
    for row in rows:
        counters.rows_read += 1
        fact = normalize_row(row)
        if fact is None:
            counters.rows_skipped_missing_identity += 1
            if rejects is not None:
                rejects.write({k: v or "" for k, v in row.items()}, _drop_reason(row))
            continue
        facts.append(fact)
    return facts


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------

def read_roster_file(
    csv_path: Path,
    counters: RunCounters,
    rejects: RejectWriter | None = None,
) -> list[ParticipantFact]:
    """Load a whole roster file and return its facts in file order.

    Every structural problem raises CsvStructureError before any fact is
    returned.  Blank lines are skipped.
    """
    if csv_path.suffix.lower() != ".csv":
        raise CsvStructureError(
            f"Invalid file type for {csv_path.name!r}. Please upload a CSV file"
        )

    try:
        with csv_path.open(encoding="utf-8-sig", newline="") as fh:
            reader = csv.DictReader(fh)
            if reader.fieldnames is None:
                raise CsvStructureError(f"{csv_path.name}: file has no header row")
            validate_headers(reader.fieldnames)
            raw_rows = [
                normalize_headers(raw_row)
                for raw_row in reader
                if any((v or "").strip() for v in raw_row.values() if isinstance(v, str))
            ]
    except OSError as exc:
        raise CsvStructureError(f"{csv_path.name}: cannot read file: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise CsvStructureError(f"{csv_path.name}: file is not valid UTF-8") from exc
    except csv.Error as exc:
        raise CsvStructureError(f"{csv_path.name}: CSV parsing error: {exc}") from exc

    if not raw_rows:
        raise CsvStructureError(
            f"{csv_path.name}: CSV file is empty or contains no valid data"
        )

    return normalize_rows(raw_rows, counters, rejects)
