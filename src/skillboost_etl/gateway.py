"""skillboost_etl.gateway

Persistence gateways for participants, daily snapshots, and upload
provenance.

Every write is insert-or-update on a natural key:
  participant     ON CONFLICT (user_email)
  daily_snapshot  ON CONFLICT (participant_id, snapshot_date)

Writes are paged into fixed-size chunks.  Each chunk is its own
transaction, so a failure leaves earlier chunks committed; callers retry
the whole file and rely on upsert idempotence.

Implementations:
  PostgresGateway — psycopg 3 against the schema in migrations/
  InMemoryGateway — process-local store with the same key semantics
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Iterator, Protocol, Sequence, TypeVar

import psycopg
from psycopg import errors as pg_errors

from skillboost_etl.models import CsvUpload, DailySnapshot, Participant

log = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive pages of at most ``size`` items."""
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def describe_persistence_error(exc: BaseException) -> str:
    """Map a backend error onto the operator-facing category."""
    if isinstance(exc, pg_errors.UniqueViolation):
        return "duplicate entry"
    if isinstance(exc, psycopg.IntegrityError):
        return "constraint violation"
    return "database error"


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class PersistenceGateway(Protocol):
    def list_participants(self) -> list[Participant]:
        """All participants, ordered by user name."""
        ...

    def upsert_participants(self, participants: Sequence[Participant]) -> int:
        ...

    def upsert_snapshots(self, snapshots: Sequence[DailySnapshot]) -> int:
        ...

    def record_upload(self, upload: CsvUpload) -> None:
        ...

    def delete_snapshots_for_date(self, report_date: date) -> int:
        ...

    def delete_participants_by_id(self, participant_ids: Sequence[str]) -> int:
        ...

    def list_uploads(self) -> list[CsvUpload]:
        """All uploads, newest upload_date first."""
        ...

    def list_snapshots(self) -> list[DailySnapshot]:
        ...

    def list_snapshots_for_participant(self, participant_id: str) -> list[DailySnapshot]:
        """One participant's history, ascending by date."""
        ...

    def get_participant(self, participant_id: str) -> Participant | None:
        ...

    def get_participant_by_email(self, email: str) -> Participant | None:
        ...

    def get_upload(self, upload_id: str) -> CsvUpload | None:
        ...

    def delete_upload_record(self, upload_id: str) -> int:
        ...


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------

_PARTICIPANT_COLUMNS = """
    id, user_name, user_email, profile_url, profile_status,
    redemption_status, all_completed, skill_badges_count,
    skill_badge_names, arcade_games_count, arcade_game_names
"""

_SNAPSHOT_COLUMNS = """
    id, participant_id, snapshot_date, skill_badges_count,
    arcade_games_count, skill_badge_names, arcade_game_names
"""

_UPLOAD_COLUMNS = "id, filename, upload_date, report_date, participant_count"

_UPSERT_PARTICIPANT_SQL = """
    INSERT INTO participant
      (id, user_name, user_email, profile_url, profile_status,
       redemption_status, all_completed, skill_badges_count,
       skill_badge_names, arcade_games_count, arcade_game_names, updated_at)
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, now())
    ON CONFLICT (user_email) DO UPDATE SET
      user_name = EXCLUDED.user_name,
      profile_url = EXCLUDED.profile_url,
      profile_status = EXCLUDED.profile_status,
      redemption_status = EXCLUDED.redemption_status,
      all_completed = EXCLUDED.all_completed,
      skill_badges_count = EXCLUDED.skill_badges_count,
      skill_badge_names = EXCLUDED.skill_badge_names,
      arcade_games_count = EXCLUDED.arcade_games_count,
      arcade_game_names = EXCLUDED.arcade_game_names,
      updated_at = now()
"""

_UPSERT_SNAPSHOT_SQL = """
    INSERT INTO daily_snapshot
      (id, participant_id, snapshot_date, skill_badges_count,
       arcade_games_count, skill_badge_names, arcade_game_names)
    VALUES (%s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (participant_id, snapshot_date) DO UPDATE SET
      skill_badges_count = EXCLUDED.skill_badges_count,
      arcade_games_count = EXCLUDED.arcade_games_count,
      skill_badge_names = EXCLUDED.skill_badge_names,
      arcade_game_names = EXCLUDED.arcade_game_names
"""


def _participant_from_row(row: tuple) -> Participant:
    return Participant(
        id=str(row[0]),
        user_name=row[1],
        user_email=row[2],
        profile_url=row[3] or "",
        profile_status=row[4] or "",
        redemption_status=row[5] or "",
        all_completed=row[6] or "",
        skill_badges_count=int(row[7]),
        skill_badge_names=row[8] or "",
        arcade_games_count=int(row[9]),
        arcade_game_names=row[10] or "",
    )


def _snapshot_from_row(row: tuple) -> DailySnapshot:
    return DailySnapshot(
        id=str(row[0]),
        participant_id=str(row[1]),
        date=row[2],
        skill_badges_count=int(row[3]),
        arcade_games_count=int(row[4]),
        skill_badge_names=row[5] or "",
        arcade_game_names=row[6] or "",
    )


def _upload_from_row(row: tuple) -> CsvUpload:
    return CsvUpload(
        id=str(row[0]),
        filename=row[1],
        upload_date=row[2],
        report_date=row[3],
        participant_count=int(row[4]),
    )


class PostgresGateway:
    """Gateway over an autocommit psycopg connection.

    Each write chunk runs inside ``conn.transaction()``, which on an
    autocommit connection is a real BEGIN/COMMIT.
    """

    def __init__(
        self,
        conn: psycopg.Connection,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if not conn.autocommit:
            raise ValueError("PostgresGateway requires an autocommit connection")
        self._conn = conn
        self.batch_size = batch_size

    @classmethod
    def connect(cls, db_dsn: str, batch_size: int = DEFAULT_BATCH_SIZE) -> PostgresGateway:
        return cls(psycopg.connect(db_dsn, autocommit=True), batch_size=batch_size)

    def close(self) -> None:
        self._conn.close()

    # -- reads ---------------------------------------------------------------

    def list_participants(self) -> list[Participant]:
        rows = self._conn.execute(
            f"SELECT {_PARTICIPANT_COLUMNS} FROM participant ORDER BY user_name ASC, id ASC"
        ).fetchall()
        return [_participant_from_row(r) for r in rows]

    def get_participant(self, participant_id: str) -> Participant | None:
        row = self._conn.execute(
            f"SELECT {_PARTICIPANT_COLUMNS} FROM participant WHERE id = %s",
            (participant_id,),
        ).fetchone()
        return _participant_from_row(row) if row else None

    def get_participant_by_email(self, email: str) -> Participant | None:
        row = self._conn.execute(
            f"SELECT {_PARTICIPANT_COLUMNS} FROM participant WHERE user_email = %s",
            (email,),
        ).fetchone()
        return _participant_from_row(row) if row else None

    def list_snapshots(self) -> list[DailySnapshot]:
        rows = self._conn.execute(
            f"SELECT {_SNAPSHOT_COLUMNS} FROM daily_snapshot "
            "ORDER BY snapshot_date ASC, participant_id ASC"
        ).fetchall()
        return [_snapshot_from_row(r) for r in rows]

    def list_snapshots_for_participant(self, participant_id: str) -> list[DailySnapshot]:
        rows = self._conn.execute(
            f"SELECT {_SNAPSHOT_COLUMNS} FROM daily_snapshot "
            "WHERE participant_id = %s ORDER BY snapshot_date ASC",
            (participant_id,),
        ).fetchall()
        return [_snapshot_from_row(r) for r in rows]

    def list_uploads(self) -> list[CsvUpload]:
        rows = self._conn.execute(
            f"SELECT {_UPLOAD_COLUMNS} FROM csv_upload ORDER BY upload_date DESC, id ASC"
        ).fetchall()
        return [_upload_from_row(r) for r in rows]

    def get_upload(self, upload_id: str) -> CsvUpload | None:
        row = self._conn.execute(
            f"SELECT {_UPLOAD_COLUMNS} FROM csv_upload WHERE id = %s",
            (upload_id,),
        ).fetchone()
        return _upload_from_row(row) if row else None

    # -- writes --------------------------------------------------------------

    def upsert_participants(self, participants: Sequence[Participant]) -> int:
        written = 0
        for page in chunked(participants, self.batch_size):
            with self._conn.transaction():
                with self._conn.cursor() as cur:
                    cur.executemany(
                        _UPSERT_PARTICIPANT_SQL,
                        [
                            (p.id, p.user_name, p.user_email, p.profile_url,
                             p.profile_status, p.redemption_status, p.all_completed,
                             p.skill_badges_count, p.skill_badge_names,
                             p.arcade_games_count, p.arcade_game_names)
                            for p in page
                        ],
                    )
            written += len(page)
            log.debug("participant chunk committed: %d rows", len(page))
        return written

    def upsert_snapshots(self, snapshots: Sequence[DailySnapshot]) -> int:
        written = 0
        for page in chunked(snapshots, self.batch_size):
            with self._conn.transaction():
                with self._conn.cursor() as cur:
                    cur.executemany(
                        _UPSERT_SNAPSHOT_SQL,
                        [
                            (s.id, s.participant_id, s.date, s.skill_badges_count,
                             s.arcade_games_count, s.skill_badge_names,
                             s.arcade_game_names)
                            for s in page
                        ],
                    )
            written += len(page)
            log.debug("snapshot chunk committed: %d rows", len(page))
        return written

    def record_upload(self, upload: CsvUpload) -> None:
        with self._conn.transaction():
            self._conn.execute(
                f"""
                INSERT INTO csv_upload ({_UPLOAD_COLUMNS})
                VALUES (%s, %s, %s, %s, %s)
                """,
                (upload.id, upload.filename, upload.upload_date,
                 upload.report_date, upload.participant_count),
            )

    def delete_snapshots_for_date(self, report_date: date) -> int:
        with self._conn.transaction():
            cur = self._conn.execute(
                "DELETE FROM daily_snapshot WHERE snapshot_date = %s",
                (report_date,),
            )
            return cur.rowcount

    def delete_participants_by_id(self, participant_ids: Sequence[str]) -> int:
        deleted = 0
        for page in chunked(list(participant_ids), self.batch_size):
            with self._conn.transaction():
                cur = self._conn.execute(
                    "DELETE FROM participant WHERE id = ANY(%s)",
                    (list(page),),
                )
                deleted += cur.rowcount
        return deleted

    def delete_upload_record(self, upload_id: str) -> int:
        with self._conn.transaction():
            cur = self._conn.execute(
                "DELETE FROM csv_upload WHERE id = %s",
                (upload_id,),
            )
            return cur.rowcount


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryGateway:
    """Process-local store with the database's key and constraint semantics.

    Constraint failures raise the same psycopg error classes the database
    would, so callers categorize them identically.
    """

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.batch_size = batch_size
        self._participants: dict[str, Participant] = {}  # keyed by user_email
        self._snapshots: dict[tuple[str, date], DailySnapshot] = {}
        self._uploads: dict[str, CsvUpload] = {}
        self.write_calls: list[tuple[str, int]] = []

    def close(self) -> None:
        pass

    # -- reads ---------------------------------------------------------------

    def list_participants(self) -> list[Participant]:
        return sorted(self._participants.values(), key=lambda p: (p.user_name, p.id))

    def get_participant(self, participant_id: str) -> Participant | None:
        for p in self._participants.values():
            if p.id == participant_id:
                return p
        return None

    def get_participant_by_email(self, email: str) -> Participant | None:
        return self._participants.get(email)

    def list_snapshots(self) -> list[DailySnapshot]:
        return sorted(self._snapshots.values(), key=lambda s: (s.date, s.participant_id))

    def list_snapshots_for_participant(self, participant_id: str) -> list[DailySnapshot]:
        return sorted(
            (s for s in self._snapshots.values() if s.participant_id == participant_id),
            key=lambda s: s.date,
        )

    def list_uploads(self) -> list[CsvUpload]:
        return sorted(self._uploads.values(), key=lambda u: u.upload_date, reverse=True)

    def get_upload(self, upload_id: str) -> CsvUpload | None:
        return self._uploads.get(upload_id)

    # -- writes --------------------------------------------------------------

    def _ids_in_use(self) -> dict[str, str]:
        return {p.id: email for email, p in self._participants.items()}

    def upsert_participants(self, participants: Sequence[Participant]) -> int:
        written = 0
        for page in chunked(participants, self.batch_size):
            self.write_calls.append(("participant", len(page)))
            for p in page:
                existing = self._participants.get(p.user_email)
                if existing is not None:
                    # The stored id wins, as with ON CONFLICT (user_email) DO UPDATE.
                    self._participants[p.user_email] = Participant(
                        **{**p.to_dict(), "id": existing.id}
                    )
                    continue
                owner = self._ids_in_use().get(p.id)
                if owner is not None:
                    raise pg_errors.UniqueViolation(
                        f"participant id {p.id!r} already belongs to {owner!r}"
                    )
                self._participants[p.user_email] = p
            written += len(page)
        return written

    def upsert_snapshots(self, snapshots: Sequence[DailySnapshot]) -> int:
        written = 0
        for page in chunked(snapshots, self.batch_size):
            self.write_calls.append(("daily_snapshot", len(page)))
            known_ids = self._ids_in_use()
            for s in page:
                if s.participant_id not in known_ids:
                    raise pg_errors.ForeignKeyViolation(
                        f"snapshot references unknown participant {s.participant_id!r}"
                    )
                existing = self._snapshots.get(s.key)
                if existing is not None:
                    s = DailySnapshot(**{**s.to_dict(), "id": existing.id})
                self._snapshots[s.key] = s
            written += len(page)
        return written

    def record_upload(self, upload: CsvUpload) -> None:
        if upload.id in self._uploads:
            raise pg_errors.UniqueViolation(f"upload id {upload.id!r} already recorded")
        self.write_calls.append(("csv_upload", 1))
        self._uploads[upload.id] = upload

    def delete_snapshots_for_date(self, report_date: date) -> int:
        doomed = [k for k in self._snapshots if k[1] == report_date]
        for k in doomed:
            del self._snapshots[k]
        return len(doomed)

    def delete_participants_by_id(self, participant_ids: Iterable[str]) -> int:
        wanted = set(participant_ids)
        doomed = [email for email, p in self._participants.items() if p.id in wanted]
        for email in doomed:
            del self._participants[email]
        # ON DELETE CASCADE
        for k in [k for k in self._snapshots if k[0] in wanted]:
            del self._snapshots[k]
        return len(doomed)

    def delete_upload_record(self, upload_id: str) -> int:
        return 1 if self._uploads.pop(upload_id, None) is not None else 0
