"""Unit tests for skillboost_etl.gateway helpers and InMemoryGateway."""

from __future__ import annotations

from datetime import date, datetime, timezone

import psycopg
import pytest
from psycopg import errors as pg_errors

from skillboost_etl.gateway import InMemoryGateway, chunked, describe_persistence_error
from skillboost_etl.models import CsvUpload, DailySnapshot, Participant

D1 = date(2025, 10, 7)
D2 = date(2025, 10, 8)


def _p(pid: str, email: str, name: str = "Someone", badges: int = 0) -> Participant:
    return Participant(id=pid, user_name=name, user_email=email, skill_badges_count=badges)


def _s(sid: str, pid: str, day: date, badges: int = 0) -> DailySnapshot:
    return DailySnapshot(id=sid, participant_id=pid, date=day, skill_badges_count=badges)


# ---------------------------------------------------------------------------
# chunked
# ---------------------------------------------------------------------------

class TestChunked:
    def test_exact_pages(self):
        assert list(chunked([1, 2, 3, 4], 2)) == [[1, 2], [3, 4]]

    def test_short_last_page(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert list(chunked([], 100)) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            list(chunked([1], 0))


# ---------------------------------------------------------------------------
# describe_persistence_error
# ---------------------------------------------------------------------------

class TestDescribePersistenceError:
    def test_unique_violation(self):
        assert describe_persistence_error(pg_errors.UniqueViolation("dup")) == "duplicate entry"

    def test_foreign_key_violation(self):
        assert describe_persistence_error(pg_errors.ForeignKeyViolation("fk")) == "constraint violation"

    def test_check_violation(self):
        assert describe_persistence_error(pg_errors.CheckViolation("chk")) == "constraint violation"

    def test_other_database_error(self):
        assert describe_persistence_error(psycopg.OperationalError("down")) == "database error"


# ---------------------------------------------------------------------------
# InMemoryGateway
# ---------------------------------------------------------------------------

class TestInMemoryParticipants:
    def test_upsert_by_email_keeps_stored_id(self):
        gw = InMemoryGateway()
        gw.upsert_participants([_p("p1", "ada@example.com", badges=1)])
        gw.upsert_participants([_p("other", "ada@example.com", badges=4)])
        (stored,) = gw.list_participants()
        assert stored.id == "p1"
        assert stored.skill_badges_count == 4

    def test_id_reused_for_other_email(self):
        gw = InMemoryGateway()
        gw.upsert_participants([_p("p1", "ada@example.com")])
        with pytest.raises(pg_errors.UniqueViolation):
            gw.upsert_participants([_p("p1", "grace@example.com")])

    def test_listed_by_name(self):
        gw = InMemoryGateway()
        gw.upsert_participants([
            _p("p1", "z@example.com", name="Zed"),
            _p("p2", "a@example.com", name="Amy"),
        ])
        assert [p.user_name for p in gw.list_participants()] == ["Amy", "Zed"]

    def test_lookups(self):
        gw = InMemoryGateway()
        gw.upsert_participants([_p("p1", "ada@example.com")])
        assert gw.get_participant("p1").user_email == "ada@example.com"
        assert gw.get_participant_by_email("ada@example.com").id == "p1"
        assert gw.get_participant("nope") is None
        assert gw.get_participant_by_email("ADA@example.com") is None

    def test_writes_are_chunked(self):
        gw = InMemoryGateway(batch_size=2)
        written = gw.upsert_participants(
            [_p(f"p{i}", f"u{i}@example.com") for i in range(5)]
        )
        assert written == 5
        assert gw.write_calls == [("participant", 2), ("participant", 2), ("participant", 1)]


class TestInMemorySnapshots:
    @pytest.fixture
    def gw(self):
        gw = InMemoryGateway()
        gw.upsert_participants([_p("p1", "ada@example.com"), _p("p2", "grace@example.com")])
        return gw

    def test_unknown_participant(self, gw):
        with pytest.raises(pg_errors.ForeignKeyViolation):
            gw.upsert_snapshots([_s("s1", "ghost", D1)])

    def test_upsert_by_participant_and_date(self, gw):
        gw.upsert_snapshots([_s("s1", "p1", D1, badges=1)])
        gw.upsert_snapshots([_s("s2", "p1", D1, badges=3)])
        (snap,) = gw.list_snapshots()
        assert snap.id == "s1"
        assert snap.skill_badges_count == 3

    def test_history_ascending(self, gw):
        gw.upsert_snapshots([_s("s2", "p1", D2), _s("s1", "p1", D1), _s("s3", "p2", D1)])
        assert [s.date for s in gw.list_snapshots_for_participant("p1")] == [D1, D2]

    def test_delete_for_date(self, gw):
        gw.upsert_snapshots([_s("s1", "p1", D1), _s("s2", "p2", D1), _s("s3", "p1", D2)])
        assert gw.delete_snapshots_for_date(D1) == 2
        assert [s.id for s in gw.list_snapshots()] == ["s3"]

    def test_participant_delete_cascades(self, gw):
        gw.upsert_snapshots([_s("s1", "p1", D1), _s("s2", "p2", D1)])
        assert gw.delete_participants_by_id(["p1"]) == 1
        assert [s.participant_id for s in gw.list_snapshots()] == ["p2"]


class TestInMemoryUploads:
    def test_newest_first_and_delete(self):
        gw = InMemoryGateway()
        first = CsvUpload("u1", "a.csv", datetime(2025, 10, 8, tzinfo=timezone.utc), D1, 3)
        second = CsvUpload("u2", "b.csv", datetime(2025, 10, 9, tzinfo=timezone.utc), D2, 4)
        gw.record_upload(first)
        gw.record_upload(second)
        assert [u.id for u in gw.list_uploads()] == ["u2", "u1"]
        assert gw.delete_upload_record("u1") == 1
        assert gw.delete_upload_record("u1") == 0
        assert gw.get_upload("u1") is None

    def test_duplicate_upload_id(self):
        gw = InMemoryGateway()
        upload = CsvUpload("u1", "a.csv", datetime(2025, 10, 8, tzinfo=timezone.utc), D1, 3)
        gw.record_upload(upload)
        with pytest.raises(pg_errors.UniqueViolation):
            gw.record_upload(upload)
