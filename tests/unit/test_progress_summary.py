"""Unit tests for skillboost_etl.progress_summary."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from skillboost_etl.gateway import InMemoryGateway
from skillboost_etl.models import CsvUpload, Participant
from skillboost_etl.progress_summary import (
    load_roster_summary,
    search_participants,
    summarize_roster,
    verify_participant_email,
)
from skillboost_etl.shared import EmailVerificationError


def _p(pid: str, name: str, badges: int = 0, redeemed: str = "No") -> Participant:
    return Participant(
        id=pid,
        user_name=name,
        user_email=f"{pid}@example.com",
        redemption_status=redeemed,
        skill_badges_count=badges,
    )


ROSTER = [
    _p("a", "Ada Lovelace", badges=12, redeemed="Yes"),
    _p("b", "Grace Hopper", badges=18, redeemed="Yes"),
    _p("c", "Alan Turing", badges=0),
    _p("d", "Katherine Johnson", badges=12, redeemed="yes"),
]


class TestSummarizeRoster:
    def test_counts(self):
        summary = summarize_roster(ROSTER)
        assert summary.participants == 4
        assert summary.active_participants == 3
        assert summary.redeemed == 2  # exact "Yes" only
        assert summary.total_skill_badges == 42
        assert summary.average_skill_badges == 10.5

    def test_top_performers_stable_on_ties(self):
        summary = summarize_roster(ROSTER, top_n=3)
        assert [p.id for p in summary.top_performers] == ["b", "a", "d"]

    def test_empty_roster(self):
        summary = summarize_roster([])
        assert summary.participants == 0
        assert summary.average_skill_badges == 0.0
        assert summary.top_performers == []

    def test_to_dict(self):
        ts = datetime(2025, 10, 8, 12, 0, tzinfo=timezone.utc)
        payload = summarize_roster(ROSTER, top_n=1, last_updated=ts).to_dict()
        assert payload["top_performers"] == [
            {"id": "b", "user_name": "Grace Hopper", "skill_badges_count": 18}
        ]
        assert payload["last_updated"] == ts.isoformat()


def test_load_roster_summary_uses_newest_upload():
    gw = InMemoryGateway()
    gw.upsert_participants(ROSTER)
    older = datetime(2025, 10, 7, 9, 0, tzinfo=timezone.utc)
    newer = datetime(2025, 10, 9, 9, 0, tzinfo=timezone.utc)
    for uid, ts in (("u1", older), ("u2", newer)):
        gw.record_upload(CsvUpload(uid, f"{uid}.csv", ts, date(2025, 10, 6), 4))
    summary = load_roster_summary(gw)
    assert summary.last_updated == newer
    assert summary.participants == 4


class TestSearch:
    def test_case_insensitive_substring(self):
        hits = search_participants(ROSTER, "ACE")
        assert [p.user_name for p in hits] == ["Ada Lovelace", "Grace Hopper"]

    def test_blank_term_returns_everyone_sorted(self):
        hits = search_participants(ROSTER, "  ")
        assert [p.user_name for p in hits] == [
            "Ada Lovelace", "Alan Turing", "Grace Hopper", "Katherine Johnson",
        ]

    def test_no_match(self):
        assert search_participants(ROSTER, "zzz") == []


class TestVerifyEmail:
    @pytest.fixture
    def gateway(self):
        gw = InMemoryGateway()
        gw.upsert_participants(ROSTER)
        return gw

    def test_match(self, gateway):
        p = verify_participant_email(gateway, "a", "  a@example.com ")
        assert p.user_name == "Ada Lovelace"

    def test_email_of_someone_else(self, gateway):
        with pytest.raises(EmailVerificationError, match="does not match"):
            verify_participant_email(gateway, "a", "b@example.com")

    def test_unknown_email(self, gateway):
        with pytest.raises(EmailVerificationError, match="does not match"):
            verify_participant_email(gateway, "a", "nobody@example.com")

    def test_case_must_match(self, gateway):
        with pytest.raises(EmailVerificationError):
            verify_participant_email(gateway, "a", "A@example.com")

    def test_blank_email(self, gateway):
        with pytest.raises(EmailVerificationError, match="required"):
            verify_participant_email(gateway, "a", "   ")
