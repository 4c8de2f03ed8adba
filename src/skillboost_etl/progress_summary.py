"""skillboost_etl.progress_summary

Read-side helpers for dashboards: roster statistics, name search, and the
email gate in front of a participant's detail view.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from skillboost_etl.gateway import PersistenceGateway
from skillboost_etl.models import Participant
from skillboost_etl.normalize import trim
from skillboost_etl.shared import EmailVerificationError

REDEEMED_STATUS = "Yes"
DEFAULT_TOP_N = 10


@dataclass
class RosterSummary:
    participants: int = 0
    active_participants: int = 0
    redeemed: int = 0
    total_skill_badges: int = 0
    average_skill_badges: float = 0.0
    top_performers: list[Participant] = field(default_factory=list)
    last_updated: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "participants": self.participants,
            "active_participants": self.active_participants,
            "redeemed": self.redeemed,
            "total_skill_badges": self.total_skill_badges,
            "average_skill_badges": self.average_skill_badges,
            "top_performers": [
                {"id": p.id, "user_name": p.user_name,
                 "skill_badges_count": p.skill_badges_count}
                for p in self.top_performers
            ],
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


def summarize_roster(
    participants: Sequence[Participant],
    top_n: int = DEFAULT_TOP_N,
    last_updated: datetime | None = None,
) -> RosterSummary:
    """Active = at least one skill badge; redeemed = redemption status 'Yes'."""
    total = sum(p.skill_badges_count for p in participants)
    avg = round(total / len(participants), 1) if participants else 0.0
    # sorted() is stable, so equal counts keep roster order
    top = sorted(participants, key=lambda p: p.skill_badges_count, reverse=True)[:top_n]
    return RosterSummary(
        participants=len(participants),
        active_participants=sum(1 for p in participants if p.skill_badges_count > 0),
        redeemed=sum(1 for p in participants if p.redemption_status == REDEEMED_STATUS),
        total_skill_badges=total,
        average_skill_badges=avg,
        top_performers=top,
        last_updated=last_updated,
    )


def load_roster_summary(gateway: PersistenceGateway, top_n: int = DEFAULT_TOP_N) -> RosterSummary:
    uploads = gateway.list_uploads()
    last_updated = uploads[0].upload_date if uploads else None
    return summarize_roster(gateway.list_participants(), top_n=top_n, last_updated=last_updated)


def search_participants(
    participants: Sequence[Participant],
    term: str | None,
) -> list[Participant]:
    """Case-insensitive name substring match, sorted by name."""
    needle = (term or "").strip().lower()
    hits = [p for p in participants if needle in p.user_name.lower()]
    return sorted(hits, key=lambda p: (p.user_name.lower(), p.user_name))


def verify_participant_email(
    gateway: PersistenceGateway,
    participant_id: str,
    email: str | None,
) -> Participant:
    """Return the participant when ``email`` belongs to ``participant_id``.

    Raises EmailVerificationError otherwise.  Matching is exact on the
    trimmed input, the same way emails are keyed on ingestion.
    """
    email_value = trim(email)
    if email_value is None:
        raise EmailVerificationError("Email is required")
    found = gateway.get_participant_by_email(email_value)
    if found is None or found.id != participant_id:
        raise EmailVerificationError("Email does not match this participant")
    return found
