"""skillboost_etl.models

Record types shared by the ingestion engine and the persistence gateways.

  Participant     — mutable current-state profile, natural key user_email
  DailySnapshot   — immutable per-(participant_id, date) progress record
  CsvUpload       — provenance row for one ingested file
  ParticipantFact — one normalized CSV row, before identity resolution
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from typing import Any


@dataclass(frozen=True)
class ParticipantFact:
    user_name: str
    user_email: str
    profile_url: str = ""
    profile_status: str = ""
    redemption_status: str = ""
    all_completed: str = ""
    skill_badges_count: int = 0
    skill_badge_names: str = ""
    arcade_games_count: int = 0
    arcade_game_names: str = ""
    skill_badge_list: tuple[str, ...] = field(default=(), compare=False)
    arcade_game_list: tuple[str, ...] = field(default=(), compare=False)


@dataclass(frozen=True)
class Participant:
    id: str
    user_name: str
    user_email: str
    profile_url: str = ""
    profile_status: str = ""
    redemption_status: str = ""
    all_completed: str = ""
    skill_badges_count: int = 0
    skill_badge_names: str = ""
    arcade_games_count: int = 0
    arcade_game_names: str = ""

    @classmethod
    def from_fact(cls, participant_id: str, fact: ParticipantFact) -> Participant:
        """Every mutable field comes from the fact; only the id is carried in."""
        return cls(
            id=participant_id,
            user_name=fact.user_name,
            user_email=fact.user_email,
            profile_url=fact.profile_url,
            profile_status=fact.profile_status,
            redemption_status=fact.redemption_status,
            all_completed=fact.all_completed,
            skill_badges_count=fact.skill_badges_count,
            skill_badge_names=fact.skill_badge_names,
            arcade_games_count=fact.arcade_games_count,
            arcade_game_names=fact.arcade_game_names,
        )

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class DailySnapshot:
    id: str
    participant_id: str
    date: date
    skill_badges_count: int = 0
    arcade_games_count: int = 0
    skill_badge_names: str = ""
    arcade_game_names: str = ""

    @property
    def key(self) -> tuple[str, date]:
        return (self.participant_id, self.date)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class CsvUpload:
    id: str
    filename: str
    upload_date: datetime
    report_date: date
    participant_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "upload_date": self.upload_date.isoformat(),
            "report_date": self.report_date.isoformat(),
            "participant_count": self.participant_count,
        }

