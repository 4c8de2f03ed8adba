"""skillboost_etl.snapshot_builder

Build the immutable point-in-time record for one resolved fact.
"""

from __future__ import annotations

from datetime import date
from typing import Callable

from skillboost_etl.models import DailySnapshot, ParticipantFact
from skillboost_etl.resolution_identity import new_identifier


def build_snapshot(
    participant_id: str,
    fact: ParticipantFact,
    report_date: date,
    id_factory: Callable[[], str] = new_identifier,
) -> DailySnapshot:
    """Freeze the fact's counts and name lists under (participant_id, report_date).

    The snapshot id is opaque; stores key snapshots by
    (participant_id, date), so a re-upload replaces rather than duplicates.
    """
    return DailySnapshot(
        id=id_factory(),
        participant_id=participant_id,
        date=report_date,
        skill_badges_count=fact.skill_badges_count,
        arcade_games_count=fact.arcade_games_count,
        skill_badge_names=fact.skill_badge_names,
        arcade_game_names=fact.arcade_game_names,
    )
