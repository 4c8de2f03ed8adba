"""skillboost_etl.timeline

Per-day progress views derived from one participant's snapshot history.

Usage:
    from skillboost_etl.timeline import Timeline

    for day in Timeline(gateway.list_snapshots_for_participant(pid)):
        print(day.date, day.new_badges, day.new_badge_names)

The first day reports its raw counts as the baseline.  Later days report
``current - previous``; a negative delta (an upstream data correction) is
passed through as-is.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterator, Sequence

from skillboost_etl.models import DailySnapshot
from skillboost_etl.normalize import split_names


@dataclass(frozen=True)
class TimelineDay:
    date: date
    new_badges: int
    new_badge_names: tuple[str, ...]
    total_badges: int
    new_arcade_games: int
    new_arcade_game_names: tuple[str, ...]
    total_arcade_games: int


def _new_names(current: list[str], previous: list[str]) -> tuple[str, ...]:
    """Names in ``current`` absent from ``previous``, in current order."""
    seen = set(previous)
    return tuple(name for name in current if name not in seen)


def project_day(
    snapshot: DailySnapshot,
    previous: DailySnapshot | None,
) -> TimelineDay:
    current_badges = split_names(snapshot.skill_badge_names)
    current_games = split_names(snapshot.arcade_game_names)
    if previous is None:
        prev_badges: list[str] = []
        prev_games: list[str] = []
        new_badges = snapshot.skill_badges_count
        new_games = snapshot.arcade_games_count
    else:
        prev_badges = split_names(previous.skill_badge_names)
        prev_games = split_names(previous.arcade_game_names)
        new_badges = snapshot.skill_badges_count - previous.skill_badges_count
        new_games = snapshot.arcade_games_count - previous.arcade_games_count

    return TimelineDay(
        date=snapshot.date,
        new_badges=new_badges,
        new_badge_names=_new_names(current_badges, prev_badges),
        total_badges=snapshot.skill_badges_count,
        new_arcade_games=new_games,
        new_arcade_game_names=_new_names(current_games, prev_games),
        total_arcade_games=snapshot.arcade_games_count,
    )


class Timeline:
    """Lazy, restartable sequence of TimelineDay over an ascending history.

    Nothing is computed until iteration; every ``iter()`` starts over.
    """

    def __init__(self, snapshots: Sequence[DailySnapshot]) -> None:
        self._snapshots = tuple(snapshots)

    def __iter__(self) -> Iterator[TimelineDay]:
        previous: DailySnapshot | None = None
        for snapshot in self._snapshots:
            yield project_day(snapshot, previous)
            previous = snapshot

    def __len__(self) -> int:
        return len(self._snapshots)

    def __bool__(self) -> bool:
        return bool(self._snapshots)


def progress_change(snapshots: Sequence[DailySnapshot]) -> int:
    """Badge count change from the first to the last snapshot (0 if < 2)."""
    if len(snapshots) < 2:
        return 0
    return snapshots[-1].skill_badges_count - snapshots[0].skill_badges_count
