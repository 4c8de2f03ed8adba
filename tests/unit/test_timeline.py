"""Unit tests for skillboost_etl.timeline."""

from __future__ import annotations

from datetime import date

from skillboost_etl.models import DailySnapshot
from skillboost_etl.timeline import Timeline, TimelineDay, progress_change, project_day


def _snap(day: int, badges: int, names: str = "", games: int = 0, game_names: str = "") -> DailySnapshot:
    return DailySnapshot(
        id=f"s-{day}",
        participant_id="p-1",
        date=date(2025, 10, day),
        skill_badges_count=badges,
        arcade_games_count=games,
        skill_badge_names=names,
        arcade_game_names=game_names,
    )


HISTORY = [
    _snap(7, 3, "A|B|C"),
    _snap(8, 3, "A|B|C"),
    _snap(9, 5, "A|B|C|D|E", games=1, game_names="Arcade 1"),
]


class TestProjectDay:
    def test_first_day_is_baseline(self):
        day = project_day(HISTORY[0], None)
        assert day == TimelineDay(
            date=date(2025, 10, 7),
            new_badges=3,
            new_badge_names=("A", "B", "C"),
            total_badges=3,
            new_arcade_games=0,
            new_arcade_game_names=(),
            total_arcade_games=0,
        )

    def test_negative_delta_passed_through(self):
        day = project_day(_snap(10, 2, "A|B"), _snap(9, 4, "A|B|C|D"))
        assert day.new_badges == -2
        assert day.new_badge_names == ()

    def test_new_names_keep_current_order(self):
        day = project_day(_snap(10, 4, "Z|A|M|B"), _snap(9, 2, "A|B"))
        assert day.new_badge_names == ("Z", "M")


class TestTimeline:
    def test_deltas(self):
        days = list(Timeline(HISTORY))
        assert [d.new_badges for d in days] == [3, 0, 2]
        assert [d.total_badges for d in days] == [3, 3, 5]
        assert days[1].new_badge_names == ()
        assert days[2].new_badge_names == ("D", "E")
        assert days[2].new_arcade_games == 1
        assert days[2].new_arcade_game_names == ("Arcade 1",)

    def test_restartable(self):
        timeline = Timeline(HISTORY)
        assert list(timeline) == list(timeline)
        assert len(timeline) == 3

    def test_empty(self):
        timeline = Timeline([])
        assert not timeline
        assert list(timeline) == []

    def test_single_snapshot(self):
        days = list(Timeline([_snap(7, 4, "A|B|C|D")]))
        assert len(days) == 1
        assert days[0].new_badges == 4


class TestProgressChange:
    def test_last_minus_first(self):
        assert progress_change(HISTORY) == 2

    def test_fewer_than_two(self):
        assert progress_change([]) == 0
        assert progress_change(HISTORY[:1]) == 0

    def test_can_be_negative(self):
        assert progress_change([_snap(7, 5), _snap(8, 4)]) == -1
