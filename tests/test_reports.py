"""Tests for report aggregation."""

from datetime import date, datetime, timezone

import pytest

import database
from conftest import insert_event, insert_track
from models import PlayEvent
from reports import DELETED_TRACK_TITLE, aggregate, generate_report, period_bounds


def ts(day: int, hour: int = 12, minute: int = 0) -> str:
    return database.to_iso(datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc))


class TestPeriodBounds:
    def test_dates_cover_whole_days(self):
        start, end = period_bounds(date(2026, 3, 1), date(2026, 3, 31))
        assert start == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)

    def test_naive_datetimes_are_utc(self):
        start, _ = period_bounds(datetime(2026, 3, 1, 8), datetime(2026, 3, 2))
        assert start.tzinfo == timezone.utc
        assert start.hour == 8

    def test_reversed_period_rejected(self):
        with pytest.raises(ValueError):
            period_bounds(date(2026, 3, 2), date(2026, 3, 1))


class TestAggregate:
    def test_groups_in_first_encountered_order(self):
        events = [
            PlayEvent("b", "u", ts(1), 40.0, 40.0, "s", True),
            PlayEvent("a", "u", ts(2), 10.0, 10.0, "s", False),
            PlayEvent("b", "u", ts(3), 40.0, 40.0, "s", True),
        ]
        start, end = period_bounds(date(2026, 3, 1), date(2026, 3, 31))
        report = aggregate(events, {}, start, end)
        assert [r.track_id for r in report.rows] == ["b", "a"]
        assert report.total_plays == 3
        assert report.rows[0].first_play == datetime.fromisoformat(ts(1))
        assert report.rows[0].last_play == datetime.fromisoformat(ts(3))

    def test_no_events_is_empty_report(self):
        start, end = period_bounds(date(2026, 3, 1), date(2026, 3, 31))
        report = aggregate([], {}, start, end)
        assert report.total_plays == 0
        assert report.rows == []
        assert report.counted_plays == 0


class TestGenerateReport:
    def test_totals_per_track(self, temp_db):
        insert_track("a", title="Alpha")
        insert_track("b", title="Beta")
        insert_event("a", ts(1), counted=True)
        insert_event("a", ts(2), counted=True)
        insert_event("a", ts(3), counted=False, seconds=5.0)
        insert_event("b", ts(4), counted=True)

        report = generate_report(date(2026, 3, 1), date(2026, 3, 31))
        assert report.total_plays == 4
        rows = {r.track_id: r for r in report.rows}
        assert (rows["a"].total_plays, rows["a"].counted_plays) == (3, 2)
        assert (rows["b"].total_plays, rows["b"].counted_plays) == (1, 1)
        assert report.counted_plays == 3
        assert sum(r.total_plays for r in report.rows) == report.total_plays

    def test_boundaries_are_inclusive(self, temp_db):
        insert_track("a")
        start = datetime(2026, 3, 1, 0, 0, tzinfo=timezone.utc)
        end = datetime(2026, 3, 2, 0, 0, tzinfo=timezone.utc)
        insert_event("a", database.to_iso(start))
        insert_event("a", database.to_iso(end))
        insert_event("a", ts(3))

        report = generate_report(start, end)
        assert report.total_plays == 2
        assert report.rows[0].first_play == start
        assert report.rows[0].last_play == end

    def test_events_outside_period_excluded(self, temp_db):
        insert_track("a")
        insert_event("a", database.to_iso(datetime(2026, 2, 28, 23, 59, 59, tzinfo=timezone.utc)))
        insert_event("a", database.to_iso(datetime(2026, 4, 1, 0, 0, tzinfo=timezone.utc)))
        report = generate_report(date(2026, 3, 1), date(2026, 3, 31))
        assert report.total_plays == 0
        assert report.rows == []

    def test_metadata_joined_at_report_time(self, temp_db):
        insert_track("a", title="Old Title", isrc_code="USABC2600001")
        insert_event("a", ts(1))
        with database.db() as conn:
            conn.execute("UPDATE tracks SET title='New Title' WHERE id='a'")

        row = generate_report(date(2026, 3, 1), date(2026, 3, 31)).rows[0]
        assert row.title == "New Title"
        assert row.isrc_code == "USABC2600001"

    def test_writers_default_to_composer(self, temp_db):
        insert_track("a", composer="Jane Doe", writers=[])
        insert_track("b", composer="Jane Doe", writers=["Jane Doe", "John Roe"])
        insert_event("a", ts(1))
        insert_event("b", ts(2))
        rows = {r.track_id: r for r in generate_report(date(2026, 3, 1), date(2026, 3, 31)).rows}
        assert rows["a"].writers == ["Jane Doe"]
        assert rows["b"].writers == ["Jane Doe", "John Roe"]

    def test_deleted_track_still_counted(self, temp_db):
        insert_event("gone", ts(1))
        report = generate_report(date(2026, 3, 1), date(2026, 3, 31))
        assert report.total_plays == 1
        assert report.rows[0].title == DELETED_TRACK_TITLE
        assert report.rows[0].writers == []

    def test_owner_filter(self, temp_db):
        insert_track("a", owner_id="owner-1")
        insert_track("b", owner_id="owner-2")
        insert_event("a", ts(1))
        insert_event("b", ts(2))
        report = generate_report(date(2026, 3, 1), date(2026, 3, 31), owner_id="owner-2")
        assert report.total_plays == 1
        assert [r.track_id for r in report.rows] == ["b"]

    def test_rows_ordered_by_first_play(self, temp_db):
        insert_track("a")
        insert_track("b")
        insert_event("a", ts(5))
        insert_event("b", ts(2))
        insert_event("a", ts(1, hour=9))
        report = generate_report(date(2026, 3, 1), date(2026, 3, 31))
        assert [r.track_id for r in report.rows] == ["a", "b"]
        assert report.rows[0].first_play == datetime.fromisoformat(ts(1, hour=9))
