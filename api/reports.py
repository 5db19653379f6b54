"""Performance report aggregation.

Play events are filtered to an inclusive period, grouped per track in the
order each track first appears, and joined to the track metadata as it is
*now*, not as it was when the play happened. Edits to titles, writers or
ISRC codes therefore show up in reports for older plays as well.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Iterable, Optional

from database import db, to_iso
from models import PlayEvent, Report, ReportRow, Track

logger = logging.getLogger(__name__)

DELETED_TRACK_TITLE = "(deleted track)"


def period_bounds(period_start: date | datetime, period_end: date | datetime) -> tuple[datetime, datetime]:
    """Expand date boundaries to whole UTC days; datetimes are taken as given (naive = UTC)."""

    def _edge(value, edge_time):
        if not isinstance(value, datetime):
            return datetime.combine(value, edge_time, tzinfo=timezone.utc)
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    start = _edge(period_start, time.min)
    end = _edge(period_end, time.max)
    if start > end:
        raise ValueError("period_start is after period_end")
    return start, end


def _row_for(track_id: str, track: Optional[Track], events: list[PlayEvent]) -> ReportRow:
    stamps = [datetime.fromisoformat(e.timestamp) for e in events]
    if track is not None:
        title, composer, isrc = track.title, track.composer, track.isrc_code
        writers = list(track.writers)
    else:
        title, composer, isrc, writers = DELETED_TRACK_TITLE, "", None, []
    if not writers and composer:
        writers = [composer]
    return ReportRow(
        track_id=track_id,
        title=title,
        composer=composer,
        writers=writers,
        isrc_code=isrc,
        total_plays=len(events),
        counted_plays=sum(1 for e in events if e.counted),
        first_play=min(stamps),
        last_play=max(stamps),
    )


def aggregate(
    events: Iterable[PlayEvent],
    tracks: dict[str, Track],
    period_start: datetime,
    period_end: datetime,
    generated_at: Optional[datetime] = None,
) -> Report:
    """Group already-filtered events per track, keeping first-encountered order."""
    groups: dict[str, list[PlayEvent]] = {}
    total = 0
    for event in events:
        groups.setdefault(event.track_id, []).append(event)
        total += 1

    rows = [_row_for(track_id, tracks.get(track_id), group) for track_id, group in groups.items()]
    return Report(
        period_start=period_start,
        period_end=period_end,
        generated_at=generated_at or datetime.now(timezone.utc),
        total_plays=total,
        rows=rows,
    )


def _event_from_row(row) -> PlayEvent:
    return PlayEvent(
        id=row["id"],
        track_id=row["track_id"],
        user_id=row["user_id"],
        timestamp=row["played_at"],
        seconds_listened=row["seconds_listened"],
        percent_listened=row["percent_listened"],
        session_id=row["session_id"],
        counted=bool(row["counted"]),
    )


def generate_report(
    period_start: date | datetime,
    period_end: date | datetime,
    owner_id: Optional[str] = None,
) -> Report:
    start, end = period_bounds(period_start, period_end)

    with db() as conn:
        if owner_id:
            event_rows = conn.execute(
                """
                SELECT pe.* FROM play_events pe
                JOIN tracks t ON t.id = pe.track_id
                WHERE pe.played_at BETWEEN ? AND ? AND t.owner_id = ?
                ORDER BY pe.played_at ASC, pe.id ASC
                """,
                (to_iso(start), to_iso(end), owner_id),
            ).fetchall()
        else:
            event_rows = conn.execute(
                """
                SELECT * FROM play_events
                WHERE played_at BETWEEN ? AND ?
                ORDER BY played_at ASC, id ASC
                """,
                (to_iso(start), to_iso(end)),
            ).fetchall()

        track_ids = sorted({r["track_id"] for r in event_rows})
        tracks: dict[str, Track] = {}
        if track_ids:
            placeholders = ",".join("?" for _ in track_ids)
            for row in conn.execute(f"SELECT * FROM tracks WHERE id IN ({placeholders})", track_ids):
                tracks[row["id"]] = Track.from_row(row)

    report = aggregate((_event_from_row(r) for r in event_rows), tracks, start, end)
    logger.info(
        f"Report {to_iso(start)}..{to_iso(end)}: {report.total_plays} plays "
        f"across {len(report.rows)} tracks"
    )
    return report
