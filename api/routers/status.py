import logging

from database import db
from fastapi import APIRouter, HTTPException, Request
from models import Track

logger = logging.getLogger(__name__)
router = APIRouter()


def _track_to_dict(track: Track) -> dict:
    return {
        "id": track.id,
        "owner_id": track.owner_id,
        "title": track.title,
        "composer": track.composer,
        "writers": track.writers,
        "isrc_code": track.isrc_code,
        "duration_s": track.duration_s,
        "gain_db": track.gain_db,
        "tempo_bpm": track.tempo_bpm,
        "status": track.status,
        "error_msg": track.error_msg,
        "submitted_at": track.submitted_at,
        "ready_at": track.ready_at,
    }


@router.get("/status")
def get_status(request: Request):
    """Now playing, recent plays, and pending count."""
    with db() as conn:
        recent_rows = conn.execute(
            """
            SELECT pe.track_id, t.title, t.composer, pe.played_at,
                   pe.seconds_listened, pe.counted
            FROM play_events pe
            LEFT JOIN tracks t ON pe.track_id = t.id
            ORDER BY pe.played_at DESC, pe.id DESC
            LIMIT 10
            """
        ).fetchall()

        pending_count = conn.execute(
            "SELECT COUNT(*) as n FROM tracks WHERE status IN ('pending', 'processing')"
        ).fetchone()["n"]

    recent = [
        {
            "track_id": row["track_id"],
            "title": row["title"],
            "composer": row["composer"],
            "played_at": row["played_at"],
            "seconds_listened": row["seconds_listened"],
            "counted": bool(row["counted"]),
        }
        for row in recent_rows
    ]

    return {
        "now_playing": request.app.state.player.snapshot(),
        "recent": recent,
        "pending_count": pending_count,
    }


@router.get("/library")
def get_library(owner_id: str | None = None):
    """All tracks with their status."""
    with db() as conn:
        if owner_id:
            rows = conn.execute(
                "SELECT * FROM tracks WHERE owner_id=? ORDER BY submitted_at DESC", (owner_id,)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM tracks ORDER BY submitted_at DESC").fetchall()
    return {"tracks": [_track_to_dict(Track.from_row(r)) for r in rows]}


@router.get("/track/{track_id}")
def get_track(track_id: str):
    """Single track details (for polling analysis status)."""
    with db() as conn:
        row = conn.execute("SELECT * FROM tracks WHERE id=?", (track_id,)).fetchone()
    if not row:
        raise HTTPException(404, "Track not found")
    return _track_to_dict(Track.from_row(row))
