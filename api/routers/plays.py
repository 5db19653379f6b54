import logging

from database import db, now_iso
from fastapi import APIRouter, HTTPException
from models import PlayEvent
from pydantic import BaseModel, Field
from recorder import is_counted, percent_of, save_play_event

logger = logging.getLogger(__name__)
router = APIRouter()


class PlayReport(BaseModel):
    track_id: str
    user_id: str = Field(min_length=1, max_length=100)
    session_id: str = Field(min_length=1, max_length=100)
    seconds_listened: float = Field(ge=0, allow_inf_nan=False)


@router.post("/plays")
def report_play(req: PlayReport):
    """Record a listen finished on a remote player, using the station's crediting rule."""
    with db() as conn:
        row = conn.execute("SELECT duration_s FROM tracks WHERE id=?", (req.track_id,)).fetchone()
    if not row:
        logger.warning(f"Play reported for unknown track_id: {req.track_id}")
        raise HTTPException(404, "Track not found")

    percent = percent_of(req.seconds_listened, row["duration_s"])
    event = save_play_event(
        PlayEvent(
            track_id=req.track_id,
            user_id=req.user_id,
            timestamp=now_iso(),
            seconds_listened=req.seconds_listened,
            percent_listened=percent,
            session_id=req.session_id,
            counted=is_counted(req.seconds_listened, percent),
        )
    )
    logger.info(f"Remote play logged: track={req.track_id} counted={event.counted}")
    return {
        "id": event.id,
        "percent_listened": event.percent_listened,
        "counted": event.counted,
    }
