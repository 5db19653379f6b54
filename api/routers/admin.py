import logging
import os

from database import db, get_config, set_config
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel
from player import SKIP_POLICIES, TrackUnavailable
from playback import PlaybackBlocked

logger = logging.getLogger(__name__)
router = APIRouter()

ADMIN_TOKEN = os.environ.get("ADMIN_TOKEN", "")


def require_admin(x_admin_token: str = Header(None)):
    if not ADMIN_TOKEN:
        raise HTTPException(500, "ADMIN_TOKEN not configured")
    if x_admin_token != ADMIN_TOKEN:
        raise HTTPException(403, "Invalid admin token")


class ConfigUpdate(BaseModel):
    pro_name: str | None = None
    skip_policy: str | None = None
    playback_enabled: bool | None = None


@router.get("/admin/config")
def get_admin_config(auth=Depends(require_admin)):
    return {
        "pro_name": get_config("pro_name"),
        "skip_policy": get_config("skip_policy"),
        "playback_enabled": get_config("playback_enabled") == "true",
    }


@router.post("/admin/config")
def update_admin_config(update: ConfigUpdate, auth=Depends(require_admin)):
    if update.pro_name is not None:
        name = update.pro_name.strip()
        if not name or len(name) > 40:
            raise HTTPException(400, "pro_name must be 1-40 characters")
        set_config("pro_name", name)
        logger.info(f"PRO name set to: {name}")

    if update.skip_policy is not None:
        if update.skip_policy not in SKIP_POLICIES:
            raise HTTPException(400, "skip_policy must be 'discard' or 'flush'")
        set_config("skip_policy", update.skip_policy)
        logger.info(f"Skip policy set to: {update.skip_policy}")

    if update.playback_enabled is not None:
        set_config("playback_enabled", "true" if update.playback_enabled else "false")
        logger.info(f"Playback enabled: {update.playback_enabled}")

    return {"ok": True}


@router.post("/admin/skip")
def request_skip(request: Request, auth=Depends(require_admin)):
    """Skip to the next queued track."""
    try:
        request.app.state.player.next()
    except (PlaybackBlocked, TrackUnavailable) as e:
        logger.error(f"Skip failed: {e}")
        raise HTTPException(409, f"Skip failed: {e}")
    logger.info("Skipped to next track")
    return {"ok": True}


def _delete_tracks(request: Request, rows) -> int:
    player = request.app.state.player
    for row in rows:
        player.remove_track(row["id"])

    with db() as conn:
        for row in rows:
            # Play events stay: reports must keep counting past plays.
            conn.execute("DELETE FROM jobs WHERE track_id=?", (row["id"],))
            conn.execute("DELETE FROM tracks WHERE id=?", (row["id"],))

    for row in rows:
        file_path = row["file_path"]
        if file_path and os.path.exists(file_path):
            os.unlink(file_path)
            logger.info(f"Deleted file: {file_path}")
    return len(rows)


@router.delete("/admin/track/{track_id}")
def delete_track(track_id: str, request: Request, auth=Depends(require_admin)):
    """Remove a track from the library and delete its file."""
    with db() as conn:
        rows = conn.execute("SELECT id, file_path FROM tracks WHERE id=?", (track_id,)).fetchall()
    if not rows:
        raise HTTPException(404, "Track not found")

    _delete_tracks(request, rows)
    logger.info(f"Deleted track: {track_id}")
    return {"ok": True}


@router.delete("/admin/owner/{owner_id}")
def delete_owner_tracks(owner_id: str, request: Request, auth=Depends(require_admin)):
    """Remove every track owned by a deleted user."""
    with db() as conn:
        rows = conn.execute("SELECT id, file_path FROM tracks WHERE owner_id=?", (owner_id,)).fetchall()

    deleted = _delete_tracks(request, rows)
    logger.info(f"Deleted {deleted} track(s) for owner {owner_id}")
    return {"ok": True, "deleted": deleted}
