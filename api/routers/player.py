import logging

from database import db
from fastapi import APIRouter, Depends, HTTPException, Request
from models import Track
from playback import PlaybackBlocked
from player import Player, TrackUnavailable
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)
router = APIRouter()


def get_player(request: Request) -> Player:
    return request.app.state.player


def load_ready_tracks(track_ids: list[str]) -> list[Track]:
    """Fetch ready tracks in the order given; unknown or unready ids are rejected."""
    if not track_ids:
        return []
    placeholders = ",".join("?" for _ in track_ids)
    with db() as conn:
        rows = conn.execute(
            f"SELECT * FROM tracks WHERE status='ready' AND id IN ({placeholders})",
            track_ids,
        ).fetchall()
    by_id = {r["id"]: Track.from_row(r) for r in rows}
    missing = [tid for tid in track_ids if tid not in by_id]
    if missing:
        raise HTTPException(404, f"Tracks not found or not ready: {', '.join(missing)}")
    return [by_id[tid] for tid in track_ids]


def _transport(action, player: Player) -> dict:
    try:
        action()
    except PlaybackBlocked as e:
        raise HTTPException(409, f"Playback blocked: {e}. Press play to resume.")
    except TrackUnavailable as e:
        raise HTTPException(422, str(e))
    return player.snapshot()


class QueueRequest(BaseModel):
    track_ids: list[str] = Field(min_length=1)
    start_index: int = 0
    autoplay: bool = True


class SeekRequest(BaseModel):
    position_s: float


class VolumeRequest(BaseModel):
    volume: float


class MuteRequest(BaseModel):
    muted: bool


class LoopRequest(BaseModel):
    mode: str


class ShuffleRequest(BaseModel):
    enabled: bool


@router.get("/player")
def get_session(player: Player = Depends(get_player)):
    return player.snapshot()


@router.post("/player/queue")
def set_queue(req: QueueRequest, player: Player = Depends(get_player)):
    tracks = load_ready_tracks(req.track_ids)
    if not 0 <= req.start_index < len(tracks):
        raise HTTPException(400, "start_index out of range")
    return _transport(lambda: player.set_queue(tracks, req.start_index, req.autoplay), player)


@router.post("/player/play")
def play(player: Player = Depends(get_player)):
    return _transport(player.play, player)


@router.post("/player/pause")
def pause(player: Player = Depends(get_player)):
    return _transport(player.pause, player)


@router.post("/player/stop")
def stop(player: Player = Depends(get_player)):
    return _transport(player.stop, player)


@router.post("/player/next")
def next_track(player: Player = Depends(get_player)):
    return _transport(player.next, player)


@router.post("/player/previous")
def previous_track(player: Player = Depends(get_player)):
    return _transport(player.previous, player)


@router.post("/player/seek")
def seek(req: SeekRequest, player: Player = Depends(get_player)):
    return _transport(lambda: player.seek(req.position_s), player)


@router.post("/player/volume")
def set_volume(req: VolumeRequest, player: Player = Depends(get_player)):
    return _transport(lambda: player.set_volume(req.volume), player)


@router.post("/player/mute")
def set_muted(req: MuteRequest, player: Player = Depends(get_player)):
    return _transport(lambda: player.set_muted(req.muted), player)


@router.post("/player/loop")
def set_loop(req: LoopRequest, player: Player = Depends(get_player)):
    try:
        player.set_loop_mode(req.mode)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return player.snapshot()


@router.post("/player/shuffle")
def set_shuffle(req: ShuffleRequest, player: Player = Depends(get_player)):
    return _transport(lambda: player.set_shuffle(req.enabled), player)
