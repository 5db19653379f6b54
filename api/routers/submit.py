import json
import logging
import os
import uuid

import soundfile as sf
from database import db, now_iso
from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)
router = APIRouter()

MEDIA_DIR = os.environ.get("MEDIA_DIR", "/media")
# Playback streams files through libsndfile, so only containers it can open are accepted.
EXTENSION_FORMATS = {".mp3": "MP3", ".wav": "WAV", ".flac": "FLAC", ".ogg": "OGG", ".opus": "OGG"}
ALLOWED_EXTENSIONS = {ext for ext, fmt in EXTENSION_FORMATS.items() if fmt in sf.available_formats()}
MAX_FILE_SIZE = 200 * 1024 * 1024  # 200MB
MAX_PENDING_PER_OWNER = 5


def _parse_writers(writers: str | None) -> list[str]:
    if not writers:
        return []
    return [w.strip()[:200] for w in writers.replace(";", ",").split(",") if w.strip()]


async def _save_upload(file: UploadFile, track_id: str) -> str:
    assert file.filename is not None
    ext = os.path.splitext(file.filename)[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(400, f"Unsupported file type: {ext}")

    tracks_dir = os.path.join(MEDIA_DIR, "tracks")
    os.makedirs(tracks_dir, exist_ok=True)
    dest = os.path.join(tracks_dir, f"{track_id}{ext}")
    partial = dest + ".part"

    size = 0
    with open(partial, "wb") as f_out:
        while chunk := await file.read(65536):
            size += len(chunk)
            if size > MAX_FILE_SIZE:
                f_out.close()
                os.unlink(partial)
                raise HTTPException(413, "File too large (max 200MB)")
            f_out.write(chunk)
    os.replace(partial, dest)
    return dest


def _queue_job(conn, track_id: str):
    conn.execute(
        "INSERT INTO jobs (track_id, status, created_at) VALUES (?, 'pending', ?)",
        (track_id, now_iso()),
    )


def _check_pending(owner_id: str):
    with db() as conn:
        pending = conn.execute(
            "SELECT COUNT(*) FROM tracks WHERE owner_id=? AND status IN ('pending', 'processing')",
            (owner_id,),
        ).fetchone()[0]
    if pending >= MAX_PENDING_PER_OWNER:
        raise HTTPException(
            429,
            f"You already have {pending} tracks being analyzed. Please wait for them to finish before adding more.",
        )


@router.post("/submit")
async def submit_track(
    owner_id: str = Form(...),
    title: str = Form(None),
    composer: str = Form(""),
    writers: str = Form(None),
    isrc_code: str = Form(None),
    file: UploadFile = File(...),
):
    if not owner_id or not owner_id.strip():
        raise HTTPException(400, "owner_id is required")
    if not file.filename:
        raise HTTPException(400, "file is required")

    owner_id = owner_id.strip()[:50]
    _check_pending(owner_id)

    track_id = str(uuid.uuid4())
    dest = await _save_upload(file, track_id)

    track_title = (title or os.path.splitext(file.filename)[0])[:200]
    track_composer = (composer or "").strip()[:200]

    with db() as conn:
        conn.execute(
            """
            INSERT INTO tracks (id, owner_id, title, composer, writers, isrc_code,
                                file_path, status, submitted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?)
            """,
            (
                track_id,
                owner_id,
                track_title,
                track_composer,
                json.dumps(_parse_writers(writers)),
                (isrc_code or "").strip().upper()[:15] or None,
                dest,
                now_iso(),
            ),
        )
        _queue_job(conn, track_id)

    logger.info(f"Upload submission: track_id={track_id} file={dest}")
    return JSONResponse({"track_id": track_id, "status": "pending"})


@router.post("/track/{track_id}/reupload")
async def reupload_track(track_id: str, file: UploadFile = File(...)):
    """Replace a track's audio. Gain and tempo are cleared and measured again."""
    with db() as conn:
        row = conn.execute("SELECT file_path FROM tracks WHERE id=?", (track_id,)).fetchone()
    if not row:
        raise HTTPException(404, "Track not found")
    if not file.filename:
        raise HTTPException(400, "file is required")

    old_path = row["file_path"]
    dest = await _save_upload(file, track_id)
    if old_path and old_path != dest and os.path.exists(old_path):
        os.unlink(old_path)

    with db() as conn:
        conn.execute(
            """
            UPDATE tracks SET file_path=?, gain_db=NULL, tempo_bpm=NULL, duration_s=NULL,
                              status='pending', ready_at=NULL, error_msg=NULL
            WHERE id=?
            """,
            (dest, track_id),
        )
        _queue_job(conn, track_id)

    logger.info(f"Re-upload: track_id={track_id} file={dest}")
    return JSONResponse({"track_id": track_id, "status": "pending"})
