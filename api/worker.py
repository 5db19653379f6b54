import logging
import os
import threading

from audio import detect_tempo, probe_duration
from database import db, now_iso
from gain import analyze_file

logger = logging.getLogger(__name__)

_worker_thread: threading.Thread | None = None
_stop_event = threading.Event()

# A re-upload queues a newer job for the same track; older results must not land.
_NOT_SUPERSEDED = "NOT EXISTS (SELECT 1 FROM jobs WHERE track_id=? AND id>?)"


def _process_job(job_id: int, track_id: str):
    """Process a single job: measure gain, tempo and duration of the uploaded audio."""
    logger.info(f"Processing job {job_id} for track {track_id}")

    with db() as conn:
        conn.execute(
            "UPDATE jobs SET status='processing', started_at=? WHERE id=?",
            (now_iso(), job_id),
        )
        conn.execute(
            "UPDATE tracks SET status='processing' WHERE id=?",
            (track_id,),
        )

    try:
        with db() as conn:
            row = conn.execute("SELECT file_path FROM tracks WHERE id=?", (track_id,)).fetchone()

        if not row:
            raise RuntimeError(f"Track {track_id} not found")
        file_path = row["file_path"]
        if not file_path or not os.path.exists(file_path):
            raise RuntimeError(f"Uploaded file not found for track {track_id}")

        # Decode failures come back as 0 dB rather than failing the upload
        gain_db = analyze_file(file_path)
        tempo_bpm = detect_tempo(file_path)
        duration_s = probe_duration(file_path)

        with db() as conn:
            updated = conn.execute(
                f"""
                UPDATE tracks SET
                    gain_db=?, tempo_bpm=?, duration_s=COALESCE(?, duration_s),
                    status='ready', ready_at=?, error_msg=NULL
                WHERE id=? AND file_path=? AND {_NOT_SUPERSEDED}
                """,
                (gain_db, tempo_bpm, duration_s, now_iso(), track_id, file_path, track_id, job_id),
            ).rowcount
            conn.execute(
                "UPDATE jobs SET status='done', finished_at=? WHERE id=?",
                (now_iso(), job_id),
            )

        if not updated:
            logger.warning(f"Track {track_id} was removed or re-uploaded during analysis; discarding result")
            return
        logger.info(f"Job {job_id} completed: track {track_id} gain={gain_db:+.1f} dB tempo={tempo_bpm:.1f}")

    except Exception as e:
        error_msg = str(e)
        logger.error(f"Job {job_id} failed: {error_msg}", exc_info=True)
        with db() as conn:
            conn.execute(
                "UPDATE jobs SET status='failed', finished_at=?, error_msg=? WHERE id=?",
                (now_iso(), error_msg, job_id),
            )
            conn.execute(
                f"UPDATE tracks SET status='failed', error_msg=? WHERE id=? AND {_NOT_SUPERSEDED}",
                (error_msg, track_id, track_id, job_id),
            )


def reset_stuck_jobs():
    """Reset any jobs left in 'processing' state by a previous crash/restart.

    Called from the main thread during startup, before the worker thread starts.
    """
    with db() as conn:
        stuck = conn.execute("SELECT id, track_id FROM jobs WHERE status='processing'").fetchall()
        for row in stuck:
            conn.execute(
                "UPDATE jobs SET status='pending', started_at=NULL WHERE id=?",
                (row["id"],),
            )
            conn.execute(
                "UPDATE tracks SET status='pending' WHERE id=?",
                (row["track_id"],),
            )
    if stuck:
        logger.warning(f"Reset {len(stuck)} stuck processing job(s) to pending on startup")
    else:
        logger.info("No stuck processing jobs found on startup")


def _worker_loop():
    """Background worker: poll for pending jobs and process them."""
    logger.info("Worker thread started")
    while not _stop_event.is_set():
        try:
            with db() as conn:
                row = conn.execute(
                    "SELECT id, track_id FROM jobs WHERE status='pending' ORDER BY created_at ASC LIMIT 1"
                ).fetchone()

            if row:
                _process_job(row["id"], row["track_id"])
            else:
                _stop_event.wait(timeout=5.0)

        except Exception as e:
            logger.error(f"Worker loop error: {e}", exc_info=True)
            _stop_event.wait(timeout=10.0)

    logger.info("Worker thread stopped")


def start_worker():
    global _worker_thread
    _stop_event.clear()
    _worker_thread = threading.Thread(target=_worker_loop, daemon=True, name="radio-worker")
    _worker_thread.start()


def stop_worker():
    _stop_event.set()
    if _worker_thread:
        _worker_thread.join(timeout=30)
