"""Shared fixtures: a throwaway sqlite database and in-memory audio sources."""

import io
import json

import numpy as np
import pytest
import soundfile as sf

import database


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    monkeypatch.setattr(database, "DB_PATH", str(tmp_path / "radio.db"))
    database.init_db()
    return tmp_path / "radio.db"


class FakeSource:
    """Array-backed stand-in for playback.AudioSource."""

    def __init__(self, path: str, seconds: float = 1.0, samplerate: int = 1000, channels: int = 2, level: float = 0.5):
        self.path = path
        self.samplerate = samplerate
        self.channels = channels
        self.frames = int(seconds * samplerate)
        self.closed = False
        self._data = np.full((self.frames, channels), level, dtype=np.float32)
        self._pos = 0

    @property
    def duration_s(self) -> float:
        return self.frames / self.samplerate

    def tell(self) -> int:
        return self._pos

    def seek(self, frame: int) -> None:
        self._pos = max(0, min(frame, self.frames))

    def read(self, frames: int) -> np.ndarray:
        chunk = self._data[self._pos : self._pos + frames]
        self._pos += chunk.shape[0]
        return chunk

    def close(self) -> None:
        self.closed = True


class SourceFactory:
    """Opener that records every source it hands out."""

    def __init__(self, durations: dict | None = None, fail_paths: set | None = None):
        self.durations = durations or {}
        self.fail_paths = fail_paths or set()
        self.created: list[FakeSource] = []
        self.max_live = 0
        self.log: list[tuple[str, str]] = []

    @property
    def live(self) -> list[FakeSource]:
        return [s for s in self.created if not s.closed]

    def __call__(self, path: str) -> FakeSource:
        if path in self.fail_paths:
            raise RuntimeError(f"cannot open {path}")
        source = FakeSource(path, seconds=self.durations.get(path, 1.0))
        self.created.append(source)
        self.max_live = max(self.max_live, len(self.live))
        self.log.append(("open", path))
        return source


@pytest.fixture
def sources():
    return SourceFactory()


def wav_bytes(samples: np.ndarray, samplerate: int = 8000) -> bytes:
    buf = io.BytesIO()
    sf.write(buf, samples, samplerate, format="WAV", subtype="FLOAT")
    return buf.getvalue()


def insert_track(
    track_id: str,
    title: str = "Song",
    composer: str = "Composer",
    writers: list | None = None,
    owner_id: str = "owner-1",
    isrc_code: str | None = None,
    file_path: str | None = None,
    duration_s: float | None = 100.0,
    status: str = "ready",
):
    with database.db() as conn:
        conn.execute(
            """
            INSERT INTO tracks (id, owner_id, title, composer, writers, isrc_code,
                                file_path, duration_s, gain_db, status, submitted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0.0, ?, ?)
            """,
            (
                track_id,
                owner_id,
                title,
                composer,
                json.dumps(writers or []),
                isrc_code,
                file_path,
                duration_s,
                status,
                database.now_iso(),
            ),
        )


def insert_event(track_id: str, played_at: str, counted: bool = True, seconds: float = 40.0):
    with database.db() as conn:
        conn.execute(
            """
            INSERT INTO play_events (track_id, user_id, played_at, seconds_listened,
                                     percent_listened, session_id, counted)
            VALUES (?, 'listener', ?, ?, ?, 'session', ?)
            """,
            (track_id, played_at, seconds, seconds, int(counted)),
        )
