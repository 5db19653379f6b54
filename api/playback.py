"""Playback graph: one bound source, one gain stage, one output.

The graph is pull-driven. The host (the playout thread) calls ``render()``
for each block; the graph reads from the bound source, applies the ramped
normalization gain and the listener volume, and reports progress on its
two outbound channels.

A graph owns at most one source and one temporary file at a time. ``load()``
releases both before opening the next asset, so switching tracks never
leaves a handle behind.
"""

import logging
import math
import os
import tempfile
from enum import Enum
from typing import Callable, Optional
from urllib.parse import unquote, urlparse

import numpy as np
import soundfile as sf

from audio import db_to_linear

logger = logging.getLogger(__name__)

GAIN_RAMP_S = 0.05  # ramp gain changes over 50ms to avoid clicks


class PlaybackBlocked(Exception):
    """The host refused to start playback. Retry-safe; needs a manual resume."""


class PlaybackState(str, Enum):
    IDLE = "idle"
    LOADED = "loaded"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"


class Channel:
    """Outbound signal with a single subscriber.

    Subscribing replaces the previous callback, it never adds a second one.
    """

    def __init__(self, name: str):
        self.name = name
        self._callback: Optional[Callable] = None

    def subscribe(self, callback: Callable) -> None:
        self._callback = callback

    def clear(self) -> None:
        self._callback = None

    def emit(self, *args) -> None:
        if self._callback is not None:
            self._callback(*args)


class GainStage:
    """Linear gain with a fixed-length ramp toward each new target."""

    def __init__(self, ramp_s: float = GAIN_RAMP_S):
        if not math.isfinite(ramp_s) or ramp_s < 0:
            raise ValueError(f"invalid ramp length: {ramp_s}")
        self.ramp_s = ramp_s
        self.value = 1.0
        self.target = 1.0
        self._ramp_left = 0
        self._step = 0.0

    def ramp_to(self, target: float, sample_rate: int) -> None:
        frames = int(round(self.ramp_s * sample_rate))
        self.target = target
        if frames <= 0:
            self.value = target
            self._ramp_left = 0
            return
        self._ramp_left = frames
        self._step = (target - self.value) / frames

    def process(self, block: np.ndarray) -> np.ndarray:
        n = block.shape[0]
        if self._ramp_left <= 0:
            return block * self.value

        k = min(n, self._ramp_left)
        gains = np.full(n, self.target, dtype=np.float64)
        gains[:k] = self.value + self._step * np.arange(1, k + 1)
        self._ramp_left -= k
        self.value = self.target if self._ramp_left == 0 else float(gains[k - 1])
        return block * gains[:, None]


class AudioSource:
    """Streaming reader over a decoded audio file."""

    def __init__(self, path: str):
        self._file = sf.SoundFile(path)
        self.samplerate = self._file.samplerate
        self.channels = self._file.channels
        self.frames = self._file.frames

    @property
    def duration_s(self) -> float:
        return self.frames / self.samplerate if self.samplerate else 0.0

    def tell(self) -> int:
        return self._file.tell()

    def seek(self, frame: int) -> None:
        self._file.seek(frame)

    def read(self, frames: int) -> np.ndarray:
        return self._file.read(frames, dtype="float32", always_2d=True)

    def close(self) -> None:
        self._file.close()


def resolve_asset(asset_url: str) -> str:
    parsed = urlparse(asset_url)
    if parsed.scheme == "file":
        return unquote(parsed.path)
    if parsed.scheme == "":
        return asset_url
    raise ValueError(f"Unsupported asset locator: {asset_url}")


def _allow_playback() -> None:
    return None


class PlaybackGraph:
    def __init__(
        self,
        opener: Callable[[str], AudioSource] = AudioSource,
        authorize: Callable[[], None] = _allow_playback,
        stage_factory: Callable[[], GainStage] = GainStage,
    ):
        self.time_update = Channel("time_update")
        self.ended = Channel("ended")
        self.state = PlaybackState.IDLE
        self.volume = 1.0
        self.muted = False

        self._opener = opener
        self._authorize = authorize
        self._stage_factory = stage_factory
        self._stage: Optional[GainStage] = None
        self._graph_built = False
        self._context_suspended = False
        self._source: Optional[AudioSource] = None
        self._temp_path: Optional[str] = None
        self._gain_db = 0.0
        self._ended_fired = False

    # -- introspection -------------------------------------------------------

    @property
    def is_playing(self) -> bool:
        return self.state == PlaybackState.PLAYING

    @property
    def normalized(self) -> bool:
        """False when playing unnormalized because the gain stage could not be built."""
        return self._stage is not None

    @property
    def gain_db(self) -> float:
        return self._gain_db

    @property
    def has_source(self) -> bool:
        return self._source is not None

    @property
    def suspended(self) -> bool:
        return self._context_suspended

    @property
    def sample_rate(self) -> int:
        return self._source.samplerate if self._source is not None else 0

    @property
    def position_s(self) -> float:
        if self._source is None or not self._source.samplerate:
            return 0.0
        return self._source.tell() / self._source.samplerate

    @property
    def duration_s(self) -> float:
        return self._source.duration_s if self._source is not None else 0.0

    # -- loading -------------------------------------------------------------

    def load(self, asset_url: str, gain_db: float | None) -> None:
        path = resolve_asset(asset_url)
        self._release()
        self._acquire(path, gain_db)

    def load_bytes(self, data: bytes, gain_db: float | None, suffix: str = ".wav") -> None:
        """Load an in-memory asset through a temporary file owned by the graph."""
        self._release()
        fd, path = tempfile.mkstemp(prefix="playback-", suffix=suffix)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        self._temp_path = path
        self._acquire(path, gain_db)

    def unload(self) -> None:
        self._release()

    def close(self) -> None:
        self._release()
        self.time_update.clear()
        self.ended.clear()

    def _acquire(self, path: str, gain_db: float | None) -> None:
        try:
            self._source = self._opener(path)
        except Exception:
            self._release()
            raise

        self.state = PlaybackState.LOADED
        self._ended_fired = False
        self._gain_db = gain_db if gain_db is not None and math.isfinite(gain_db) else 0.0
        if self._stage is not None:
            self._stage.ramp_to(db_to_linear(self._gain_db), self._source.samplerate)
        logger.info(f"Loaded {path} ({self._source.duration_s:.1f}s, gain={self._gain_db:+.1f} dB)")
        self.time_update.emit(0.0, self._source.duration_s)

    def _release(self) -> None:
        if self._source is not None:
            self._source.close()
            self._source = None
        if self._temp_path is not None:
            if os.path.exists(self._temp_path):
                os.unlink(self._temp_path)
            self._temp_path = None
        self.state = PlaybackState.IDLE

    # -- transport -----------------------------------------------------------

    def _ensure_graph(self) -> None:
        if self._graph_built:
            return
        self._graph_built = True
        try:
            self._stage = self._stage_factory()
        except Exception as e:
            logger.warning(f"Could not build processing graph, playing unnormalized: {e}")
            self._stage = None
            return
        if self._source is not None:
            self._stage.ramp_to(db_to_linear(self._gain_db), self._source.samplerate)

    def suspend_context(self) -> None:
        """Called by the host when it stops pulling audio."""
        if not self._context_suspended:
            logger.info("Processing context suspended")
        self._context_suspended = True

    def play(self) -> None:
        """Start or resume playback.

        Raises PlaybackBlocked when the host refuses; the graph is left not
        playing so a later call can retry.
        """
        if self._source is None:
            raise RuntimeError("No track loaded")
        if self.state == PlaybackState.PLAYING and not self._context_suspended:
            return

        self._ensure_graph()
        if self._context_suspended:
            self._context_suspended = False
            logger.info("Processing context resumed")
        if self.state == PlaybackState.PLAYING:
            return
        if self.state == PlaybackState.ENDED:
            self._source.seek(0)
            self._ended_fired = False

        previous = self.state
        try:
            self._authorize()
        except PlaybackBlocked:
            self.state = PlaybackState.PAUSED if previous == PlaybackState.PAUSED else PlaybackState.LOADED
            logger.warning("Playback blocked by host")
            raise
        self.state = PlaybackState.PLAYING

    def pause(self) -> None:
        if self.state == PlaybackState.PLAYING:
            self.state = PlaybackState.PAUSED

    def stop(self) -> None:
        if self._source is None:
            return
        self._source.seek(0)
        self._ended_fired = False
        self.state = PlaybackState.LOADED

    def seek(self, position_s: float) -> None:
        if self._source is None or not math.isfinite(position_s):
            return
        position_s = max(0.0, min(position_s, self.duration_s))
        self._source.seek(int(position_s * self._source.samplerate))
        if self.state == PlaybackState.ENDED and position_s < self.duration_s:
            self.state = PlaybackState.PAUSED
            self._ended_fired = False
        self.time_update.emit(self.position_s, self.duration_s)

    def set_volume(self, volume: float) -> None:
        if not math.isfinite(volume):
            return
        self.volume = max(0.0, min(1.0, volume))

    def set_muted(self, muted: bool) -> None:
        self.muted = bool(muted)

    # -- host pull -----------------------------------------------------------

    def render(self, frames: int) -> np.ndarray:
        """Render the next block as a (frames, channels) float32 array."""
        channels = self._source.channels if self._source is not None else 2
        out = np.zeros((frames, channels), dtype=np.float32)
        if self._source is None or self.state != PlaybackState.PLAYING or self._context_suspended:
            return out

        block = self._source.read(frames)
        got = block.shape[0]
        if got:
            if self._stage is not None:
                block = self._stage.process(block)
            level = 0.0 if self.muted else self.volume
            out[:got] = block * level

        self.time_update.emit(self.position_s, self.duration_s)
        if got < frames:
            self.state = PlaybackState.ENDED
            if not self._ended_fired:
                self._ended_fired = True
                # Subscribers may load the next track; nothing below touches the old source.
                self.ended.emit()
        return out
