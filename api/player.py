import logging
import os
import random
import threading
from typing import Callable, Optional

import numpy as np

from database import get_config
from models import PlaybackSession, Track
from playback import PlaybackBlocked, PlaybackGraph
from recorder import PlayEventRecorder

logger = logging.getLogger(__name__)

STATION_USER_ID = os.environ.get("STATION_USER_ID", "station")
LOOP_MODES = ("none", "single", "all")
SKIP_POLICIES = ("discard", "flush")


class TrackUnavailable(Exception):
    pass


def station_authorize() -> None:
    """Host permission check used by the station graph."""
    if get_config("playback_enabled") != "true":
        raise PlaybackBlocked("Playback is disabled for this station")


def station_skip_policy() -> str:
    policy = get_config("skip_policy")
    return policy if policy in SKIP_POLICIES else "discard"


class Player:
    """Owns the playback graph and the play recorder and keeps them in step.

    Every public method takes the same lock, so HTTP handlers and the playout
    thread drive the graph as a single caller. The graph's ended signal is
    handled inside render(): the finished listen is recorded before the next
    track is loaded and its occupancy begins.
    """

    def __init__(
        self,
        graph: PlaybackGraph,
        recorder: PlayEventRecorder,
        skip_policy: Callable[[], str] = station_skip_policy,
        rng: Optional[random.Random] = None,
    ):
        self.graph = graph
        self.recorder = recorder
        self.session = PlaybackSession()
        self._skip_policy = skip_policy
        self._rng = rng or random.Random()
        self._lock = threading.RLock()

        graph.time_update.subscribe(self._on_time_update)
        graph.ended.subscribe(self._on_ended)

    def snapshot(self) -> dict:
        with self._lock:
            return self.session.to_dict()

    # -- queue ---------------------------------------------------------------

    def set_queue(self, tracks: list[Track], start_index: int = 0, autoplay: bool = True) -> None:
        if not tracks:
            raise ValueError("Queue is empty")
        if not 0 <= start_index < len(tracks):
            raise ValueError(f"start_index {start_index} out of range")
        with self._lock:
            self._leave_current()
            self.session.queue = list(tracks)
            self._occupy(start_index, autoplay)

    def next(self) -> None:
        with self._lock:
            index = self._next_index(manual=True)
            if index is None:
                return
            self._leave_current()
            self._occupy(index, autoplay=True)

    def previous(self) -> None:
        with self._lock:
            if not self.session.queue:
                return
            index = (self.session.queue_index - 1) % len(self.session.queue)
            self._leave_current()
            self._occupy(index, autoplay=True)

    def _next_index(self, manual: bool) -> Optional[int]:
        queue = self.session.queue
        if not queue:
            return None
        current = self.session.queue_index
        if not manual and self.session.loop_mode == "single":
            return current
        if self.session.shuffle and len(queue) > 1:
            return self._rng.choice([i for i in range(len(queue)) if i != current])
        index = current + 1
        if index >= len(queue):
            # Manual skips wrap; natural ends wrap only when looping the queue.
            if manual or self.session.loop_mode == "all":
                return 0
            return None
        return index

    def _leave_current(self) -> None:
        """Close the current occupancy on a manual track change or removal."""
        if not self.recorder.active:
            return
        if self._skip_policy() == "flush":
            self.recorder.finish()
        else:
            self.recorder.abandon()

    def _occupy(self, index: int, autoplay: bool) -> None:
        track = self.session.queue[index]
        self.session.queue_index = index
        self.session.current_track = track
        self.session.is_playing = False
        self.session.position_s = 0.0
        self.session.duration_s = track.duration_s or 0.0

        if not track.file_path:
            self._clear_current()
            raise TrackUnavailable(f"Track {track.id} has no audio")
        try:
            self.graph.load(track.file_path, track.gain_db)
        except Exception as e:
            self._clear_current()
            raise TrackUnavailable(f"Could not load track {track.id}: {e}") from e

        self.recorder.start(track.id, self.graph.duration_s or track.duration_s)
        if autoplay:
            self._play()

    def _clear_current(self) -> None:
        self.graph.unload()
        self.session.current_track = None
        self.session.is_playing = False
        self.session.position_s = 0.0
        self.session.duration_s = 0.0

    # -- transport -----------------------------------------------------------

    def play(self) -> None:
        with self._lock:
            if self.session.current_track is None:
                if not self.session.queue:
                    raise TrackUnavailable("Nothing queued")
                self._occupy(max(self.session.queue_index, 0), autoplay=True)
                return
            self._play()

    def _play(self) -> None:
        try:
            self.graph.play()
        except PlaybackBlocked:
            self.session.is_playing = False
            raise
        self.session.is_playing = True
        self.recorder.resume()

    def pause(self) -> None:
        with self._lock:
            self.graph.pause()
            self.recorder.pause()
            self.session.is_playing = False

    def stop(self) -> None:
        with self._lock:
            self.graph.stop()
            self.recorder.pause()
            self.session.is_playing = False
            self.session.position_s = 0.0

    def seek(self, position_s: float) -> None:
        with self._lock:
            self.graph.seek(position_s)

    def set_volume(self, volume: float) -> None:
        with self._lock:
            self.graph.set_volume(volume)
            self.session.volume = self.graph.volume

    def set_muted(self, muted: bool) -> None:
        with self._lock:
            self.graph.set_muted(muted)
            self.session.muted = self.graph.muted

    def set_loop_mode(self, mode: str) -> None:
        if mode not in LOOP_MODES:
            raise ValueError(f"loop mode must be one of {LOOP_MODES}")
        with self._lock:
            self.session.loop_mode = mode

    def set_shuffle(self, enabled: bool) -> None:
        with self._lock:
            self.session.shuffle = bool(enabled)

    def remove_track(self, track_id: str) -> None:
        """Drop a deleted track from the queue, unloading it if it is playing."""
        with self._lock:
            current = self.session.current_track
            if current is not None and current.id == track_id:
                self._leave_current()
                self._clear_current()
            kept = [t for t in self.session.queue if t.id != track_id]
            if len(kept) != len(self.session.queue):
                current = self.session.current_track
                self.session.queue = kept
                self.session.queue_index = next(
                    (i for i, t in enumerate(kept) if current is not None and t.id == current.id),
                    -1,
                )

    # -- host side -----------------------------------------------------------

    def pull(self, frames: int) -> Optional[tuple[np.ndarray, int]]:
        """Render the next block for the host, or None while nothing is playing."""
        with self._lock:
            if not self.graph.is_playing or self.graph.suspended:
                return None
            sample_rate = self.graph.sample_rate
            return self.graph.render(frames), sample_rate

    def suspend(self) -> None:
        """The host stopped consuming audio; listening time stops until play()."""
        with self._lock:
            self.graph.suspend_context()
            self.recorder.pause()
            self.session.is_playing = False

    def close(self) -> None:
        with self._lock:
            self._leave_current()
            self.graph.close()

    # -- graph signals -------------------------------------------------------

    def _on_time_update(self, position_s: float, duration_s: float) -> None:
        self.session.position_s = position_s
        self.session.duration_s = duration_s
        self.recorder.update_duration(duration_s)

    def _on_ended(self) -> None:
        self.recorder.finish()
        self.session.is_playing = False

        attempts = len(self.session.queue)
        index = self._next_index(manual=False)
        while index is not None and attempts > 0:
            attempts -= 1
            try:
                self._occupy(index, autoplay=True)
                return
            except PlaybackBlocked:
                logger.warning("Auto-advance blocked; waiting for a manual resume")
                return
            except TrackUnavailable as e:
                logger.error(f"Skipping unplayable track: {e}")
                index = self._next_index(manual=False)

        logger.info("End of queue")
        self._clear_current()
