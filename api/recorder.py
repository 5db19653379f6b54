import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from database import db, to_iso
from models import PlayEvent

logger = logging.getLogger(__name__)

COUNTED_MIN_SECONDS = 30.0
COUNTED_MIN_PERCENT = 50.0


def is_counted(seconds_listened: float, percent_listened: float) -> bool:
    """A listen is royalty-eligible at 30 seconds or half the track, whichever comes first."""
    return seconds_listened >= COUNTED_MIN_SECONDS or percent_listened >= COUNTED_MIN_PERCENT


def percent_of(seconds_listened: float, duration_s: float | None) -> float:
    if not duration_s or duration_s <= 0:
        return 0.0
    return seconds_listened / duration_s * 100.0


def save_play_event(event: PlayEvent) -> PlayEvent:
    with db() as conn:
        cur = conn.execute(
            """
            INSERT INTO play_events (track_id, user_id, played_at, seconds_listened,
                                     percent_listened, session_id, counted)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.track_id,
                event.user_id,
                event.timestamp,
                event.seconds_listened,
                event.percent_listened,
                event.session_id,
                int(event.counted),
            ),
        )
        event.id = cur.lastrowid
    return event


class PlayEventRecorder:
    """Accumulates listened time for the track occupying the current slot.

    Time accrues only between resume() and pause(). finish() emits exactly
    one PlayEvent for the occupancy and always resets, even if saving fails.
    """

    def __init__(
        self,
        user_id: str,
        session_id: Optional[str] = None,
        persist: Callable[[PlayEvent], PlayEvent] = save_play_event,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.user_id = user_id
        self.session_id = session_id or uuid.uuid4().hex
        self._persist = persist
        self._clock = clock
        self._now = now
        self._reset()

    def _reset(self) -> None:
        self.track_id: Optional[str] = None
        self.duration_s: float = 0.0
        self._accumulated = 0.0
        self._started_at: Optional[float] = None

    @property
    def active(self) -> bool:
        return self.track_id is not None

    @property
    def seconds_listened(self) -> float:
        total = self._accumulated
        if self._started_at is not None:
            total += self._clock() - self._started_at
        return total

    def start(self, track_id: str, duration_s: float | None) -> None:
        if self.active:
            raise RuntimeError(f"Occupancy for {self.track_id} still open")
        self.track_id = track_id
        self.duration_s = duration_s or 0.0

    def update_duration(self, duration_s: float) -> None:
        if self.active and duration_s > 0:
            self.duration_s = duration_s

    def resume(self) -> None:
        if self.active and self._started_at is None:
            self._started_at = self._clock()

    def pause(self) -> None:
        if self._started_at is not None:
            self._accumulated += self._clock() - self._started_at
            self._started_at = None

    def finish(self) -> Optional[PlayEvent]:
        """Close the occupancy and persist its PlayEvent."""
        if not self.active:
            return None
        self.pause()
        seconds = self._accumulated
        percent = percent_of(seconds, self.duration_s)
        event = PlayEvent(
            track_id=self.track_id,
            user_id=self.user_id,
            timestamp=to_iso(self._now()),
            seconds_listened=seconds,
            percent_listened=percent,
            session_id=self.session_id,
            counted=is_counted(seconds, percent),
        )
        try:
            self._persist(event)
            logger.info(
                f"Play recorded: track={event.track_id} seconds={seconds:.1f} "
                f"percent={percent:.1f} counted={event.counted}"
            )
        except Exception as e:
            logger.error(f"Could not save play event for {event.track_id}, dropping it: {e}", exc_info=True)
        finally:
            self._reset()
        return event

    def abandon(self) -> None:
        """Close the occupancy without emitting an event."""
        if self.active:
            logger.info(f"Listen of {self.track_id} abandoned after {self.seconds_listened:.1f}s, not recorded")
        self._reset()
