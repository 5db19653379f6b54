import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class Track:
    id: str
    owner_id: str
    title: str
    composer: str
    writers: list[str]
    isrc_code: Optional[str]
    file_path: Optional[str]  # audio asset reference
    duration_s: Optional[float]
    gain_db: Optional[float]  # written once by the analysis worker
    tempo_bpm: Optional[float]
    status: str  # 'pending' | 'processing' | 'ready' | 'failed'
    error_msg: Optional[str]
    submitted_at: str
    ready_at: Optional[str]

    @classmethod
    def from_row(cls, row) -> "Track":
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            composer=row["composer"] or "",
            writers=json.loads(row["writers"] or "[]"),
            isrc_code=row["isrc_code"] or None,
            file_path=row["file_path"],
            duration_s=row["duration_s"],
            gain_db=row["gain_db"],
            tempo_bpm=row["tempo_bpm"],
            status=row["status"],
            error_msg=row["error_msg"],
            submitted_at=row["submitted_at"],
            ready_at=row["ready_at"],
        )


@dataclass
class PlayEvent:
    track_id: str
    user_id: str
    timestamp: str  # ISO-8601, UTC
    seconds_listened: float
    percent_listened: float  # not capped at 100
    session_id: str
    counted: bool
    id: Optional[int] = None


@dataclass
class PlaybackSession:
    """Process-local transport state. Never persisted."""

    current_track: Optional[Track] = None
    is_playing: bool = False
    position_s: float = 0.0
    duration_s: float = 0.0
    volume: float = 1.0
    muted: bool = False
    loop_mode: str = "none"  # 'none' | 'single' | 'all'
    shuffle: bool = False
    queue: list[Track] = field(default_factory=list)
    queue_index: int = -1

    def to_dict(self) -> dict:
        track = self.current_track
        return {
            "current_track": (
                {"id": track.id, "title": track.title, "composer": track.composer, "gain_db": track.gain_db}
                if track
                else None
            ),
            "is_playing": self.is_playing,
            "position_s": self.position_s,
            "duration_s": self.duration_s,
            "volume": self.volume,
            "muted": self.muted,
            "loop_mode": self.loop_mode,
            "shuffle": self.shuffle,
            "queue": [t.id for t in self.queue],
            "queue_index": self.queue_index,
        }


@dataclass
class ReportRow:
    track_id: str
    title: str
    composer: str
    writers: list[str]
    isrc_code: Optional[str]
    total_plays: int
    counted_plays: int
    first_play: datetime
    last_play: datetime


@dataclass
class Report:
    period_start: datetime
    period_end: datetime
    generated_at: datetime
    total_plays: int
    rows: list[ReportRow]

    @property
    def counted_plays(self) -> int:
        return sum(r.counted_plays for r in self.rows)

    def to_dict(self) -> dict:
        return {
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "generated_at": self.generated_at.isoformat(),
            "total_plays": self.total_plays,
            "counted_plays": self.counted_plays,
            "tracks": [
                {
                    "track_id": r.track_id,
                    "title": r.title,
                    "composer": r.composer,
                    "writers": r.writers,
                    "isrc_code": r.isrc_code,
                    "total_plays": r.total_plays,
                    "counted_plays": r.counted_plays,
                    "first_play_date": r.first_play.isoformat(),
                    "last_play_date": r.last_play.isoformat(),
                }
                for r in self.rows
            ],
        }
