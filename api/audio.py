import io
import logging
import math

import librosa  # ty: ignore[unresolved-import]
import numpy as np

logger = logging.getLogger(__name__)

TEMPO_SAMPLE_DURATION_S = 60.0


def db_to_linear(db: float) -> float:
    return math.pow(10.0, db / 20.0)


def linear_to_db(linear: float) -> float:
    return 20.0 * math.log10(max(linear, 1e-9))


def decode(source) -> tuple[np.ndarray, int]:
    """Decode a path or raw bytes to a (channels, samples) float64 array at the native rate."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        source = io.BytesIO(bytes(source))
    y, sr = librosa.load(source, sr=None, mono=False, dtype=np.float64)
    return np.atleast_2d(y), int(sr)


def probe_duration(file_path: str) -> float | None:
    try:
        duration = float(librosa.get_duration(path=file_path))
    except Exception as e:
        logger.warning(f"Could not probe duration of {file_path}: {e}")
        return None
    return duration or None


def detect_tempo(file_path: str) -> float:
    """Estimate BPM from the first minute of audio. Returns 0.0 when no beat is found."""
    try:
        y, sr = librosa.load(file_path, sr=None, mono=True, duration=TEMPO_SAMPLE_DURATION_S)

        # Percussive component carries the beat
        _, y_percussive = librosa.effects.hpss(y)
        tempo, _ = librosa.beat.beat_track(y=y_percussive, sr=sr)
        tempo_bpm = float(np.atleast_1d(tempo)[0])
    except Exception as e:
        logger.warning(f"Tempo detection failed for {file_path}: {e}")
        return 0.0

    if not math.isfinite(tempo_bpm) or tempo_bpm <= 0:
        return 0.0
    logger.info(f"Tempo for {file_path}: {tempo_bpm:.1f} BPM")
    return tempo_bpm
