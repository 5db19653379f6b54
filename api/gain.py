"""Loudness normalization gain.

Estimates loudness as the RMS of the decoded signal and returns the gain
(in dB) that would bring it to TARGET_LOUDNESS_DB. RMS is a practical proxy
for perceived loudness, not a standards-grade loudness meter.

The gain is stored on the track at upload time and applied by the playback
graph when the track is loaded; the stored audio is never modified.
"""

import logging
import math
import os

import numpy as np

from audio import decode, linear_to_db

logger = logging.getLogger(__name__)

TARGET_LOUDNESS_DB = float(os.environ.get("TARGET_LOUDNESS_DB", "-14.0"))
MIN_GAIN_DB = -12.0  # cut cap so loud masters don't go near-silent
MAX_GAIN_DB = 12.0  # boost cap so quiet recordings don't distort
RMS_STRIDE = 4  # every 4th sample of every channel


def rms(samples: np.ndarray, stride: int = RMS_STRIDE) -> float:
    """RMS over every `stride`-th sample of each channel of a (channels, samples) array."""
    picked = np.atleast_2d(samples)[:, ::stride]
    if picked.size == 0:
        raise ValueError("no samples to measure")
    sum_of_squares = float(np.sum(np.square(picked, dtype=np.float64)))
    return math.sqrt(sum_of_squares / picked.size)


def gain_for_loudness(loudness_db: float, target_db: float = TARGET_LOUDNESS_DB) -> float:
    return max(MIN_GAIN_DB, min(MAX_GAIN_DB, target_db - loudness_db))


def _gain_from(source, label: str) -> float:
    try:
        samples, _ = decode(source)
        loudness_db = linear_to_db(rms(samples))
    except Exception as e:
        logger.warning(f"Gain analysis failed for {label}, defaulting to 0 dB: {e}")
        return 0.0

    gain_db = gain_for_loudness(loudness_db)
    if not math.isfinite(gain_db):
        logger.warning(f"Non-finite gain for {label}, defaulting to 0 dB")
        return 0.0
    logger.info(f"Gain for {label}: rms={loudness_db:.1f} dBFS gain={gain_db:.1f} dB")
    return gain_db


def analyze(audio_bytes: bytes) -> float:
    """Return the clamped playback gain for an encoded audio payload.

    Decode failures return 0.0 and are logged; this never raises.
    """
    return _gain_from(audio_bytes, f"<{len(audio_bytes)} bytes>")


def analyze_file(file_path: str) -> float:
    return _gain_from(file_path, file_path)
