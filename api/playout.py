import logging
import os
import threading

import numpy as np

from player import Player

logger = logging.getLogger(__name__)

OUTPUT_PATH = os.environ.get("OUTPUT_PATH", "")
BLOCK_FRAMES = 2048
IDLE_POLL_S = 0.25
SINK_RETRY_S = 10.0

_playout_thread: threading.Thread | None = None
_stop_event = threading.Event()


def to_pcm16(block: np.ndarray) -> bytes:
    """Interleaved little-endian 16-bit PCM."""
    return (np.clip(block, -1.0, 1.0) * 32767.0).astype("<i2").tobytes()


def _playout_loop(player: Player):
    """Pull blocks from the player at real-time pace and write them to the sink."""
    logger.info("Playout thread started")
    sink = None
    while not _stop_event.is_set():
        try:
            pulled = player.pull(BLOCK_FRAMES)
            if pulled is None:
                _stop_event.wait(timeout=IDLE_POLL_S)
                continue

            block, sample_rate = pulled
            if OUTPUT_PATH:
                if sink is None:
                    sink = open(OUTPUT_PATH, "ab")
                sink.write(to_pcm16(block))
            _stop_event.wait(timeout=BLOCK_FRAMES / sample_rate if sample_rate else IDLE_POLL_S)

        except OSError as e:
            logger.error(f"Output sink failed, suspending playback: {e}")
            player.suspend()
            if sink is not None:
                sink.close()
                sink = None
            _stop_event.wait(timeout=SINK_RETRY_S)
        except Exception as e:
            logger.error(f"Playout loop error: {e}", exc_info=True)
            _stop_event.wait(timeout=SINK_RETRY_S)

    if sink is not None:
        sink.close()
    logger.info("Playout thread stopped")


def start_playout(player: Player):
    global _playout_thread
    _stop_event.clear()
    _playout_thread = threading.Thread(target=_playout_loop, args=(player,), daemon=True, name="radio-playout")
    _playout_thread.start()


def stop_playout():
    _stop_event.set()
    if _playout_thread:
        _playout_thread.join(timeout=5)
