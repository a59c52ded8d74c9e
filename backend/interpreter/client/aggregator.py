"""
Audio Buffer Aggregator - coalesces encoder frames into network chunks.

A chunk is flushed as soon as the buffered audio reaches the target size,
or when no new frame arrived for the flush window, whichever comes first.
Speech activity is estimated per frame for a UI indicator only; it never
decides whether audio is sent.

Usage:
    aggregator = AudioBufferAggregator(on_chunk=outbox.put_nowait)

    for frame in encoder.iter_frames(samples):
        aggregator.feed(frame)

    aggregator.close()  # Flush remaining audio
"""

import asyncio
import logging
from typing import Callable, List, Optional

import numpy as np

from interpreter.config.constants import (
    AUDIO_BYTES_PER_SAMPLE,
    AUDIO_CHUNK_TARGET_BYTES,
    AUDIO_FLUSH_TIMEOUT_SEC,
    AUDIO_SAMPLE_RATE,
    SPEECH_SILENCE_DEBOUNCE_SEC,
    SPEECH_VOLUME_THRESHOLD,
)

logger = logging.getLogger(__name__)


def frame_volume(frame: bytes) -> float:
    """Mean absolute amplitude of a PCM16 frame, normalized to 0-1."""
    samples = np.frombuffer(frame[: len(frame) - len(frame) % 2], dtype="<i2")
    if samples.size == 0:
        return 0.0
    return float(np.mean(np.abs(samples.astype(np.float32)))) / 32768.0


class SpeechActivityEstimator:
    """
    Volume-based speaking indicator.

    Turns on with the first frame above the threshold and turns off after
    `debounce` seconds of audio with no such frame. Time is measured in
    audio duration, so the estimate does not depend on delivery timing.
    """

    def __init__(
        self,
        threshold: float = SPEECH_VOLUME_THRESHOLD,
        debounce: float = SPEECH_SILENCE_DEBOUNCE_SEC,
        sample_rate: int = AUDIO_SAMPLE_RATE,
        on_change: Optional[Callable[[bool], None]] = None,
    ):
        self.threshold = threshold
        self.debounce = debounce
        self.sample_rate = sample_rate
        self.on_change = on_change
        self.speaking = False
        self._silence = 0.0

    def update(self, frame: bytes) -> bool:
        duration = len(frame) / AUDIO_BYTES_PER_SAMPLE / self.sample_rate
        if frame_volume(frame) > self.threshold:
            self._silence = 0.0
            if not self.speaking:
                self._set(True)
        elif self.speaking:
            self._silence += duration
            if self._silence >= self.debounce:
                self._set(False)
        return self.speaking

    def _set(self, speaking: bool):
        self.speaking = speaking
        logger.debug(f"[SpeechActivity] {'Speech detected' if speaking else 'Speech ended'}")
        if self.on_change:
            self.on_change(speaking)


class AudioBufferAggregator:
    """
    Size/time dual-threshold chunker.

    Attributes:
        on_chunk: Called once per flush with one contiguous chunk
        target_bytes: Flush as soon as this many bytes are buffered
        flush_timeout: Flush a partial chunk after this many idle seconds
    """

    def __init__(
        self,
        on_chunk: Callable[[bytes], None],
        target_bytes: int = AUDIO_CHUNK_TARGET_BYTES,
        flush_timeout: float = AUDIO_FLUSH_TIMEOUT_SEC,
        activity: Optional[SpeechActivityEstimator] = None,
    ):
        self.on_chunk = on_chunk
        self.target_bytes = target_bytes
        self.flush_timeout = flush_timeout
        self.activity = activity or SpeechActivityEstimator()

        self._frames: List[bytes] = []
        self._size = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closed = False
        self.bytes_in = 0
        self.bytes_out = 0
        self.flush_count = 0

    @property
    def buffered_bytes(self) -> int:
        return self._size

    def feed(self, frame: bytes):
        """
        Add one encoder frame. Must be called from inside a running event loop
        so the flush timer can be armed.
        """
        if self._closed or not frame:
            return
        self.activity.update(frame)

        self._frames.append(frame)
        self._size += len(frame)
        self.bytes_in += len(frame)

        if self._size >= self.target_bytes:
            self.flush()
        else:
            self._arm_timer()

    def flush(self) -> Optional[bytes]:
        self._cancel_timer()
        if not self._frames:
            return None
        chunk = b"".join(self._frames)
        self._frames.clear()
        self._size = 0
        self.bytes_out += len(chunk)
        self.flush_count += 1
        status = "Speech" if self.activity.speaking else "Silence"
        logger.debug(f"[AudioAggregator] {status}: {len(chunk)} bytes")
        self.on_chunk(chunk)
        return chunk

    def close(self) -> Optional[bytes]:
        """Flush what is left and stop accepting frames."""
        chunk = self.flush()
        self._closed = True
        return chunk

    def _arm_timer(self):
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.flush_timeout, self._on_timer)

    def _on_timer(self):
        self._timer = None
        self.flush()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def get_stats(self) -> dict:
        return {
            "buffered_bytes": self._size,
            "bytes_in": self.bytes_in,
            "bytes_out": self.bytes_out,
            "flush_count": self.flush_count,
            "speaking": self.activity.speaking,
        }
