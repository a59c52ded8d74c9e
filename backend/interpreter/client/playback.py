"""
Playback Sequencer - strictly ordered, non-overlapping playback.

Synthesized fragments arrive as base64 PCM16 at the provider's output rate.
They are decoded to float32 and handed to an AudioSink one at a time; the
next fragment starts only after the previous one finished. A fragment that
errors or takes longer than its duration plus a grace period is treated as
finished so the queue keeps moving.

Usage:
    sequencer = PlaybackSequencer(WavFileSink("reply.wav"))
    sequencer.enqueue(message["data"])
    await sequencer.wait_idle()
"""
import asyncio
import base64
import logging
import wave
from collections import deque
from typing import Callable, Deque, Optional, Protocol, Union

import numpy as np

from interpreter.config.constants import PLAYBACK_SAMPLE_RATE, PLAYBACK_STALL_GRACE_SEC

logger = logging.getLogger(__name__)


def pcm16_to_float32(data: bytes) -> np.ndarray:
    """Little-endian PCM16 to float32 in [-1, 1)."""
    usable = len(data) - len(data) % 2
    return np.frombuffer(data[:usable], dtype="<i2").astype(np.float32) / 32768.0


class AudioSink(Protocol):
    async def play(self, samples: np.ndarray, sample_rate: int) -> None:
        """Render `samples`; return once rendering finished."""
        ...


class WavFileSink:
    """Appends every played fragment to a 16-bit mono WAV file."""

    def __init__(self, path: str, sample_rate: int = PLAYBACK_SAMPLE_RATE):
        self._wav = wave.open(path, "wb")
        self._wav.setnchannels(1)
        self._wav.setsampwidth(2)
        self._wav.setframerate(sample_rate)
        self.frames_written = 0

    async def play(self, samples: np.ndarray, sample_rate: int) -> None:
        pcm = (np.clip(samples, -1.0, 1.0) * 0x7FFF).astype("<i2")
        self._wav.writeframes(pcm.tobytes())
        self.frames_written += len(pcm)

    def close(self):
        self._wav.close()


class PlaybackSequencer:
    """FIFO of audio fragments with a single `playing` flag."""

    def __init__(
        self,
        sink: AudioSink,
        sample_rate: int = PLAYBACK_SAMPLE_RATE,
        stall_grace: float = PLAYBACK_STALL_GRACE_SEC,
        on_event: Optional[Callable[[str], None]] = None,
    ):
        self.sink = sink
        self.sample_rate = sample_rate
        self.stall_grace = stall_grace
        self.on_event = on_event
        self.playing = False
        self.played = 0
        self.failed = 0
        self._queue: Deque[bytes] = deque()
        self._drain_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._queue)

    def enqueue(self, fragment: Union[str, bytes]):
        """
        Queue a fragment (base64 text or raw PCM16 bytes) and start playback if idle.

        A fragment that cannot be decoded counts as failed and is skipped.
        """
        try:
            data = base64.b64decode(fragment, validate=True) if isinstance(fragment, str) else bytes(fragment)
        except (ValueError, TypeError) as e:
            self.failed += 1
            logger.warning(f"[Playback] Undecodable audio fragment skipped: {e}")
            return
        self._queue.append(data)
        if not self.playing:
            self.playing = True
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self):
        try:
            while self._queue:
                data = self._queue.popleft()
                await self._play_one(data)
        finally:
            self.playing = False

    async def _play_one(self, data: bytes):
        samples = pcm16_to_float32(data)
        timeout = len(samples) / self.sample_rate + self.stall_grace
        self._emit("audio_playing")
        try:
            await asyncio.wait_for(self.sink.play(samples, self.sample_rate), timeout)
            self.played += 1
        except asyncio.TimeoutError:
            self.failed += 1
            logger.warning(f"[Playback] Fragment stalled for more than {timeout:.2f}s, skipping")
        except Exception as e:
            self.failed += 1
            logger.error(f"[Playback] Error playing audio: {e}")
        finally:
            self._emit("audio_stopped")

    def _emit(self, event: str):
        if self.on_event:
            self.on_event(event)

    async def wait_idle(self):
        """Wait until every queued fragment has been played."""
        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.shield(self._drain_task)

    async def close(self):
        self._queue.clear()
        task, self._drain_task = self._drain_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.playing = False
