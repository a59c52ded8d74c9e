"""
Audio Frame Encoder - float microphone samples to PCM16 frames.

Usage:
    encoder = AudioFrameEncoder()
    for frame in encoder.iter_frames(samples):
        aggregator.feed(frame)
"""
from typing import Iterator

import numpy as np

from interpreter.config.constants import ENCODER_FRAME_SAMPLES


class AudioFrameEncoder:
    """
    Converts float samples in [-1, 1] to little-endian 16-bit PCM.

    Samples are clamped first; negative values scale by 0x8000 and positive
    values by 0x7FFF so both ends of the range map exactly onto int16.
    """

    def __init__(self, frame_samples: int = ENCODER_FRAME_SAMPLES):
        if frame_samples <= 0:
            raise ValueError("frame_samples must be positive")
        self.frame_samples = frame_samples

    @staticmethod
    def encode(samples) -> bytes:
        audio = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
        scaled = np.where(audio < 0, audio * 0x8000, audio * 0x7FFF)
        return scaled.astype("<i2").tobytes()

    def iter_frames(self, samples) -> Iterator[bytes]:
        """Yield one encoded frame per `frame_samples` samples; the last frame may be shorter."""
        audio = np.asarray(samples, dtype=np.float32).reshape(-1)
        for start in range(0, len(audio), self.frame_samples):
            yield self.encode(audio[start:start + self.frame_samples])
