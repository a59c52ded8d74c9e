"""
Client kit.

Capture-side and playback-side pieces of an interpretation client:
- encoder: float samples to PCM16 frames
- aggregator: size/time dual-threshold chunking, speech indicator
- playback: ordered, non-overlapping playback of synthesized audio
- session: websockets client for the `/ws` endpoint
"""
from .aggregator import AudioBufferAggregator, SpeechActivityEstimator
from .encoder import AudioFrameEncoder
from .playback import PlaybackSequencer, WavFileSink, pcm16_to_float32
from .session import InterpreterClient

__all__ = [
    "AudioBufferAggregator",
    "SpeechActivityEstimator",
    "AudioFrameEncoder",
    "PlaybackSequencer",
    "WavFileSink",
    "pcm16_to_float32",
    "InterpreterClient",
]
