"""
Stream a WAV file through a live interpretation session.

Reads a 16 kHz mono 16-bit WAV, streams it in real time through the
interpreter client, and writes the synthesized translation audio to a WAV.

Usage:
    python scripts/stream_wav.py question.wav --out reply.wav --doctor-spanish
"""
import argparse
import asyncio
import logging
import os
import sys
import wave

import numpy as np

# Add backend to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from interpreter.client import InterpreterClient, WavFileSink
from interpreter.config.constants import AUDIO_SAMPLE_RATE

CHUNK_MS = 100


def read_wav(path: str) -> np.ndarray:
    with wave.open(path, "rb") as wf:
        if wf.getnchannels() != 1:
            raise ValueError("WAV must be mono")
        if wf.getframerate() != AUDIO_SAMPLE_RATE:
            raise ValueError(f"WAV must be {AUDIO_SAMPLE_RATE} Hz")
        if wf.getsampwidth() != 2:
            raise ValueError("WAV must be 16-bit")
        pcm = np.frombuffer(wf.readframes(wf.getnframes()), dtype="<i2")
    return pcm.astype(np.float32) / 32768.0


async def stream(args):
    samples = read_wav(args.wav)
    sink = WavFileSink(args.out)
    client = InterpreterClient(
        args.url,
        language_config={"isDoctorSpanish": args.doctor_spanish},
        sink=sink,
    )
    client.on("transcript", lambda data: data["finished"] and print(f"📝 [{data['role']}] {data['text']}"))
    client.on("translation", lambda data: data["finished"] and print(f"🌐 {data['text']}"))
    client.on("error", lambda data: print(f"❌ {data['message']}"))

    await client.connect()
    print(f"✅ Session {client.session_id} ready")

    step = AUDIO_SAMPLE_RATE * CHUNK_MS // 1000
    for start in range(0, len(samples), step):
        await client.send_samples(samples[start:start + step])
        await asyncio.sleep(CHUNK_MS / 1000)

    # trailing silence lets the provider detect the end of the utterance
    silence = np.zeros(step, dtype=np.float32)
    for _ in range(int(args.tail_seconds * 1000 / CHUNK_MS)):
        await client.send_samples(silence)
        await asyncio.sleep(CHUNK_MS / 1000)

    summary = await client.stop()
    await client.close()
    sink.close()
    print(f"🔊 Wrote {sink.frames_written} frames to {args.out}")
    if summary:
        print(f"📋 Summary: {summary}")


def main():
    parser = argparse.ArgumentParser(description="Stream a WAV file through the interpreter")
    parser.add_argument("wav")
    parser.add_argument("--out", default="reply.wav")
    parser.add_argument("--url", default="ws://localhost:3001/ws")
    parser.add_argument("--doctor-spanish", action="store_true")
    parser.add_argument("--tail-seconds", type=float, default=4.0)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    asyncio.run(stream(args))


if __name__ == "__main__":
    main()
