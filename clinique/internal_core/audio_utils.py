from __future__ import annotations

import base64
import io
import wave
from typing import Union

import numpy as np


def decode_pcm16(data: Union[bytes, bytearray, str]) -> np.ndarray:
    """
    Decode little-endian 16-bit mono PCM into float32 samples in [-1, 1].

    Accepts raw bytes or a base64 string (the WebSocket relay sends base64).
    """
    if isinstance(data, str):
        try:
            data = base64.b64decode(data, validate=True)
        except ValueError as e:
            raise ValueError(f"Audio chunk is not valid base64: {e}")
    raw = bytes(data)
    if len(raw) % 2:
        raw = raw[:-1]
    audio_i16 = np.frombuffer(raw, dtype="<i2")
    return (audio_i16.astype(np.float32) / 32768.0).clip(-1.0, 1.0)


def compute_rms(audio: np.ndarray) -> float:
    if audio.size == 0:
        return 0.0
    x = audio.astype(np.float32)
    return float(np.sqrt(np.mean(x * x)))


def encode_wav_bytes(audio: np.ndarray, sample_rate: int = 16000) -> bytes:
    audio = np.asarray(audio, dtype=np.float32).clip(-1.0, 1.0)
    audio_i16 = (audio * 32767.0).round().astype("<i2")
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(int(sample_rate))
        wf.writeframes(audio_i16.tobytes())
    return buf.getvalue()
