"""PCM conversion utilities."""
import io
import wave

import numpy as np

from constants import AUDIO_CHANNELS, AUDIO_SAMPLE_RATE_HZ, AUDIO_SAMPLE_WIDTH_BYTES


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; drop the odd byte
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")
    audio_f32 = audio_i16.astype(np.float32) / 32768.0
    return audio_f32


def rms(pcm_bytes: bytes) -> float:
    """RMS energy of a PCM16 frame, in [0.0, 1.0]. Empty input is silent."""
    f32 = pcm16le_to_float32(pcm_bytes)
    if f32.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(f32))))


def pcm16le_to_wav(
    pcm_bytes: bytes,
    *,
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ,
    channels: int = AUDIO_CHANNELS,
) -> bytes:
    """Wrap raw PCM16 in a WAV container so speech backends can sniff the format."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(AUDIO_SAMPLE_WIDTH_BYTES)
        wav.setframerate(sample_rate_hz)
        wav.writeframes(pcm_bytes)
    return buf.getvalue()
