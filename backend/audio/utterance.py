"""
Utterance segmentation for streaming PCM16 audio.

Purpose:
- Turn a continuous stream of inbound audio chunks into bounded utterances
  that a one-shot speech-to-text backend can transcribe.

Rules:
- An utterance opens once the VAD reports sustained energy. The frames that
  triggered the VAD are kept (pre-roll) so the first syllable is not cut.
- It closes after UTTERANCE_SILENCE_MS of quiet, or is force-closed at
  UTTERANCE_MAX_MS.
- Utterances with less than UTTERANCE_MIN_SPEECH_MS of loud audio are
  discarded (coughs, clicks).

Pure and synchronous: no IO, no timers, no asyncio.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from audio.vad import EnergyVAD
from constants import (
    AUDIO_CHANNELS,
    AUDIO_SAMPLE_RATE_HZ,
    AUDIO_SAMPLE_WIDTH_BYTES,
    UTTERANCE_MAX_MS,
    UTTERANCE_MIN_SPEECH_MS,
    UTTERANCE_SILENCE_MS,
    VAD_FRAMES_REQUIRED,
    VAD_RMS_THRESHOLD,
)


_BYTES_PER_MS = AUDIO_SAMPLE_RATE_HZ * AUDIO_CHANNELS * AUDIO_SAMPLE_WIDTH_BYTES / 1000.0


def duration_ms(num_bytes: int) -> int:
    """Duration of a PCM16 mono 16kHz byte count, in whole milliseconds."""
    return int(num_bytes / _BYTES_PER_MS)


@dataclass(frozen=True)
class Utterance:
    """
    One bounded span of speech.

    forced is True when the utterance hit the length cap instead of ending
    on silence.
    """
    pcm_bytes: bytes
    duration_ms: int
    speech_ms: int
    forced: bool = False


class UtteranceSegmenter:
    """
    Accumulates audio chunks and returns an Utterance at each boundary.

    One instance per audio stream; not shared across sessions.
    """

    def __init__(
        self,
        *,
        vad: EnergyVAD | None = None,
        silence_ms: int = UTTERANCE_SILENCE_MS,
        max_ms: int = UTTERANCE_MAX_MS,
        min_speech_ms: int = UTTERANCE_MIN_SPEECH_MS,
    ) -> None:
        self._vad = vad or EnergyVAD(
            threshold=VAD_RMS_THRESHOLD,
            frames_required=VAD_FRAMES_REQUIRED,
        )
        self._silence_limit_ms = silence_ms
        self._max_ms = max_ms
        self._min_speech_ms = min_speech_ms

        self._pre_roll: Deque[bytes] = deque(maxlen=VAD_FRAMES_REQUIRED)
        self._buf = bytearray()
        self._in_speech = False
        self._buffered_ms = 0
        self._speech_ms = 0
        self._silence_ms = 0

    @property
    def in_speech(self) -> bool:
        return self._in_speech

    def push(self, pcm_bytes: bytes) -> Optional[Utterance]:
        """
        Feed one chunk of audio.

        Returns:
            A completed Utterance if this chunk closed one, else None.
        """
        if not pcm_bytes:
            return None
        chunk_ms = duration_ms(len(pcm_bytes))

        if not self._in_speech:
            self._pre_roll.append(pcm_bytes)
            if self._vad.observe(pcm_bytes):
                self._open()
            return None

        self._buf += pcm_bytes
        self._buffered_ms += chunk_ms
        if self._vad.is_loud(pcm_bytes):
            self._silence_ms = 0
            self._speech_ms += chunk_ms
        else:
            self._silence_ms += chunk_ms

        if self._silence_ms >= self._silence_limit_ms:
            return self._close(forced=False)
        if self._buffered_ms >= self._max_ms:
            return self._close(forced=True)
        return None

    def reset(self) -> None:
        self._pre_roll.clear()
        self._buf = bytearray()
        self._in_speech = False
        self._buffered_ms = 0
        self._speech_ms = 0
        self._silence_ms = 0
        self._vad.reset()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _open(self) -> None:
        self._in_speech = True
        self._buf = bytearray(b"".join(self._pre_roll))
        self._buffered_ms = duration_ms(len(self._buf))
        self._speech_ms = self._buffered_ms
        self._silence_ms = 0
        self._pre_roll.clear()

    def _close(self, *, forced: bool) -> Optional[Utterance]:
        utterance = Utterance(
            pcm_bytes=bytes(self._buf),
            duration_ms=self._buffered_ms,
            speech_ms=self._speech_ms,
            forced=forced,
        )
        self.reset()
        if utterance.speech_ms < self._min_speech_ms:
            return None
        return utterance
