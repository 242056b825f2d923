"""
Frame primitives.

Pure data containers only.
No behavior, no queues, no timing logic.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Union


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class FrameKind(str, Enum):
    """
    Data kinds that can flow between stages.

    A stage declares which kinds it accepts and produces; adjacent stages
    are wired only when those sets line up.
    """

    AUDIO = "AUDIO"
    TEXT = "TEXT"


@dataclass(frozen=True)
class AudioFrame:
    """
    Binary audio flowing through the pipeline.

    pcm_bytes:
        Raw audio bytes. Inbound transport audio is PCM16 mono 16kHz;
        TTS output is whatever the backend returns (encoded audio is allowed,
        the sink forwards it untouched).

    ts_ms:
        Wall-clock timestamp (milliseconds) when the frame was produced.
        Observability only.
    """
    pcm_bytes: bytes
    ts_ms: int = field(default_factory=_now_ms)

    @property
    def kind(self) -> FrameKind:
        return FrameKind.AUDIO


@dataclass(frozen=True)
class TextFrame:
    """Text flowing through the pipeline (transcripts, replies, announcements)."""
    text: str
    ts_ms: int = field(default_factory=_now_ms)

    @property
    def kind(self) -> FrameKind:
        return FrameKind.TEXT


Frame = Union[AudioFrame, TextFrame]


def describe(frame: Frame) -> dict[str, object]:
    """Small, log-safe summary of a frame (never the payload itself)."""
    if isinstance(frame, AudioFrame):
        return {"kind": frame.kind.value, "bytes": len(frame.pcm_bytes)}
    return {"kind": frame.kind.value, "chars": len(frame.text)}
