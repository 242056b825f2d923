"""
BEHAVIOUR-AS-CONSTANTS
----------------------
Single source of truth for all behavioral invariants in the system.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Audio Format (PCM16 mono @ 16kHz, 20ms frames)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
AUDIO_FRAME_MS: Final[int] = 20

AUDIO_SAMPLES_PER_FRAME: Final[int] = (AUDIO_SAMPLE_RATE_HZ * AUDIO_FRAME_MS) // 1000
AUDIO_BYTES_PER_FRAME_PCM: Final[int] = AUDIO_SAMPLES_PER_FRAME * AUDIO_SAMPLE_WIDTH_BYTES

# =============================================================================
# Pipeline Wiring
# =============================================================================

# Source + sink; at least one processing stage is expected but not enforced
MIN_PIPELINE_STAGES: Final[int] = 2

# Per-stage inbox bound. The remote side gives no backpressure, so overflow
# drops the NEWEST frame instead of blocking the pump.
STAGE_INBOX_MAX_FRAMES: Final[int] = 512

# Upper bound on how long stop() waits for in-flight frames to drain
PIPELINE_STOP_GRACE_S: Final[float] = 2.0

# =============================================================================
# Utterance Segmentation (STT stage)
# =============================================================================

VAD_RMS_THRESHOLD: Final[float] = 0.02
VAD_FRAMES_REQUIRED: Final[int] = 3  # 60ms of sustained energy opens an utterance
UTTERANCE_SILENCE_MS: Final[int] = 600
UTTERANCE_MAX_MS: Final[int] = 15_000
UTTERANCE_MIN_SPEECH_MS: Final[int] = 200

# =============================================================================
# Backend Calls
# =============================================================================

BACKEND_REQUEST_TIMEOUT_S: Final[float] = 30.0
WORKERS_AI_BASE_URL: Final[str] = "https://api.cloudflare.com/client/v4/accounts"

# =============================================================================
# Conversation Context (text processor)
# =============================================================================

MAX_CONTEXT_TURNS: Final[int] = 8
MAX_CONTEXT_CHARS: Final[int] = 6_000

# Sentence splitting for streamed replies
REPLY_SENTENCE_BREAK_CHARS: Final[tuple[str, ...]] = (".", "!", "?")
REPLY_MIN_SENTENCE_CHARS: Final[int] = 12
REPLY_HARD_CAP_CHARS: Final[int] = 240

# =============================================================================
# Session Announcements
# =============================================================================

ANNOUNCE_PARTICIPANT_JOINED: Final[str] = "Participant Joined {name}"
ANNOUNCE_PARTICIPANT_LEFT: Final[str] = "Participant Left {name}"

