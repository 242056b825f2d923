# pylint: disable=missing-module-docstring,missing-function-docstring

import io
import wave

from audio.pcm import pcm16le_to_float32, pcm16le_to_wav, rms
from audio.utterance import UtteranceSegmenter, duration_ms
from audio.vad import EnergyVAD
from constants import AUDIO_BYTES_PER_FRAME_PCM, AUDIO_SAMPLE_RATE_HZ

SAMPLES = AUDIO_BYTES_PER_FRAME_PCM // 2

LOUD = b"\x00\x40" * SAMPLES   # 0.5 full scale, 20ms
QUIET = b"\x00\x00" * SAMPLES  # digital silence, 20ms


# ---------------------------------------------------------------------
# PCM helpers
# ---------------------------------------------------------------------

def test_pcm_conversion_and_rms():
    f32 = pcm16le_to_float32(b"\x00\x40\x00\xc0\x01")
    assert list(f32) == [0.5, -0.5]
    assert rms(LOUD) == 0.5
    assert rms(b"") == 0.0
    assert duration_ms(len(LOUD)) == 20


def test_wav_wrapper_declares_format():
    data = pcm16le_to_wav(QUIET)
    assert data[:4] == b"RIFF"

    with wave.open(io.BytesIO(data), "rb") as wav:
        assert wav.getframerate() == AUDIO_SAMPLE_RATE_HZ
        assert wav.getnchannels() == 1
        assert wav.getsampwidth() == 2
        assert wav.readframes(wav.getnframes()) == QUIET


# ---------------------------------------------------------------------
# VAD
# ---------------------------------------------------------------------

def test_vad_needs_consecutive_loud_frames():
    vad = EnergyVAD(threshold=0.02, frames_required=3)

    assert vad.observe(LOUD) is False
    assert vad.observe(QUIET) is False
    assert vad.observe(LOUD) is False
    assert vad.observe(LOUD) is False
    assert vad.observe(LOUD) is True

    vad.reset()
    assert vad.observe(LOUD) is False


# ---------------------------------------------------------------------
# Utterances
# ---------------------------------------------------------------------

def test_utterance_closes_after_silence():
    seg = UtteranceSegmenter()

    for _ in range(13):
        assert seg.push(LOUD) is None
    assert seg.in_speech

    results = [seg.push(QUIET) for _ in range(30)]
    assert all(r is None for r in results[:-1])

    utterance = results[-1]
    assert utterance is not None
    assert utterance.forced is False
    assert utterance.speech_ms == 260
    assert utterance.duration_ms == 860
    assert utterance.pcm_bytes.startswith(LOUD * 13)
    assert not seg.in_speech


def test_short_blip_is_discarded():
    seg = UtteranceSegmenter()

    for _ in range(3):
        seg.push(LOUD)
    assert seg.in_speech

    results = [seg.push(QUIET) for _ in range(30)]
    assert all(r is None for r in results)
    assert not seg.in_speech


def test_long_utterance_is_force_closed():
    seg = UtteranceSegmenter(max_ms=200)

    results = [seg.push(LOUD) for _ in range(10)]
    assert all(r is None for r in results[:-1])

    utterance = results[-1]
    assert utterance is not None
    assert utterance.forced is True
    assert utterance.duration_ms == 200


def test_isolated_spikes_never_open():
    seg = UtteranceSegmenter()
    for _ in range(20):
        seg.push(LOUD)
        seg.push(QUIET)
    assert not seg.in_speech

