"""
A minimal, energy-based Voice Activity Detection (VAD) module.

Provides a simple RMS-energy threshold VAD for streaming PCM16 audio.
Voice activity is reported only after a configurable number of
consecutive frames exceed the energy threshold.
"""
from audio.pcm import rms


class EnergyVAD:
    """
    Simple energy-based Voice Activity Detector (VAD).

    For each observed frame, computes the RMS energy and compares it against
    a fixed threshold. Voice activity is considered present only after
    `frames_required` *consecutive* frames exceed the threshold, which keeps
    single-frame noise spikes from opening an utterance.
    """
    def __init__(self, threshold: float, frames_required: int):
        if frames_required <= 0:
            raise ValueError("frames_required must be > 0")
        self._threshold = threshold
        self._frames_required = frames_required
        self._count = 0

    def is_loud(self, pcm_bytes: bytes) -> bool:
        """Stateless check: is this one frame above the threshold?"""
        return rms(pcm_bytes) >= self._threshold

    def observe(self, pcm_bytes: bytes) -> bool:
        """
        Observe a single PCM16 frame and update VAD state.

        Returns:
            True once at least `frames_required` consecutive frames
            (including this one) have exceeded the energy threshold.
        """
        if self.is_loud(pcm_bytes):
            self._count += 1
        else:
            self._count = 0
        return self._count >= self._frames_required

    def reset(self) -> None:
        """
        Clear the consecutive-frame count; detection needs a fresh run of
        `frames_required` qualifying frames.
        """
        self._count = 0
