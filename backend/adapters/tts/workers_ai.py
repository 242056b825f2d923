"""
Workers AI text-to-speech stage.

Role in the pipeline:
- Accepts TEXT frames (replies and announcements).
- Performs one synthesis call per frame.
- Emits the returned audio as one AUDIO frame for the transport sink.

Architectural constraints:
- No chunking here; the text processor already splits long replies.
- No retries, timers, or backpressure logic.
- Empty audio from the backend is a silent turn: nothing is emitted and the
  next frame is processed normally.
"""

from __future__ import annotations

from adapters.workers_ai import WorkersAIClient
from constants import AUDIO_SAMPLE_RATE_HZ
from observability.logger import log_event
from observability.metrics import timed
from pipeline.frames import AudioFrame, FrameKind, TextFrame
from pipeline.stage import Emit, Stage, StageDescriptor


class WorkersAITextToSpeech(Stage):
    """One request per text frame, PCM16 audio back."""

    descriptor = StageDescriptor.of(
        accepts=(FrameKind.TEXT,),
        produces=(FrameKind.AUDIO,),
    )

    def __init__(
        self,
        *,
        client: WorkersAIClient,
        model: str,
        session_id: str | None = None,
        speaker: str | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._session_id = session_id
        self._speaker = speaker

    @property
    def name(self) -> str:
        return "tts"

    async def start(self) -> None:
        await self._client.open()

    async def stop(self) -> None:
        await self._client.close()

    async def on_text(self, frame: TextFrame, emit: Emit) -> None:
        text = frame.text.strip()
        if not text:
            return

        payload: dict[str, object] = {
            "text": text,
            "encoding": "linear16",
            "container": "none",
            "sample_rate": AUDIO_SAMPLE_RATE_HZ,
        }
        if self._speaker:
            payload["speaker"] = self._speaker

        with timed(
            "tts_backend_ms",
            session_id=self._session_id,
            stage=self.name,
            details={"chars": len(text)},
        ) as info:
            audio = await self._client.run_audio(self._model, payload)
            info["bytes"] = len(audio)

        if not audio:
            log_event({
                "event_type": "TTS_EMPTY_RESULT",
                "session_id": self._session_id,
                "chars": len(text),
            })
            return

        await emit(AudioFrame(pcm_bytes=audio))
