"""
Workers AI speech-to-text stage.

Role in the pipeline:
- Accepts AUDIO frames straight from the transport source.
- Buffers them through an UtteranceSegmenter.
- Sends each completed utterance (as WAV) to the STT model in one request.
- Emits one TEXT frame per non-empty transcript.

Architectural constraints:
- No retries. A backend failure raises and the pipeline drops the frame
  that closed the utterance (the utterance is lost, the next one is not).
- An empty transcript is a silent turn, not an error.
"""

from __future__ import annotations

from typing import Any

from adapters.workers_ai import WorkersAIClient
from audio.pcm import pcm16le_to_wav
from audio.utterance import Utterance, UtteranceSegmenter
from observability.logger import log_event
from observability.metrics import timed
from pipeline.frames import AudioFrame, FrameKind, TextFrame
from pipeline.stage import Emit, Stage, StageDescriptor


def extract_transcript(result: dict[str, Any]) -> str:
    """
    Pull the transcript out of a speech model result.

    Handles both the flat {"text": ...} shape and the Deepgram shape
    {"results": {"channels": [{"alternatives": [{"transcript": ...}]}]}}.
    """
    text = result.get("text") or result.get("transcript")
    if isinstance(text, str):
        return text.strip()

    try:
        alt = result["results"]["channels"][0]["alternatives"][0]
        return str(alt.get("transcript") or "").strip()
    except (KeyError, IndexError, TypeError):
        return ""


class WorkersAISpeechToText(Stage):
    """Utterance-buffered STT over Workers AI."""

    descriptor = StageDescriptor.of(
        accepts=(FrameKind.AUDIO,),
        produces=(FrameKind.TEXT,),
    )

    def __init__(
        self,
        *,
        client: WorkersAIClient,
        model: str,
        session_id: str | None = None,
        segmenter: UtteranceSegmenter | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._session_id = session_id
        self._segmenter = segmenter or UtteranceSegmenter()

    @property
    def name(self) -> str:
        return "stt"

    async def start(self) -> None:
        await self._client.open()

    async def stop(self) -> None:
        self._segmenter.reset()
        await self._client.close()

    async def on_audio(self, frame: AudioFrame, emit: Emit) -> None:
        utterance = self._segmenter.push(frame.pcm_bytes)
        if utterance is None:
            return

        transcript = await self._transcribe(utterance)
        if not transcript:
            log_event({
                "event_type": "STT_EMPTY_RESULT",
                "session_id": self._session_id,
                "utterance_ms": utterance.duration_ms,
            })
            return

        log_event({
            "event_type": "STT_TRANSCRIPT",
            "session_id": self._session_id,
            "utterance_ms": utterance.duration_ms,
            "forced": utterance.forced,
            "chars": len(transcript),
        })
        await emit(TextFrame(text=transcript))

    async def _transcribe(self, utterance: Utterance) -> str:
        wav = pcm16le_to_wav(utterance.pcm_bytes)
        with timed(
            "stt_backend_ms",
            session_id=self._session_id,
            stage=self.name,
            details={"utterance_ms": utterance.duration_ms},
        ) as info:
            result = await self._client.run_binary(
                self._model,
                wav,
                content_type="audio/wav",
            )
            transcript = extract_transcript(result)
            info["chars"] = len(transcript)
        return transcript
