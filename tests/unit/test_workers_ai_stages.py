# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import base64
import json
from typing import Any

import httpx
import pytest

from adapters.llm.workers_ai import WorkersAITextProcessor, build_llm_client
from adapters.stt.workers_ai import WorkersAISpeechToText, extract_transcript
from adapters.tts.workers_ai import WorkersAITextToSpeech
from adapters.workers_ai import WorkersAIClient
from audio.utterance import UtteranceSegmenter
from constants import AUDIO_BYTES_PER_FRAME_PCM
from fakes import FakeOpenAI, completion, stream_of
from pipeline.errors import BackendError
from pipeline.frames import AudioFrame, Frame, TextFrame

LOUD = b"\x00\x40" * (AUDIO_BYTES_PER_FRAME_PCM // 2)
QUIET = b"\x00\x00" * (AUDIO_BYTES_PER_FRAME_PCM // 2)


class Collector:
    def __init__(self) -> None:
        self.frames: list[Frame] = []

    async def __call__(self, frame: Frame) -> None:
        self.frames.append(frame)


def mock_client(handler: Any) -> tuple[WorkersAIClient, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = WorkersAIClient(
        account_id="acct",
        api_token="cf-token",
        transport=httpx.MockTransport(record),
    )
    return client, requests


# ---------------------------------------------------------------------
# STT
# ---------------------------------------------------------------------

def test_extract_transcript_shapes():
    assert extract_transcript({"text": " hello "}) == "hello"
    assert extract_transcript({
        "results": {"channels": [{"alternatives": [{"transcript": " hi there "}]}]},
    }) == "hi there"
    assert extract_transcript({"results": {"channels": []}}) == ""
    assert extract_transcript({}) == ""


def test_stt_transcribes_one_utterance():
    client, requests = mock_client(
        lambda _req: httpx.Response(200, json={"result": {"text": "book the room"}})
    )
    stage = WorkersAISpeechToText(
        client=client,
        model="@cf/deepgram/nova-3",
        session_id="m1",
        segmenter=UtteranceSegmenter(silence_ms=100),
    )
    emit = Collector()

    async def run() -> None:
        await stage.start()
        for chunk in [LOUD] * 15 + [QUIET] * 5:
            await stage.on_audio(AudioFrame(pcm_bytes=chunk), emit)
        await stage.stop()

    asyncio.run(run())

    assert len(requests) == 1
    req = requests[0]
    assert "/accounts/acct/ai/run/" in str(req.url)
    assert str(req.url).endswith("nova-3")
    assert req.headers["Authorization"] == "Bearer cf-token"
    assert req.headers["Content-Type"] == "audio/wav"
    assert req.content[:4] == b"RIFF"

    assert len(emit.frames) == 1
    assert isinstance(emit.frames[0], TextFrame)
    assert emit.frames[0].text == "book the room"


def test_stt_empty_transcript_is_silent():
    client, _ = mock_client(lambda _req: httpx.Response(200, json={"result": {"text": ""}}))
    stage = WorkersAISpeechToText(
        client=client,
        model="stt",
        segmenter=UtteranceSegmenter(silence_ms=100),
    )
    emit = Collector()

    async def run() -> None:
        await stage.start()
        for chunk in [LOUD] * 15 + [QUIET] * 5:
            await stage.on_audio(AudioFrame(pcm_bytes=chunk), emit)
        await stage.stop()

    asyncio.run(run())
    assert emit.frames == []


def test_backend_error_status_raises():
    client, _ = mock_client(lambda _req: httpx.Response(500, text="overloaded"))
    stage = WorkersAISpeechToText(
        client=client,
        model="stt",
        segmenter=UtteranceSegmenter(silence_ms=100),
    )
    emit = Collector()

    async def run() -> None:
        await stage.start()
        try:
            for chunk in [LOUD] * 15 + [QUIET] * 5:
                await stage.on_audio(AudioFrame(pcm_bytes=chunk), emit)
        finally:
            await stage.stop()

    with pytest.raises(BackendError) as excinfo:
        asyncio.run(run())
    assert excinfo.value.status_code == 500


def test_client_requires_open():
    client, _ = mock_client(lambda _req: httpx.Response(200, json={}))
    with pytest.raises(RuntimeError):
        asyncio.run(client.run_audio("m", {}))


# ---------------------------------------------------------------------
# TTS
# ---------------------------------------------------------------------

def run_tts(response: httpx.Response, text: str = "Hello everyone") -> tuple[list[Frame], list[httpx.Request]]:
    client, requests = mock_client(lambda _req: response)
    stage = WorkersAITextToSpeech(client=client, model="@cf/deepgram/aura-2", session_id="m1")
    emit = Collector()

    async def run() -> None:
        await stage.start()
        await stage.on_text(TextFrame(text=text), emit)
        await stage.stop()

    asyncio.run(run())
    return emit.frames, requests


def test_tts_emits_raw_audio_body():
    frames, requests = run_tts(
        httpx.Response(200, content=b"\x01\x02", headers={"content-type": "audio/l16"})
    )

    assert json.loads(requests[0].content) == {
        "text": "Hello everyone",
        "encoding": "linear16",
        "container": "none",
        "sample_rate": 16000,
    }
    assert len(frames) == 1
    assert isinstance(frames[0], AudioFrame)
    assert frames[0].pcm_bytes == b"\x01\x02"


def test_tts_decodes_json_envelope():
    encoded = base64.b64encode(b"\x03\x04").decode()
    frames, _ = run_tts(httpx.Response(200, json={"result": {"audio": encoded}}))

    assert [f.pcm_bytes for f in frames] == [b"\x03\x04"]  # type: ignore[union-attr]


def test_tts_empty_audio_is_silent_turn():
    frames, _ = run_tts(httpx.Response(200, json={"result": {}}))
    assert frames == []


def test_tts_skips_blank_text():
    frames, requests = run_tts(httpx.Response(200, content=b"\x01"), text="   ")
    assert frames == []
    assert requests == []


# ---------------------------------------------------------------------
# Text processor
# ---------------------------------------------------------------------

def test_text_processor_whole_reply():
    client = FakeOpenAI(completion("Sure thing."))
    stage = WorkersAITextProcessor(
        client=client,
        model="@cf/meta/llama-3.1-8b-instruct",
        system_prompt="be brief",
        stream_sentences=False,
    )
    emit = Collector()

    async def run() -> None:
        await stage.on_text(TextFrame(text="can you help"), emit)

    asyncio.run(run())

    call = client.completions.calls[0]
    assert call["model"] == "@cf/meta/llama-3.1-8b-instruct"
    assert call["messages"][0] == {"role": "system", "content": "be brief"}
    assert call["messages"][-1] == {"role": "user", "content": "can you help"}
    assert [f.text for f in emit.frames] == ["Sure thing."]  # type: ignore[union-attr]
    assert [m["role"] for m in stage.context.messages()] == ["user", "assistant"]


def test_text_processor_streams_sentences():
    client = FakeOpenAI(stream_of([
        "The meeting room ",
        "is booked. Anything ",
        "else I can help with?",
    ]))
    stage = WorkersAITextProcessor(client=client, model="llm", stream_sentences=True)
    emit = Collector()

    async def run() -> None:
        await stage.on_text(TextFrame(text="book it"), emit)
        await stage.stop()

    asyncio.run(run())

    assert client.completions.calls[0]["stream"] is True
    assert [f.text for f in emit.frames] == [  # type: ignore[union-attr]
        "The meeting room is booked.",
        "Anything else I can help with?",
    ]
    assert client.closed
    assert len(stage.context) == 0


def test_text_processor_empty_reply_is_silent():
    client = FakeOpenAI(completion(""))
    stage = WorkersAITextProcessor(client=client, model="llm", stream_sentences=False)
    emit = Collector()

    asyncio.run(stage.on_text(TextFrame(text="hello?"), emit))

    assert emit.frames == []
    assert [m["role"] for m in stage.context.messages()] == ["user"]


def test_llm_client_points_at_workers_ai():
    client = build_llm_client(account_id="acct", api_token="cf-token")
    assert str(client.base_url).rstrip("/") == (
        "https://api.cloudflare.com/client/v4/accounts/acct/ai/v1"
    )
    assert client.api_key == "cf-token"
