"""
Workers AI text processor stage.

Role in the pipeline:
- Accepts TEXT frames (transcripts) from the STT stage.
- Calls a chat model through the OpenAI-compatible Workers AI endpoint.
- Emits the reply as TEXT frames for the TTS stage.

Reply modes:
- stream_sentences=True: the completion is streamed and every complete
  sentence is emitted as soon as it is available (one input, many outputs).
- stream_sentences=False: one TEXT frame with the whole reply.

Design notes:
- The stage keeps a bounded ConversationContext. The user turn is recorded
  before the call, the assistant turn only if something was said.
- An empty reply is a silent turn, not an error.
- No retries; a failed call raises and the pipeline drops the transcript.
"""

from __future__ import annotations

from typing import Any

from openai import AsyncOpenAI

from adapters.llm.chunking import split_sentences
from adapters.llm.prompts import SYSTEM_PROMPT_V1, prompt_hash
from adapters.workers_ai import openai_compatible_base_url
from context.conversation import ConversationContext
from observability.logger import log_event
from observability.metrics import timed
from pipeline.frames import FrameKind, TextFrame
from pipeline.stage import Emit, Stage, StageDescriptor


def build_llm_client(*, account_id: str, api_token: str) -> AsyncOpenAI:
    """OpenAI SDK client pointed at Workers AI."""
    return AsyncOpenAI(
        api_key=api_token,
        base_url=openai_compatible_base_url(account_id),
    )


class WorkersAITextProcessor(Stage):
    """Chat-completion text stage."""

    descriptor = StageDescriptor.of(
        accepts=(FrameKind.TEXT,),
        produces=(FrameKind.TEXT,),
    )

    def __init__(
        self,
        *,
        client: Any,
        model: str,
        session_id: str | None = None,
        system_prompt: str = SYSTEM_PROMPT_V1,
        stream_sentences: bool = True,
        context: ConversationContext | None = None,
    ) -> None:
        """
        Args:
            client:
                OpenAI-compatible async client (AsyncOpenAI in production).
                Owned by this stage: closed in stop().
            model:
                Model identifier, e.g. "@cf/meta/llama-3.1-8b-instruct".
        """
        self._client = client
        self._model = model
        self._session_id = session_id
        self._system_prompt = system_prompt
        self._stream_sentences = stream_sentences
        self._context = context or ConversationContext(session_id=session_id)

    @property
    def name(self) -> str:
        return "llm"

    @property
    def context(self) -> ConversationContext:
        return self._context

    async def stop(self) -> None:
        self._context.clear()
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()

    async def on_text(self, frame: TextFrame, emit: Emit) -> None:
        prompt = frame.text.strip()
        if not prompt:
            return

        self._context.add("user", prompt)
        messages = self._context.messages(self._system_prompt)

        with timed(
            "llm_backend_ms",
            session_id=self._session_id,
            stage=self.name,
            details={"prompt_hash": prompt_hash(self._system_prompt)},
        ) as info:
            if self._stream_sentences:
                reply = await self._stream_reply(messages, emit)
            else:
                reply = await self._complete_reply(messages, emit)
            info["reply_chars"] = len(reply)

        if not reply:
            log_event({
                "event_type": "LLM_EMPTY_RESULT",
                "session_id": self._session_id,
            })
            return

        self._context.add("assistant", reply)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _complete_reply(self, messages: list[dict[str, str]], emit: Emit) -> str:
        resp = await self._client.chat.completions.create(
            model=self._model,
            messages=messages,
        )
        try:
            reply = (resp.choices[0].message.content or "").strip()
        except (AttributeError, IndexError):
            reply = ""
        if reply:
            await emit(TextFrame(text=reply))
        return reply

    async def _stream_reply(self, messages: list[dict[str, str]], emit: Emit) -> str:
        stream = await self._client.chat.completions.create(
            model=self._model,
            messages=messages,
            stream=True,
        )

        full_text: list[str] = []
        buffer = ""
        async for chunk in stream:
            delta = self._extract_delta(chunk)
            if not delta:
                continue
            full_text.append(delta)
            buffer += delta

            sentences, buffer = split_sentences(buffer)
            for sentence in sentences:
                await emit(TextFrame(text=sentence))

        sentences, _ = split_sentences(buffer, final=True)
        for sentence in sentences:
            await emit(TextFrame(text=sentence))

        return "".join(full_text).strip()

    @staticmethod
    def _extract_delta(chunk: Any) -> str:
        """
        Extract token delta from a streamed chunk (OpenAI format).
        """
        try:
            delta = chunk.choices[0].delta
            return delta.content or ""
        except (AttributeError, IndexError):
            return ""
