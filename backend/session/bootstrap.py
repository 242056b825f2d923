"""
Per-session construction of the meeting connection and processing stages.

Responsibilities:
- Turn init() parameters + AppConfig into concrete collaborators
- Keep provider selection out of the controller

Each call builds fresh objects; nothing here is shared across sessions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from adapters.llm.workers_ai import WorkersAITextProcessor, build_llm_client
from adapters.stt.workers_ai import WorkersAISpeechToText
from adapters.tts.workers_ai import WorkersAITextToSpeech
from adapters.workers_ai import WorkersAIClient
from config import AppConfig
from pipeline.stage import Stage
from transport.base import SessionConnection
from transport.realtimekit import RealtimeKitConnection


@dataclass(frozen=True)
class SessionParams:
    """Arguments of one init() call."""
    session_id: str
    meeting_id: str
    auth_token: str
    callback_address: str
    account_id: str
    api_token: str

    def log_context(self) -> dict[str, str]:
        """Loggable subset (never the tokens)."""
        return {
            "session_id": self.session_id,
            "meeting_id": self.meeting_id,
            "callback_address": self.callback_address,
        }


ConnectionFactory = Callable[[SessionParams], SessionConnection]
StageFactory = Callable[[SessionParams], list[Stage]]


def realtimekit_connection_factory(config: AppConfig) -> ConnectionFactory:
    """Connections to the meeting bridge configured in AppConfig."""

    def build(params: SessionParams) -> SessionConnection:
        return RealtimeKitConnection(
            meeting_id=params.meeting_id,
            auth_token=params.auth_token,
            bridge_url=config.realtimekit_bridge_url,
            session_id=params.session_id,
        )

    return build


def workers_ai_stage_factory(config: AppConfig) -> StageFactory:
    """
    STT -> text processor -> TTS, all on Workers AI.

    Credentials come from init() first and fall back to AppConfig.
    """

    def build(params: SessionParams) -> list[Stage]:
        account_id = params.account_id or config.cloudflare_account_id or ""
        api_token = params.api_token or config.cloudflare_api_token or ""
        if not account_id or not api_token:
            raise ValueError("Workers AI account id and API token are required")

        return [
            WorkersAISpeechToText(
                client=WorkersAIClient(account_id=account_id, api_token=api_token),
                model=config.stt_model,
                session_id=params.session_id,
            ),
            WorkersAITextProcessor(
                client=build_llm_client(account_id=account_id, api_token=api_token),
                model=config.llm_model,
                session_id=params.session_id,
                stream_sentences=config.llm_stream_sentences,
            ),
            WorkersAITextToSpeech(
                client=WorkersAIClient(account_id=account_id, api_token=api_token),
                model=config.tts_model,
                session_id=params.session_id,
            ),
        ]

    return build
