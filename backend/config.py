"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No pipeline logic
- No behavioral constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import PIPELINE_STOP_GRACE_S


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the session registry and from there to each
    session controller.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Workers AI credentials
    # ------------------------------------------------------------------

    cloudflare_account_id: str | None
    cloudflare_api_token: str | None

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    stt_model: str
    llm_model: str
    tts_model: str
    llm_stream_sentences: bool

    # ------------------------------------------------------------------
    # Meeting transport
    # ------------------------------------------------------------------

    realtimekit_bridge_url: str

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    pipeline_stop_grace_s: float

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if PIPELINE_STOP_GRACE_S is not a number.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            cloudflare_account_id=os.environ.get("CLOUDFLARE_ACCOUNT_ID"),
            cloudflare_api_token=os.environ.get("CLOUDFLARE_API_TOKEN"),

            stt_model=os.environ.get("STT_MODEL", "@cf/deepgram/nova-3"),
            llm_model=os.environ.get("LLM_MODEL", "@cf/meta/llama-3.1-8b-instruct"),
            tts_model=os.environ.get("TTS_MODEL", "@cf/deepgram/aura-2"),
            llm_stream_sentences=os.environ.get("LLM_STREAM_SENTENCES", "1") == "1",

            realtimekit_bridge_url=os.environ.get(
                "REALTIMEKIT_BRIDGE_URL", "wss://rtk-bridge.example.com"
            ),

            pipeline_stop_grace_s=float(
                os.environ.get("PIPELINE_STOP_GRACE_S", str(PIPELINE_STOP_GRACE_S))
            ),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
        )
