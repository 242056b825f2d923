"""
Workers AI REST client.

A thin async wrapper over `POST /accounts/{account_id}/ai/run/{model}`.
One client per stage per session; the owning stage opens it in start() and
closes it in stop().

Rules:
- One request per unit of work.
- Non-2xx responses raise BackendError. The pipeline turns that into a
  dropped frame, so nothing here retries.
- Empty results are returned as empty values, not raised.
"""

from __future__ import annotations

import base64
from typing import Any

import httpx

from constants import BACKEND_REQUEST_TIMEOUT_S, WORKERS_AI_BASE_URL
from pipeline.errors import BackendError


def workers_ai_base_url(account_id: str) -> str:
    return f"{WORKERS_AI_BASE_URL}/{account_id}/ai"


def openai_compatible_base_url(account_id: str) -> str:
    """Base URL for the OpenAI-compatible chat completions endpoint."""
    return f"{workers_ai_base_url(account_id)}/v1"


class WorkersAIClient:
    """
    Async client for Workers AI model runs.

    transport is injectable so tests can answer requests with
    httpx.MockTransport instead of the network.
    """

    def __init__(
        self,
        *,
        account_id: str,
        api_token: str,
        timeout_s: float = BACKEND_REQUEST_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._account_id = account_id
        self._api_token = api_token
        self._timeout_s = timeout_s
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=workers_ai_base_url(self._account_id),
            headers={"Authorization": f"Bearer {self._api_token}"},
            timeout=self._timeout_s,
            transport=self._transport,
        )

    async def close(self) -> None:
        client = self._client
        self._client = None
        if client is not None:
            await client.aclose()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def run_binary(
        self,
        model: str,
        body: bytes,
        *,
        content_type: str,
    ) -> dict[str, Any]:
        """Run a model with a raw binary body (e.g. audio upload)."""
        resp = await self._post(
            model,
            content=body,
            headers={"Content-Type": content_type},
        )
        data = resp.json()
        result = data.get("result", data) if isinstance(data, dict) else data
        return result if isinstance(result, dict) else {"value": result}

    async def run_audio(self, model: str, payload: dict[str, Any]) -> bytes:
        """
        Run a model that answers with audio.

        Accepts either a raw audio body or a JSON envelope carrying base64
        audio under result.audio. Returns b"" when there is none.
        """
        resp = await self._post(model, json=payload)
        content_type = resp.headers.get("content-type", "")
        if "application/json" not in content_type:
            return resp.content

        data = resp.json()
        result = data.get("result", data) if isinstance(data, dict) else {}
        audio_b64 = result.get("audio") if isinstance(result, dict) else None
        if not audio_b64:
            return b""
        return base64.b64decode(audio_b64)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _post(self, model: str, **kwargs: Any) -> httpx.Response:
        if self._client is None:
            raise RuntimeError("WorkersAIClient used before open()")

        try:
            resp = await self._client.post(f"/run/{model}", **kwargs)
        except httpx.HTTPError as exc:
            raise BackendError(model, 0, repr(exc)) from exc

        if resp.status_code != 200:
            raise BackendError(model, resp.status_code, resp.text)
        return resp
