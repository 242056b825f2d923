"""
Route registration for the meeting agent control surface.

Responsibilities:
- Define HTTP endpoints
- Translate requests into SessionRegistry / SessionController calls
- Map lifecycle outcomes onto status codes
- Pull dependencies from app.state

Endpoints:
- GET  /health
- POST /init?meetingId=...    (Authorization: Bearer <meeting token>)
- POST /deinit?meetingId=...
"""

from __future__ import annotations

from fastapi import FastAPI, Request, Response

from config import AppConfig
from observability.logger import log_event
from pipeline.errors import AlreadyInitialized, InvalidAuthToken
from session.registry import SessionRegistry


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization")
    if not header:
        return None
    _, _, token = header.partition(" ")
    token = token.strip()
    return token or None


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    @app.get("/health")
    async def health() -> dict[str, str]:  # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.api_route("/init", methods=["GET", "POST"])
    async def init(  # pyright: ignore[reportUnusedFunction]
        request: Request,
        meetingId: str | None = None,  # pylint: disable=invalid-name
    ) -> Response:
        if not meetingId:
            return Response("missing meetingId", status_code=400)

        token = _bearer_token(request)
        if token is None:
            return Response("missing meeting auth token", status_code=401)

        config: AppConfig = request.app.state.config
        registry: SessionRegistry = request.app.state.registry
        controller = registry.get_or_create(meetingId)

        try:
            await controller.init(
                session_id=meetingId,
                meeting_id=meetingId,
                auth_token=token,
                callback_address=request.url.netloc,
                account_id=config.cloudflare_account_id or "",
                api_token=config.cloudflare_api_token or "",
            )
        except AlreadyInitialized:
            return Response("already initialized", status_code=409)
        except InvalidAuthToken:
            return Response("missing meeting auth token", status_code=401)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "INIT_REQUEST_FAILED",
                "session_id": meetingId,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            return Response("failed to start session", status_code=502)

        return Response("ok", status_code=200)

    @app.api_route("/deinit", methods=["GET", "POST"])
    async def deinit(  # pyright: ignore[reportUnusedFunction]
        request: Request,
        meetingId: str | None = None,  # pylint: disable=invalid-name
    ) -> Response:
        if not meetingId:
            return Response("missing meetingId", status_code=400)

        registry: SessionRegistry = request.app.state.registry
        known = await registry.deinit(meetingId)
        log_event({
            "event_type": "DEINIT_REQUEST",
            "session_id": meetingId,
            "known": known,
        })
        return Response("ok", status_code=200)
