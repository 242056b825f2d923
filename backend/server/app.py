"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Configure logging output
- Own the per-process SessionRegistry
- Register routes
- Deinitialize every live session on shutdown
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from config import AppConfig
from observability import logger
from server.routes import register_routes
from session.registry import SessionRegistry, controller_factory_from_config


def create_app(
    config: AppConfig | None = None,
    registry: SessionRegistry | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with a fake registry or configuration
    - ASGI server compatibility
    """
    if config is None:
        config = AppConfig.load_from_env()
    if registry is None:
        registry = SessionRegistry(controller_factory_from_config(config))

    logger.configure(json_lines=config.enable_json_logs)
    logger.log_event({
        "event_type": "APP_CONFIGURED",
        "env": config.env,
        "log_level": config.log_level,
        "bridge_url": config.realtimekit_bridge_url,
        "models": [config.stt_model, config.llm_model, config.tts_model],
    })

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await registry.shutdown()

    app = FastAPI(title="Meeting Voice Agent", lifespan=lifespan)

    app.state.config = config
    app.state.registry = registry

    register_routes(app)

    return app
