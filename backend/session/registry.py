"""
Per-process map of meeting id -> SessionController.

One meeting id addresses one controller. A controller that reached
TERMINATED is replaced on the next lookup so the meeting can be
initialized again.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from config import AppConfig
from observability.logger import log_event
from session.bootstrap import realtimekit_connection_factory, workers_ai_stage_factory
from session.controller import SessionController
from session.lifecycle import LifecycleState


ControllerFactory = Callable[[str], SessionController]


def controller_factory_from_config(config: AppConfig) -> ControllerFactory:
    """Production wiring: RealtimeKit transport + Workers AI stages."""
    connection_factory = realtimekit_connection_factory(config)
    stage_factory = workers_ai_stage_factory(config)

    def build(_meeting_id: str) -> SessionController:
        return SessionController(
            connection_factory=connection_factory,
            stage_factory=stage_factory,
            stop_grace_s=config.pipeline_stop_grace_s,
        )

    return build


class SessionRegistry:
    """Owns every controller in this process."""

    def __init__(self, controller_factory: ControllerFactory) -> None:
        self._controller_factory = controller_factory
        self._controllers: dict[str, SessionController] = {}

    def __len__(self) -> int:
        return len(self._controllers)

    def __contains__(self, meeting_id: object) -> bool:
        return meeting_id in self._controllers

    def get(self, meeting_id: str) -> SessionController | None:
        return self._controllers.get(meeting_id)

    def get_or_create(self, meeting_id: str) -> SessionController:
        controller = self._controllers.get(meeting_id)
        if controller is None or controller.state is LifecycleState.TERMINATED:
            controller = self._controller_factory(meeting_id)
            self._controllers[meeting_id] = controller
        return controller

    async def deinit(self, meeting_id: str) -> bool:
        """
        Deinitialize one meeting's session and forget it.

        Returns False if the meeting was never registered.
        """
        controller = self._controllers.get(meeting_id)
        if controller is None:
            return False

        await controller.deinit()
        if self._controllers.get(meeting_id) is controller:
            del self._controllers[meeting_id]
        return True

    async def shutdown(self) -> None:
        """Deinitialize everything (process shutdown)."""
        meeting_ids = list(self._controllers)
        if not meeting_ids:
            return

        log_event({
            "event_type": "REGISTRY_SHUTDOWN",
            "sessions": len(meeting_ids),
        })
        results = await asyncio.gather(
            *(self.deinit(meeting_id) for meeting_id in meeting_ids),
            return_exceptions=True,
        )
        for meeting_id, result in zip(meeting_ids, results):
            if isinstance(result, BaseException):
                log_event({
                    "event_type": "SESSION_DEINIT_FAILED",
                    "session_id": meeting_id,
                    "exception": type(result).__name__,
                    "message": str(result),
                })
