from __future__ import annotations

import asyncio
import contextlib
from typing import Optional

import structlog

from .commands import CommandDispatcher
from .messages import (
    CMD_GET_CAPTURE_PARAMETERS,
    CMD_GET_STATUS,
    DEST_CAMERA,
    DEST_ENVIRONMENT,
    DEST_MOUNT,
)

logger = structlog.get_logger(__name__)

STATUS_ROTATION: tuple[tuple[str, str], ...] = (
    (CMD_GET_STATUS, DEST_MOUNT),
    (CMD_GET_STATUS, DEST_ENVIRONMENT),
    (CMD_GET_CAPTURE_PARAMETERS, DEST_CAMERA),
)


class StatusPoller:
    """Issues one status query per tick, cycling mount, environment and camera."""

    def __init__(self, dispatcher: CommandDispatcher, *, interval: float = 5.0) -> None:
        self._dispatcher = dispatcher
        self.interval = interval
        self.rotation = 0
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.interval <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def tick(self) -> Optional[int]:
        if not self._dispatcher.connected:
            return None
        command, destination = STATUS_ROTATION[self.rotation % len(STATUS_ROTATION)]
        self.rotation += 1
        return await self._dispatcher.send(command, destination)

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    await self.tick()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.debug("origin.status.poll_failed", error=str(exc))
        except asyncio.CancelledError:
            logger.debug("origin.status.poller_cancelled")
            raise


__all__ = ["STATUS_ROTATION", "StatusPoller"]
