from __future__ import annotations

import structlog

from .events import CameraStateChanged, EventBus
from .state import CameraState

logger = structlog.get_logger(__name__)


class CameraStateMachine:
    """Acquisition lifecycle: Idle -> Exposing -> Reading -> Idle or Error.

    Transition methods return False and leave the state untouched when the
    current state does not allow the move. Every accepted transition publishes
    ``CameraStateChanged``. A new image moves an Error camera back to Reading,
    so a failed download does not block the next cycle.
    """

    def __init__(self, events: EventBus) -> None:
        self._events = events
        self._state = CameraState.IDLE

    @property
    def state(self) -> CameraState:
        return self._state

    @property
    def is_idle(self) -> bool:
        return self._state is CameraState.IDLE

    @property
    def is_exposing(self) -> bool:
        return self._state is CameraState.EXPOSING

    @property
    def is_reading(self) -> bool:
        return self._state is CameraState.READING

    def begin_exposure(self) -> bool:
        return self._move((CameraState.IDLE,), CameraState.EXPOSING, "begin_exposure")

    def abort_exposure(self) -> bool:
        return self._move((CameraState.EXPOSING,), CameraState.IDLE, "abort_exposure")

    def image_available(self) -> bool:
        return self._move((CameraState.EXPOSING, CameraState.ERROR), CameraState.READING, "image_available")

    def download_succeeded(self) -> bool:
        return self._move((CameraState.READING,), CameraState.IDLE, "download_succeeded")

    def download_failed(self) -> bool:
        return self._move((CameraState.READING,), CameraState.ERROR, "download_failed")

    def reset(self) -> bool:
        return self._move((CameraState.ERROR,), CameraState.IDLE, "reset")

    def _move(self, allowed: tuple[CameraState, ...], target: CameraState, trigger: str) -> bool:
        current = self._state
        if current not in allowed:
            logger.debug(
                "origin.camera.transition_rejected",
                trigger=trigger,
                state=current.name,
            )
            return False
        self._state = target
        logger.info(
            "origin.camera.state_changed",
            trigger=trigger,
            previous=current.name,
            state=target.name,
        )
        self._events.emit(CameraStateChanged(target))
        return True


__all__ = ["CameraStateMachine"]
