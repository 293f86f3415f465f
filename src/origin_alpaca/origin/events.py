from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Optional, Type, TypeVar

import numpy as np
import structlog

from .state import CameraState, TelescopeStatus

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Event:
    """Base class for everything published on the session event bus."""


@dataclass(frozen=True)
class Connected(Event):
    host: str
    port: int


@dataclass(frozen=True)
class Disconnected(Event):
    reason: str = "requested"


@dataclass(frozen=True)
class StatusUpdated(Event):
    status: TelescopeStatus


@dataclass(frozen=True)
class ExposureStarted(Event):
    duration: float
    iso: int


@dataclass(frozen=True)
class ExposureComplete(Event):
    file_path: str


@dataclass(frozen=True)
class CameraStateChanged(Event):
    state: CameraState


@dataclass(frozen=True)
class CameraModeChanged(Event):
    is_manual: bool


@dataclass(frozen=True)
class CaptureParametersChanged(Event):
    exposure: float
    iso: int


@dataclass(frozen=True)
class CameraInfoReceived(Event):
    camera_id: str
    model: str


@dataclass(frozen=True)
class SnapshotRequested(Event):
    exposure: float
    iso: int


@dataclass(frozen=True)
class ImageReady(Event):
    file_path: str


@dataclass(frozen=True)
class SnapshotImageDownloaded(Event):
    file_path: str
    data: bytes = field(repr=False)
    ra: float
    dec: float
    exposure: float


@dataclass(frozen=True)
class LiveImageDownloaded(Event):
    file_path: str
    data: bytes = field(repr=False)
    image: np.ndarray = field(repr=False, compare=False)
    ra: float
    dec: float
    exposure: float


@dataclass(frozen=True)
class CommandFailed(Event):
    command: str
    code: int
    message: str
    sequence_id: Optional[int] = None


EventT = TypeVar("EventT", bound=Event)
EventHandler = Callable[[Any], Any]


class EventBus:
    """Observer registry keyed by event class.

    Handlers run on the event loop in registration order. Coroutine handlers are
    scheduled as tasks. A failing handler is logged and never interrupts the
    publisher or the remaining handlers.
    """

    def __init__(self) -> None:
        self._handlers: dict[Type[Event], list[EventHandler]] = defaultdict(list)
        self._waiters: dict[Type[Event], list[asyncio.Future[Any]]] = defaultdict(list)
        self._tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, event_type: Type[EventT], handler: Callable[[EventT], Any]) -> None:
        handlers = self._handlers[event_type]
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, event_type: Type[EventT], handler: Callable[[EventT], Any]) -> None:
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        self.subscribe(Event, handler)

    def emit(self, event: Event) -> None:
        for event_type in type(event).__mro__:
            if not (isinstance(event_type, type) and issubclass(event_type, Event)):
                continue
            for handler in list(self._handlers.get(event_type, ())):
                self._invoke(handler, event)
            waiters = self._waiters.pop(event_type, None)
            if waiters:
                for waiter in waiters:
                    if not waiter.done():
                        waiter.set_result(event)

    async def wait_for(self, event_type: Type[EventT], timeout: float | None = None) -> EventT:
        """Wait for the next event of ``event_type``; raises ``asyncio.TimeoutError``."""
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[EventT] = loop.create_future()
        self._waiters[event_type].append(waiter)
        try:
            return await asyncio.wait_for(waiter, timeout=timeout)
        finally:
            pending = self._waiters.get(event_type)
            if pending and waiter in pending:
                pending.remove(waiter)

    def _invoke(self, handler: EventHandler, event: Event) -> None:
        try:
            result = handler(event)
        except Exception as exc:
            logger.warning(
                "origin.events.handler_failed",
                event_type=type(event).__name__,
                handler=getattr(handler, "__qualname__", repr(handler)),
                error=str(exc),
            )
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("origin.events.async_handler_failed", error=str(exc))


__all__ = [
    "CameraInfoReceived",
    "CameraModeChanged",
    "CameraStateChanged",
    "CaptureParametersChanged",
    "CommandFailed",
    "Connected",
    "Disconnected",
    "Event",
    "EventBus",
    "ExposureComplete",
    "ExposureStarted",
    "ImageReady",
    "LiveImageDownloaded",
    "SnapshotImageDownloaded",
    "SnapshotRequested",
    "StatusUpdated",
]
