from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Optional

import structlog
import websockets
from websockets.exceptions import WebSocketException

logger = structlog.get_logger(__name__)

DEFAULT_WS_PATH = "/SmartScope-1.0/mountControlEndpoint"

MessageHandler = Callable[[str], Awaitable[None]]
CloseHandler = Callable[[str], Awaitable[None]]


class OriginConnectionError(RuntimeError):
    """Raised when a frame is sent while the websocket is not open."""


class OriginWsClient:
    """Websocket transport for the Origin mount control endpoint.

    Text frames are handed to the registered message handlers one at a time, in
    receipt order. A keep-alive ping runs while the socket is open; missed pongs
    are logged only.
    """

    def __init__(
        self,
        *,
        path: str = DEFAULT_WS_PATH,
        ping_interval: float = 15.0,
    ) -> None:
        self.path = path if path.startswith("/") else f"/{path}"
        self.ping_interval = ping_interval
        self.host: Optional[str] = None
        self.port: int = 80

        self._lock = asyncio.Lock()
        self._conn: Optional[websockets.WebSocketClientProtocol] = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._ping_task: Optional[asyncio.Task[None]] = None
        self._message_handlers: list[MessageHandler] = []
        self._close_handlers: list[CloseHandler] = []

    def uri_for(self, host: str, port: int) -> str:
        return f"ws://{host}:{port}{self.path}"

    @property
    def uri(self) -> Optional[str]:
        if self.host is None:
            return None
        return self.uri_for(self.host, self.port)

    @property
    def connected(self) -> bool:
        conn = self._conn
        if conn is None:
            return False

        closed_attr = getattr(conn, "closed", None)
        if closed_attr is None:
            close_code = getattr(conn, "close_code", None)
            return close_code is None

        if callable(closed_attr):
            try:
                closed_value = closed_attr()
            except TypeError:
                closed_value = False
        else:
            closed_value = closed_attr

        return not bool(closed_value)

    def register_message_handler(self, handler: MessageHandler) -> None:
        if handler not in self._message_handlers:
            self._message_handlers.append(handler)

    def unregister_message_handler(self, handler: MessageHandler) -> None:
        if handler in self._message_handlers:
            self._message_handlers.remove(handler)

    def register_close_handler(self, handler: CloseHandler) -> None:
        if handler not in self._close_handlers:
            self._close_handlers.append(handler)

    async def connect(self, host: str, port: int = 80, *, timeout: float = 10.0) -> bool:
        if self.connected:
            logger.debug("origin.ws.already_connected", host=self.host, port=self.port)
            return True
        async with self._lock:
            if self.connected:
                return True
            self.host = host
            self.port = port
            uri = self.uri_for(host, port)
            logger.info("origin.ws.connecting", uri=uri, timeout=timeout)
            try:
                self._conn = await asyncio.wait_for(
                    websockets.connect(uri, ping_interval=None),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("origin.ws.connect_timeout", uri=uri, timeout=timeout)
                return False
            except (OSError, WebSocketException) as exc:
                logger.warning("origin.ws.connect_failed", uri=uri, error=str(exc))
                return False
            self._reader_task = asyncio.create_task(self._reader_loop(self._conn))
            if self.ping_interval > 0:
                self._ping_task = asyncio.create_task(self._keepalive_loop())
            logger.info("origin.ws.connected", uri=uri)
            return True

    async def close(self) -> bool:
        """Close the socket and stop background tasks; returns whether one was open."""
        async with self._lock:
            was_open = self._conn is not None
            for task in (self._ping_task, self._reader_task):
                if task and task is not asyncio.current_task():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError, Exception):
                        await task
            self._ping_task = None
            self._reader_task = None
            if self._conn is not None:
                with contextlib.suppress(Exception):
                    await self._conn.close()
                self._conn = None
            if was_open:
                logger.info("origin.ws.closed", uri=self.uri)
            return was_open

    async def send_text(self, payload: str) -> None:
        conn = self._conn
        if conn is None or not self.connected:
            raise OriginConnectionError("Origin websocket connection unavailable")
        await conn.send(payload)

    async def _reader_loop(self, conn: websockets.WebSocketClientProtocol) -> None:
        reason = "remote_closed"
        try:
            async for payload in conn:
                if not isinstance(payload, str):
                    logger.debug("origin.ws.binary_frame_ignored", size=len(payload))
                    continue
                await self._dispatch_frame(payload)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            reason = f"error: {exc}"
            logger.warning("origin.ws.reader_failed", error=str(exc), error_type=type(exc).__name__)

        # Remote side went away; the session decides what to clear.
        if self._conn is conn:
            self._conn = None
            ping_task = self._ping_task
            self._ping_task = None
            if ping_task:
                ping_task.cancel()
            self._reader_task = None
            logger.info("origin.ws.disconnected", uri=self.uri, reason=reason)
            for handler in list(self._close_handlers):
                try:
                    await handler(reason)
                except Exception as exc:
                    logger.warning("origin.ws.close_handler_failed", error=str(exc))

    async def _dispatch_frame(self, payload: str) -> None:
        for handler in list(self._message_handlers):
            try:
                await handler(payload)
            except Exception as exc:
                logger.warning(
                    "origin.ws.message_handler_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            conn = self._conn
            if conn is None or not self.connected:
                return
            try:
                pong_waiter = await conn.ping()
                latency = await asyncio.wait_for(pong_waiter, timeout=self.ping_interval)
            except asyncio.TimeoutError:
                logger.warning("origin.ws.pong_missed", uri=self.uri, waited=self.ping_interval)
                continue
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("origin.ws.ping_failed", uri=self.uri, error=str(exc))
                continue
            if isinstance(latency, (int, float)):
                logger.debug("origin.ws.pong", rtt_ms=round(latency * 1000.0, 1))
            else:
                logger.debug("origin.ws.pong")


__all__ = [
    "DEFAULT_WS_PATH",
    "OriginConnectionError",
    "OriginWsClient",
]
