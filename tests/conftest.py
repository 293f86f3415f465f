from __future__ import annotations

import asyncio
import json
import types
from typing import Any, Optional

import pytest

from origin_alpaca.config.settings import Settings
from origin_alpaca.origin.session import OriginSession


class FakeConnection:
    """Stands in for a websockets client connection.

    Sent frames are recorded. Frames pushed with ``push`` are yielded by
    ``async for``; pushing None ends the iteration like a remote close.
    """

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.close_code: Optional[int] = None
        self._incoming: asyncio.Queue[Any] | None = None

    @property
    def frames(self) -> list[dict[str, Any]]:
        return [json.loads(item) for item in self.sent]

    def commands(self) -> list[str]:
        return [frame["Command"] for frame in self.frames]

    def push(self, item: Any) -> None:
        self._queue().put_nowait(item)

    def _queue(self) -> asyncio.Queue[Any]:
        if self._incoming is None:
            self._incoming = asyncio.Queue()
        return self._incoming

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.close_code = 1000

    def __aiter__(self) -> "FakeConnection":
        return self

    async def __anext__(self) -> Any:
        item = await self._queue().get()
        if item is None:
            self.close_code = 1006
            raise StopAsyncIteration
        return item


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ws_ping_interval_seconds=0,
        status_poll_interval_seconds=0,
        single_shot_settle_seconds=0,
    )


@pytest.fixture
def session(settings: Settings) -> OriginSession:
    return OriginSession(settings)


@pytest.fixture
def connected_session(session: OriginSession, fake_connection: FakeConnection):
    session._ws_client._conn = fake_connection  # type: ignore[assignment]
    session._update_status(is_connected=True)
    return session, fake_connection


def response(command: str, source: str, sequence_id: Optional[int] = None, **fields: Any) -> str:
    frame: dict[str, Any] = {
        "Command": command,
        "Type": "Response",
        "Source": source,
        "ErrorCode": 0,
        "ErrorMessage": "",
    }
    if sequence_id is not None:
        frame["SequenceID"] = sequence_id
    frame.update(fields)
    return json.dumps(frame)


def notification(command: str, source: str, **fields: Any) -> str:
    frame: dict[str, Any] = {"Command": command, "Type": "Notification", "Source": source}
    frame.update(fields)
    return json.dumps(frame)


@pytest.fixture
def frames() -> types.SimpleNamespace:
    """Builders for inbound device frames."""
    return types.SimpleNamespace(response=response, notification=notification)
