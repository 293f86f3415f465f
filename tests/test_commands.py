import json

import pytest

from origin_alpaca.origin.commands import CommandDispatcher
from origin_alpaca.origin.ws_client import OriginWsClient


def _dispatcher(conn=None, **kwargs) -> CommandDispatcher:
    client = OriginWsClient(ping_interval=0)
    if conn is not None:
        client._conn = conn  # type: ignore[assignment]
    return CommandDispatcher(client, **kwargs)


@pytest.mark.asyncio
async def test_send_without_connection_sends_nothing():
    dispatcher = _dispatcher()
    assert await dispatcher.send("Park", "Mount") is None
    assert dispatcher.next_sequence_id == 2000
    assert dispatcher.pending == {}


@pytest.mark.asyncio
async def test_sequence_ids_strictly_increase(fake_connection):
    dispatcher = _dispatcher(fake_connection)

    first = await dispatcher.send("GetStatus", "Mount")
    second = await dispatcher.send("GotoRaDec", "Mount", {"Ra": 0.5, "Dec": 0.1})

    assert (first, second) == (2000, 2001)
    frames = [json.loads(item) for item in fake_connection.sent]
    assert [frame["SequenceID"] for frame in frames] == [2000, 2001]
    assert frames[1]["Source"] == "AlpacaServer"
    assert frames[1]["Type"] == "Command"
    assert frames[1]["Ra"] == 0.5
    assert dispatcher.pending == {2000: "GetStatus", 2001: "GotoRaDec"}


@pytest.mark.asyncio
async def test_custom_source_and_base(fake_connection):
    dispatcher = _dispatcher(fake_connection, source="Bench", sequence_base=10)
    assert await dispatcher.send("Park", "Mount") == 10
    assert json.loads(fake_connection.sent[0])["Source"] == "Bench"


@pytest.mark.asyncio
async def test_pending_map_is_bounded(fake_connection):
    dispatcher = _dispatcher(fake_connection, pending_limit=2)
    for _ in range(3):
        await dispatcher.send("GetStatus", "Mount")
    assert list(dispatcher.pending) == [2001, 2002]


@pytest.mark.asyncio
async def test_resolve_pops_pending_entry(fake_connection):
    dispatcher = _dispatcher(fake_connection)
    sequence_id = await dispatcher.send("GetCameraInfo", "Camera")

    assert dispatcher.resolve(sequence_id) == "GetCameraInfo"
    assert dispatcher.resolve(sequence_id) is None
    assert dispatcher.resolve(None) is None


@pytest.mark.asyncio
async def test_failed_write_consumes_sequence_id(fake_connection):
    async def broken_send(data):
        raise RuntimeError("socket gone")

    fake_connection.send = broken_send
    dispatcher = _dispatcher(fake_connection)

    assert await dispatcher.send("Park", "Mount") is None
    assert dispatcher.next_sequence_id == 2001
    assert dispatcher.pending == {}
