import pytest

from origin_alpaca.origin.commands import CommandDispatcher
from origin_alpaca.origin.polling import StatusPoller
from origin_alpaca.origin.ws_client import OriginWsClient


@pytest.mark.asyncio
async def test_tick_rotates_mount_environment_camera(fake_connection):
    client = OriginWsClient(ping_interval=0)
    client._conn = fake_connection  # type: ignore[assignment]
    poller = StatusPoller(CommandDispatcher(client), interval=5.0)

    for _ in range(4):
        await poller.tick()

    assert [(frame["Command"], frame["Destination"]) for frame in fake_connection.frames] == [
        ("GetStatus", "Mount"),
        ("GetStatus", "Environment"),
        ("GetCaptureParameters", "Camera"),
        ("GetStatus", "Mount"),
    ]


@pytest.mark.asyncio
async def test_tick_is_skipped_while_disconnected():
    poller = StatusPoller(CommandDispatcher(OriginWsClient(ping_interval=0)))
    assert await poller.tick() is None
    assert poller.rotation == 0


@pytest.mark.asyncio
async def test_start_and_stop():
    poller = StatusPoller(CommandDispatcher(OriginWsClient(ping_interval=0)), interval=60.0)
    poller.start()
    assert poller.running
    await poller.stop()
    assert not poller.running

    disabled = StatusPoller(CommandDispatcher(OriginWsClient(ping_interval=0)), interval=0)
    disabled.start()
    assert not disabled.running
