import asyncio

import pytest

from origin_alpaca.origin.events import (
    Connected,
    Disconnected,
    Event,
    EventBus,
    ImageReady,
)


def test_subscribers_receive_matching_events_only():
    bus = EventBus()
    connected: list[Connected] = []
    everything: list[Event] = []
    bus.subscribe(Connected, connected.append)
    bus.subscribe_all(everything.append)

    bus.emit(Connected("10.0.0.7", 80))
    bus.emit(Disconnected())

    assert connected == [Connected("10.0.0.7", 80)]
    assert everything == [Connected("10.0.0.7", 80), Disconnected("requested")]


def test_failing_handler_is_isolated():
    bus = EventBus()
    seen: list[Event] = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(ImageReady, broken)
    bus.subscribe(ImageReady, seen.append)
    bus.emit(ImageReady("Images/a.tiff"))

    assert seen == [ImageReady("Images/a.tiff")]


def test_unsubscribe_stops_delivery():
    bus = EventBus()
    seen: list[Event] = []
    bus.subscribe(Disconnected, seen.append)
    bus.unsubscribe(Disconnected, seen.append)
    bus.emit(Disconnected("remote_closed"))
    assert seen == []


@pytest.mark.asyncio
async def test_async_handlers_are_scheduled():
    bus = EventBus()
    seen: list[Event] = []

    async def handler(event):
        seen.append(event)

    bus.subscribe(Disconnected, handler)
    bus.emit(Disconnected("remote_closed"))
    assert seen == []
    await asyncio.sleep(0)
    assert seen == [Disconnected("remote_closed")]


@pytest.mark.asyncio
async def test_wait_for_resolves_on_next_event():
    bus = EventBus()
    waiter = asyncio.ensure_future(bus.wait_for(ImageReady, timeout=1.0))
    await asyncio.sleep(0)

    bus.emit(ImageReady("Images/b.tiff"))

    assert await waiter == ImageReady("Images/b.tiff")


@pytest.mark.asyncio
async def test_wait_for_times_out():
    bus = EventBus()
    with pytest.raises(asyncio.TimeoutError):
        await bus.wait_for(ImageReady, timeout=0.01)
