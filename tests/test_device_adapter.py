"""Tests for DeviceChannelAdapter: connect/read/disconnect lifecycle."""

import asyncio

import pytest
import pytest_asyncio

from fakes import FakeChannel, FakeProvider, drain, settle
from signlink.core.errors import ChannelUnavailable, DeviceLost
from signlink.device.adapter import DeviceChannelAdapter
from signlink.models import ConnectionState, DeviceError, DeviceLine, DeviceStatus, ErrorKind

PORT = "/dev/ttyUSB0"


@pytest.fixture
def provider():
    return FakeProvider(present=[PORT])


@pytest_asyncio.fixture
async def adapter(provider):
    a = DeviceChannelAdapter(provider, disconnect_grace=0.05)
    yield a
    await a.stop()


def lines(events):
    return [e.text for e in events if isinstance(e, DeviceLine)]


def errors(events):
    return [e for e in events if isinstance(e, DeviceError)]


def states(events):
    return [e.state for e in events if isinstance(e, DeviceStatus)]


# ─── Explicit connect ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_connect_reads_lines(adapter, provider):
    assert await adapter.connect() is True
    assert adapter.state == ConnectionState.CONNECTED
    assert adapter.channel_id == PORT

    provider.last.push(b"Hello\nWor")
    provider.last.push(b"ld\n")
    await settle()

    events = drain(adapter.events)
    assert states(events) == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
    assert lines(events) == ["Hello", "World"]


@pytest.mark.asyncio
async def test_connect_without_device_is_silent():
    adapter = DeviceChannelAdapter(FakeProvider())
    assert await adapter.connect() is False
    assert adapter.state == ConnectionState.DISCONNECTED
    assert adapter.error is None
    assert errors(drain(adapter.events)) == []


@pytest.mark.asyncio
async def test_connect_open_failure_is_surfaced(adapter, provider):
    provider.open_error = ChannelUnavailable("Access denied")

    assert await adapter.connect() is False
    assert adapter.state == ConnectionState.DISCONNECTED

    [error] = errors(drain(adapter.events))
    assert error.kind == ErrorKind.CHANNEL_UNAVAILABLE
    assert "Access denied" in error.message
    assert adapter.error == error


@pytest.mark.asyncio
async def test_connect_authorises_channel(adapter, provider):
    await adapter.connect()
    assert PORT in provider.authorized


# ─── Disconnect ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_disconnect_twice(adapter, provider):
    await adapter.connect()
    channel = provider.last

    await adapter.disconnect()
    assert adapter.state == ConnectionState.DISCONNECTED
    await adapter.disconnect()
    assert adapter.state == ConnectionState.DISCONNECTED

    assert channel.cancelled
    assert channel.closed
    assert states(drain(adapter.events))[-1] == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_disconnect_when_never_connected(adapter):
    await adapter.disconnect()
    await adapter.disconnect()
    assert adapter.state == ConnectionState.DISCONNECTED
    assert drain(adapter.events) == []


@pytest.mark.asyncio
async def test_no_events_after_disconnect(adapter, provider):
    await adapter.connect()
    old = provider.last
    await adapter.disconnect()
    drain(adapter.events)

    old.push(b"late\n")
    await settle()
    assert drain(adapter.events) == []


@pytest.mark.asyncio
async def test_reconnect_gets_fresh_framer(adapter, provider):
    await adapter.connect()
    provider.last.push(b"Hel")
    await settle()
    await adapter.disconnect()

    await adapter.connect()
    provider.last.push(b"lo\n")
    await settle()

    assert lines(drain(adapter.events)) == ["lo"]


@pytest.mark.asyncio
async def test_disconnect_bounded_when_read_ignores_cancel(provider):
    class StubbornChannel(FakeChannel):
        def cancel_read(self):
            self.cancelled = True

    channel = StubbornChannel(PORT)

    async def open_stubborn(channel_id):
        return channel

    provider.open = open_stubborn
    adapter = DeviceChannelAdapter(provider, disconnect_grace=0.02)
    await adapter.connect()

    await asyncio.wait_for(adapter.disconnect(), timeout=1.0)
    assert channel.closed
    assert adapter.state == ConnectionState.DISCONNECTED


# ─── Read loop termination ────────────────────────────────────


@pytest.mark.asyncio
async def test_device_lost_during_read(adapter, provider):
    await adapter.connect()
    drain(adapter.events)

    provider.last.fail(DeviceLost("unplugged"))
    await settle()

    events = drain(adapter.events)
    assert states(events) == [ConnectionState.DISCONNECTED]
    [error] = errors(events)
    assert error.kind == ErrorKind.DEVICE_LOST
    assert provider.last.closed


@pytest.mark.asyncio
async def test_device_lost_clears_on_next_connect(adapter, provider):
    await adapter.connect()
    provider.last.fail(DeviceLost("unplugged"))
    await settle()
    assert adapter.error is not None

    assert await adapter.connect() is True
    assert adapter.error is None


@pytest.mark.asyncio
async def test_io_error_stops_without_surfacing(adapter, provider):
    await adapter.connect()
    drain(adapter.events)

    provider.last.fail(OSError("framing error"))
    await settle()

    events = drain(adapter.events)
    assert states(events) == [ConnectionState.DISCONNECTED]
    assert errors(events) == []
    assert adapter.error is None
    # No automatic reopen
    assert len(provider.opened) == 1


@pytest.mark.asyncio
async def test_end_of_stream_flushes_trailing_line(adapter, provider):
    await adapter.connect()
    provider.last.push(b"A\nBye")
    provider.last.end()
    await settle()

    events = drain(adapter.events)
    assert lines(events) == ["A", "Bye"]
    assert adapter.state == ConnectionState.DISCONNECTED


# ─── Auto-connect and plug events ─────────────────────────────


@pytest.mark.asyncio
async def test_start_reuses_authorised_channel():
    provider = FakeProvider(present=[PORT], authorized=[PORT])
    adapter = DeviceChannelAdapter(provider)
    try:
        await adapter.start()
        assert adapter.state == ConnectionState.CONNECTED
    finally:
        await adapter.stop()


@pytest.mark.asyncio
async def test_start_ignores_unauthorised_channel():
    provider = FakeProvider(present=[PORT])
    adapter = DeviceChannelAdapter(provider)
    try:
        await adapter.start()
        assert adapter.state == ConnectionState.DISCONNECTED
        assert provider.opened == []
    finally:
        await adapter.stop()


@pytest.mark.asyncio
async def test_auto_connect_failure_is_swallowed():
    provider = FakeProvider(present=[PORT], authorized=[PORT])
    provider.open_error = ChannelUnavailable("busy")
    adapter = DeviceChannelAdapter(provider)
    try:
        await adapter.start()
        assert adapter.state == ConnectionState.DISCONNECTED
        assert errors(drain(adapter.events)) == []
        assert adapter.error is None
    finally:
        await adapter.stop()


@pytest.mark.asyncio
async def test_plug_in_triggers_auto_connect():
    provider = FakeProvider(authorized=[PORT])
    adapter = DeviceChannelAdapter(provider)
    try:
        await adapter.start()
        assert adapter.state == ConnectionState.DISCONNECTED

        provider.plug(PORT)
        await settle()
        assert adapter.state == ConnectionState.CONNECTED
    finally:
        await adapter.stop()


@pytest.mark.asyncio
async def test_unplug_forces_disconnect_and_surfaces_device_lost():
    provider = FakeProvider(present=[PORT], authorized=[PORT])
    adapter = DeviceChannelAdapter(provider, disconnect_grace=0.05)
    try:
        await adapter.start()
        drain(adapter.events)

        provider.unplug(PORT)
        await settle()

        events = drain(adapter.events)
        assert adapter.state == ConnectionState.DISCONNECTED
        assert [e.kind for e in errors(events)] == [ErrorKind.DEVICE_LOST]
        assert provider.last.closed
    finally:
        await adapter.stop()


@pytest.mark.asyncio
async def test_unplug_of_other_device_is_ignored():
    provider = FakeProvider(present=[PORT, "/dev/ttyUSB1"], authorized=[PORT])
    adapter = DeviceChannelAdapter(provider)
    try:
        await adapter.start()
        drain(adapter.events)

        provider.unplug("/dev/ttyUSB1")
        await settle()

        assert adapter.state == ConnectionState.CONNECTED
        assert errors(drain(adapter.events)) == []
    finally:
        await adapter.stop()
