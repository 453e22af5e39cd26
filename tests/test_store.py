"""Tests for StateStore and the persisted host identity."""

import random
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from signlink.peer.identity import HOST_ID_KEY, HostIdentityStore, generate_host_id, strip_prefix
from signlink.storage.store import StateStore


@pytest_asyncio.fixture
async def store():
    """Create a StateStore with a temp DB for each test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        s = StateStore(db_path=Path(tmpdir) / "state.db")
        await s.start()
        yield s
        await s.stop()


# ─── Key/value ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_missing_returns_default(store: StateStore):
    assert await store.get("nope") is None
    assert await store.get("nope", []) == []


@pytest.mark.asyncio
async def test_set_and_get_json_values(store: StateStore):
    await store.set("host_id", "4821")
    await store.set("authorized_ports", ["/dev/ttyUSB0", "COM3"])

    assert await store.get("host_id") == "4821"
    assert await store.get("authorized_ports") == ["/dev/ttyUSB0", "COM3"]


@pytest.mark.asyncio
async def test_set_overwrites(store: StateStore):
    await store.set("k", 1)
    await store.set("k", 2)
    assert await store.get("k") == 2
    assert await store.keys() == ["k"]


@pytest.mark.asyncio
async def test_delete(store: StateStore):
    await store.set("k", "v")
    assert await store.delete("k") is True
    assert await store.delete("k") is False
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_not_started_raises():
    s = StateStore(db_path="/tmp/never-opened.db")
    assert not s.is_open
    with pytest.raises(RuntimeError):
        await s.get("k")


@pytest.mark.asyncio
async def test_values_survive_restart():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "nested" / "state.db"

        first = StateStore(path)
        await first.start()
        await first.set("host_id", "1234")
        await first.stop()

        second = StateStore(path)
        await second.start()
        try:
            assert await second.get("host_id") == "1234"
        finally:
            await second.stop()


# ─── Host identity ────────────────────────────────────────────


def test_generate_host_id_is_four_digits():
    rng = random.Random(7)
    for _ in range(200):
        host_id = generate_host_id(rng)
        assert len(host_id) == 4
        assert 1000 <= int(host_id) <= 9999


def test_strip_prefix():
    assert strip_prefix("sg-v2-4821", "sg-v2-") == "4821"
    assert strip_prefix("4821", "sg-v2-") == "4821"
    assert strip_prefix("sg-v2-4821", "") == "sg-v2-4821"


@pytest.mark.asyncio
async def test_identity_created_once_and_persisted(store: StateStore):
    identities = HostIdentityStore(store, rng=random.Random(1))
    first = await identities.load_or_create()

    assert await store.get(HOST_ID_KEY) == first
    # A different generator must not matter once the id exists
    again = await HostIdentityStore(store, rng=random.Random(99)).load_or_create()
    assert again == first


@pytest.mark.asyncio
async def test_identity_survives_restart():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "state.db"

        s1 = StateStore(path)
        await s1.start()
        host_id = await HostIdentityStore(s1).load_or_create()
        await s1.stop()

        s2 = StateStore(path)
        await s2.start()
        try:
            assert await HostIdentityStore(s2).load_or_create() == host_id
        finally:
            await s2.stop()


@pytest.mark.asyncio
async def test_corrupt_identity_is_replaced(store: StateStore):
    await store.set(HOST_ID_KEY, "")
    host_id = await HostIdentityStore(store, rng=random.Random(3)).load_or_create()
    assert len(host_id) == 4
    assert await store.get(HOST_ID_KEY) == host_id
