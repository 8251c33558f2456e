import asyncio
import json

import pytest

from deckchat.kernel.errors import EnvironmentUnavailable, SetupFailed
from deckchat.services.environments import EnvironmentHandle, EnvironmentManager
from deckchat.services.session_store import environment_key


def _collect():
    notes = []

    async def notify(text):
        notes.append(text)

    return notes, notify


def test_acquire_creates_and_sets_up_when_nothing_stored(manager, provider, fake_redis):
    notes, notify = _collect()
    env, fresh = asyncio.run(manager.acquire("doc-1", notify))

    assert fresh is True
    assert provider.created == 1
    assert env.commands[0] == ("install",)
    assert env.files["RULES.md"].startswith("# Rules")
    assert env.files["sample.md"].startswith("# Sample")
    assert notes[0] == "[Creating secure environment...]\n\n"

    stored = json.loads(fake_redis.data[environment_key("doc-1")])
    assert stored["environment_id"] == env.id
    assert fake_redis.ttls[environment_key("doc-1")] == 840


def test_acquire_reuses_live_environment_without_setup(manager, provider):
    async def go():
        first, _ = await manager.acquire("doc-1")
        first.commands.clear()
        notes, notify = _collect()
        again, fresh = await manager.acquire("doc-1", notify)
        return first, again, fresh, notes

    first, again, fresh, notes = asyncio.run(go())
    assert fresh is False
    assert again is first
    assert provider.created == 1
    assert again.commands == []
    assert notes == []


def test_acquire_refreshes_lease_on_reuse(manager, fake_redis):
    async def go():
        await manager.acquire("doc-1")
        before = json.loads(fake_redis.data[environment_key("doc-1")])
        fake_redis.ttls[environment_key("doc-1")] = 1
        await manager.acquire("doc-1")
        after = json.loads(fake_redis.data[environment_key("doc-1")])
        return before, after

    before, after = asyncio.run(go())
    assert after["environment_id"] == before["environment_id"]
    assert after["refreshed_at"] >= before["refreshed_at"]
    assert fake_redis.ttls[environment_key("doc-1")] == 840


def test_evicted_environment_is_replaced(manager, provider):
    async def go():
        first, _ = await manager.acquire("doc-1")
        provider.evict(first.id)
        return first, await manager.acquire("doc-1")

    first, (second, fresh) = asyncio.run(go())
    assert fresh is True
    assert second.id != first.id
    assert provider.created == 2


def test_bare_legacy_handle_is_understood(manager, provider, store):
    async def go():
        env, _ = await manager.acquire("doc-1")
        await store.set(environment_key("doc-1"), env.id, 840)
        return env, await manager.acquire("doc-1")

    env, (again, fresh) = asyncio.run(go())
    assert fresh is False and again.id == env.id
    assert EnvironmentHandle.from_raw(None) is None


def test_documents_get_separate_environments(manager):
    async def go():
        a, _ = await manager.acquire("doc-a")
        b, _ = await manager.acquire("doc-b")
        return a, b

    a, b = asyncio.run(go())
    assert a.id != b.id


def test_creation_failure_is_fatal_and_not_retried(manager, provider, fake_redis):
    provider.fail_create = True
    with pytest.raises(EnvironmentUnavailable):
        asyncio.run(manager.acquire("doc-1"))
    assert provider.created == 0
    assert environment_key("doc-1") not in fake_redis.data


def test_install_failure_raises_setup_failed_and_stores_nothing(manager, provider, fake_redis):
    provider.install_exit = 2
    with pytest.raises(SetupFailed) as e:
        asyncio.run(manager.acquire("doc-1"))
    assert "install failed" in e.value.detail
    assert e.value.code == "E_SETUP_FAILED"
    assert environment_key("doc-1") not in fake_redis.data


def test_handle_ttl_must_stay_below_idle_timeout(store, provider, references):
    with pytest.raises(ValueError):
        EnvironmentManager(store, provider, references, timeout_sec=600, handle_ttl=600)
