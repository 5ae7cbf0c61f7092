import asyncio

import pytest

from diet_forecast.config import Settings
from diet_forecast.kv_store import (
    FileKeyValueStore,
    MemoryKeyValueStore,
    SQLiteKeyValueStore,
    create_store,
)


@pytest.fixture(params=["memory", "file", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryKeyValueStore()
    if request.param == "file":
        return FileKeyValueStore(tmp_path / "cache")
    return SQLiteKeyValueStore(tmp_path / "cache.db")


def test_put_get_overwrite(any_store):
    async def scenario():
        assert await any_store.get("prediction:region:13") is None
        await any_store.put("prediction:region:13", {"timestamp": "a", "name": "東京都"})
        await any_store.put("prediction:region:13", {"timestamp": "b"})
        return await any_store.get("prediction:region:13")

    assert asyncio.run(scenario()) == {"timestamp": "b"}


def test_list_and_delete_by_prefix(any_store):
    async def scenario():
        for key in ("news:entry:1", "news:entry:2", "news:index", "prediction:national"):
            await any_store.put(key, {"k": key})
        listed = await any_store.list("news:entry:")
        removed = await any_store.delete_prefix("news:entry:")
        remaining = await any_store.list()
        missing = await any_store.delete("news:entry:1")
        return listed, removed, remaining, missing

    listed, removed, remaining, missing = asyncio.run(scenario())
    assert listed == ["news:entry:1", "news:entry:2"]
    assert removed == 2
    assert remaining == ["news:index", "prediction:national"]
    assert missing is False


def test_memory_store_returns_copies():
    store = MemoryKeyValueStore()

    async def scenario():
        value = {"seats": [1, 2]}
        await store.put("k", value)
        value["seats"].append(3)
        loaded = await store.get("k")
        loaded["seats"].append(4)
        return await store.get("k")

    assert asyncio.run(scenario()) == {"seats": [1, 2]}


def test_file_store_survives_reopen(tmp_path):
    async def scenario():
        await FileKeyValueStore(tmp_path).put("prediction:region:27", {"region": "大阪府"})
        return await FileKeyValueStore(tmp_path).get("prediction:region:27")

    assert asyncio.run(scenario()) == {"region": "大阪府"}
    assert not list(tmp_path.glob("*.tmp"))


def test_create_store_by_backend(tmp_path):
    assert isinstance(create_store(Settings(cache_backend="memory")), MemoryKeyValueStore)
    assert isinstance(create_store(Settings(cache_backend="file", cache_path=tmp_path)), FileKeyValueStore)
    store = create_store(Settings(cache_backend="sqlite", cache_path=tmp_path / "x.db"))
    assert isinstance(store, SQLiteKeyValueStore)
    assert store.path == tmp_path / "x.db"
