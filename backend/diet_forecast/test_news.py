import asyncio
import json

import httpx
import pytest

from diet_forecast.config import Settings
from diet_forecast.errors import ConfigurationError, ExternalServiceError
from diet_forecast.kv_store import MemoryKeyValueStore, SQLiteKeyValueStore
from diet_forecast.news_cache import NewsCache
from diet_forecast.news_client import NEWS_SYSTEM_PROMPT, NewsRetrievalClient, build_news_query
from diet_forecast.reference_data import Party, ReferenceData, Region


class NewsHandler:
    def __init__(self, status=200, body=None):
        self.status = status
        self.body = body if body is not None else {
            "choices": [{"message": {"content": "大阪府では維新が優勢（NHK調べ）。"}}],
            "citations": ["https://www3.nhk.or.jp/news/example"],
        }
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json=self.body)


def _client(reference, handler, api_key="test-key", store=None):
    settings = Settings(perplexity_api_key=api_key, cache_backend="memory")
    cache = NewsCache(store or MemoryKeyValueStore())
    return NewsRetrievalClient(settings, reference, cache, transport=httpx.MockTransport(handler))


def test_region_query_names_region_and_outlets(reference):
    query = build_news_query(reference.region(27), reference)
    assert "大阪府" in query
    assert "19区" in query
    assert "報道機関" in query
    assert "全国" in build_news_query(None, reference)


def test_fetch_news_calls_service_and_caches(reference):
    handler = NewsHandler()
    client = _client(reference, handler)
    osaka = reference.region(27)

    async def scenario():
        first = await client.fetch_news(osaka)
        second = await client.fetch_news(osaka)
        forced = await client.fetch_news(osaka, force_refresh=True)
        return first, second, forced

    first, second, forced = asyncio.run(scenario())

    assert first.content.startswith("大阪府では")
    assert first.sources == ["https://www3.nhk.or.jp/news/example"]
    assert not first.from_cache
    assert second.from_cache
    assert second.cached_at == first.cached_at
    assert not forced.from_cache
    assert len(handler.requests) == 2

    sent = json.loads(handler.requests[0].content)
    assert sent["messages"][0] == {"role": "system", "content": NEWS_SYSTEM_PROMPT}
    assert "大阪府" in sent["messages"][1]["content"]
    assert handler.requests[0].headers["Authorization"] == "Bearer test-key"


def test_missing_key_is_configuration_error(reference):
    handler = NewsHandler()
    client = _client(reference, handler, api_key="")
    with pytest.raises(ConfigurationError):
        asyncio.run(client.fetch_news(None))
    assert handler.requests == []


def test_error_status_raises_with_status_and_body(reference):
    client = _client(reference, NewsHandler(status=500, body={"error": "upstream"}))
    with pytest.raises(ExternalServiceError) as exc:
        asyncio.run(client.search("query"))
    assert exc.value.status == 500
    assert "upstream" in exc.value.body


def test_empty_content_is_rejected(reference):
    client = _client(reference, NewsHandler(body={"choices": [{"message": {"content": "  "}}]}))
    with pytest.raises(ExternalServiceError):
        asyncio.run(client.search("query"))


def test_transport_failure(reference):
    def broken(request):
        raise httpx.ConnectError("connection refused", request=request)

    settings = Settings(perplexity_api_key="k", cache_backend="memory")
    client = NewsRetrievalClient(
        settings, reference, NewsCache(MemoryKeyValueStore()), transport=httpx.MockTransport(broken)
    )
    with pytest.raises(ExternalServiceError) as exc:
        asyncio.run(client.search("query"))
    assert exc.value.status is None


def test_status_uses_index_not_name_matching():
    # "京都" is a substring of "東京都"; status must still be attributed by id
    reference = ReferenceData(
        regions=(Region(1, "京都", 2), Region(2, "東京都", 3)),
        parties=(Party("甲党", "甲", "#000000"),),
    )
    cache = NewsCache(MemoryKeyValueStore())

    async def scenario():
        await cache.save(build_news_query(reference.region(2), reference), "東京都のニュース", [], region_id=2)
        return await cache.list_status(reference.regions)

    status = {s["regionName"]: s for s in asyncio.run(scenario())}
    assert status["東京都"]["hasCached"]
    assert not status["京都"]["hasCached"]
    assert status["京都"]["cachedAt"] is None


def test_clear_all_resets_entries_and_index(reference):
    cache = NewsCache(MemoryKeyValueStore())

    async def scenario():
        await cache.save("q1", "a", [], region_id=13)
        await cache.save("q2", "b", [])
        before = await cache.count()
        national = await cache.national_cached_at()
        cleared = await cache.clear_all()
        status = await cache.list_status([reference.region(13)])
        return before, national, cleared, await cache.count(), status

    before, national, cleared, after, status = asyncio.run(scenario())
    assert before == 2
    assert national is not None
    assert cleared == 2
    assert after == 0
    assert not status[0]["hasCached"]


def test_concurrent_saves_keep_every_region_indexed(reference, tmp_path):
    store = SQLiteKeyValueStore(tmp_path / "news.db")
    cache = NewsCache(store)
    regions = [reference.region(i) for i in range(1, 11)]

    async def scenario():
        await store.initialize()
        await asyncio.gather(*(
            cache.save(f"q{region.id}", "本文", [], region_id=region.id) for region in regions
        ))
        return await cache.list_status(regions), await cache.count()

    status, count = asyncio.run(scenario())
    assert count == 10
    assert all(s["hasCached"] for s in status)
