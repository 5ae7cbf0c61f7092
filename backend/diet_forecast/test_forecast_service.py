import asyncio

import httpx
import pytest

from diet_forecast.config import Settings
from diet_forecast.errors import ConfigurationError
from diet_forecast.forecast_service import FAST_MODE_NEWS, ForecastService
from diet_forecast.models import NationalPrediction, PredictionRequest, RegionPrediction, SeatCount


def _news_transport(status=200, calls=None):
    def handler(request):
        if calls is not None:
            calls.append(request)
        if status != 200:
            return httpx.Response(status, json={"error": "unavailable"})
        return httpx.Response(200, json={"choices": [{"message": {"content": "最新情勢: 接戦区が多い。"}}]})

    return httpx.MockTransport(handler)


def _service(settings, reference, store, fake_llm, replies=None, news_status=200, news_calls=None):
    service = ForecastService(
        settings, reference, store, news_transport=_news_transport(news_status, news_calls)
    )
    service.generator.llm = fake_llm(replies)
    return service


def _cached(region_id, name):
    return NationalPrediction(
        timestamp="2026-01-30T09:00:00+00:00",
        region_predictions=[RegionPrediction(
            region_id=region_id, region_name=name, leading_party="自民党",
            seat_prediction=[SeatCount(party="自民党", seats=2)],
        )],
    )


def test_read_path_returns_fixture_without_calls(settings, reference, store, fake_llm):
    calls = []
    service = _service(settings, reference, store, fake_llm, news_calls=calls)
    prediction = asyncio.run(service.get_prediction(PredictionRequest()))

    assert prediction.is_placeholder
    assert prediction.national_summary.total_seats == 465
    assert len(prediction.key_battlegrounds) == 5
    assert calls == []
    assert service.generator.llm.calls == []


def test_read_path_prefers_cache(settings, reference, store, fake_llm):
    service = _service(settings, reference, store, fake_llm)

    async def scenario():
        await service.prediction_cache.save_region(31, _cached(31, "鳥取県"))
        return await service.get_prediction(PredictionRequest(region_id=31))

    prediction = asyncio.run(scenario())
    assert prediction.timestamp == "2026-01-30T09:00:00+00:00"
    assert service.generator.llm.calls == []


def test_unknown_region_is_value_error(settings, reference, store, fake_llm):
    service = _service(settings, reference, store, fake_llm)
    with pytest.raises(ValueError):
        asyncio.run(service.get_prediction(PredictionRequest(region_id=48)))


def test_refresh_generates_and_persists(settings, reference, store, fake_llm):
    service = _service(settings, reference, store, fake_llm)

    async def scenario():
        prediction = await service.get_prediction(PredictionRequest(region_id=31, force_refresh=True))
        return prediction, await service.prediction_cache.load_region(31)

    prediction, cached = asyncio.run(scenario())
    # unparseable model output ends in the roster prediction, which is real data
    assert not prediction.is_placeholder
    assert cached.timestamp == prediction.timestamp
    assert cached.region(31).seat_total == 2
    assert "最新情勢" in service.generator.llm.calls[0]["prompt"]


def test_fast_mode_skips_news(settings, reference, store, fake_llm):
    calls = []
    service = _service(settings, reference, store, fake_llm, news_calls=calls)
    asyncio.run(service.refresh(reference.region(27), fast_mode=True))

    assert calls == []
    assert FAST_MODE_NEWS in service.generator.llm.calls[0]["prompt"]


def test_news_failure_serves_stale_cache(settings, reference, store, fake_llm):
    service = _service(settings, reference, store, fake_llm, news_status=503)

    async def scenario():
        await service.prediction_cache.save_region(31, _cached(31, "鳥取県"))
        stale = await service.refresh(reference.region(31))
        fresh = await service.refresh(reference.region(18))
        return stale, fresh

    stale, fresh = asyncio.run(scenario())
    assert stale.timestamp == "2026-01-30T09:00:00+00:00"
    assert fresh.is_placeholder
    assert service.generator.llm.calls == []


def test_missing_news_key_escapes(reference, store, fake_llm):
    settings = Settings(perplexity_api_key="", cache_backend="memory")
    service = _service(settings, reference, store, fake_llm)
    with pytest.raises(ConfigurationError):
        asyncio.run(service.get_prediction(PredictionRequest(force_refresh=True)))


def test_refresh_all_isolates_failures(settings, reference, store, fake_llm):
    service = _service(settings, reference, store, fake_llm, replies=[("鳥取県の", RuntimeError("boom"))])

    async def scenario():
        summary = await service.refresh_all(region_ids=[18, 31, 27], concurrency=2)
        return summary, await service.prediction_cache.cache_info()

    summary, info = asyncio.run(scenario())
    assert summary == {"total": 4, "succeeded": 3, "failed": 1, "failedRegionIds": [31]}
    assert info["regionIds"] == [18, 27]
    assert info["nationalTimestamp"]


def test_refresh_all_surfaces_configuration_error(reference, store, fake_llm):
    settings = Settings(perplexity_api_key="", cache_backend="memory")
    service = _service(settings, reference, store, fake_llm)
    with pytest.raises(ConfigurationError):
        asyncio.run(service.refresh_all(fast_mode=False, include_national=False, region_ids=[18]))


def test_rebuild_national(settings, reference, store, fake_llm):
    service = _service(settings, reference, store, fake_llm)

    async def scenario():
        await service.prediction_cache.save_region(18, _cached(18, "福井県"))
        await service.prediction_cache.save_region(31, _cached(31, "鳥取県"))
        too_few = await service.rebuild_national()
        await service.prediction_cache.save_region(32, _cached(32, "島根県"))
        rebuilt = await service.rebuild_national()
        return too_few, rebuilt, await service.prediction_cache.load_national()

    too_few, rebuilt, saved = asyncio.run(scenario())
    assert too_few is None
    assert rebuilt.national_summary.predictions[0].party == "自民党"
    assert rebuilt.national_summary.predictions[0].seat_range == (0, 16)
    assert saved.timestamp == rebuilt.timestamp


def test_cache_status_and_clearing(settings, reference, store, fake_llm):
    service = _service(settings, reference, store, fake_llm)

    async def scenario():
        await service.fetch_region_news(13)
        await service.prediction_cache.save_region(13, _cached(13, "東京都"))
        status = await service.cache_status()
        cleared_news = await service.clear_news_cache()
        cleared_regions = await service.clear_region_cache()
        return status, cleared_news, cleared_regions, await service.cache_status()

    status, cleared_news, cleared_regions, after = asyncio.run(scenario())
    assert status["newsEntries"] == 1
    assert status["nationalNewsCachedAt"] is None
    tokyo = next(r for r in status["regions"] if r["regionId"] == 13)
    assert tokyo["hasCached"]
    assert status["predictions"]["regionIds"] == [13]
    assert (cleared_news, cleared_regions) == (1, 1)
    assert after["newsEntries"] == 0
    assert after["predictions"]["regionIds"] == []
