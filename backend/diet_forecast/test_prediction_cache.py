import asyncio

import pytest

from diet_forecast.aggregator import NationalAggregator, notable_districts, summarize_seats
from diet_forecast.config import PipelineLimits
from diet_forecast.errors import InsufficientDataError
from diet_forecast.models import DistrictPrediction, NationalPrediction, RegionPrediction, SeatCount
from diet_forecast.prediction_cache import PredictionCache, region_key


def _envelope(region_id, name, seats, timestamp="2026-02-01T00:00:00+00:00", confidence="high"):
    return NationalPrediction(
        timestamp=timestamp,
        region_predictions=[RegionPrediction(
            region_id=region_id,
            region_name=name,
            leading_party=seats[0][0],
            confidence=confidence,
            seat_prediction=[SeatCount(party=p, seats=n) for p, n in seats],
        )],
    )


def test_save_and_load_region(store):
    cache = PredictionCache(store)

    async def scenario():
        saved = await cache.save_region(13, _envelope(13, "東京都", [("自民党", 20)]))
        return saved, await cache.load_region(13), await cache.load_region(27)

    saved, loaded, missing = asyncio.run(scenario())
    assert saved
    assert loaded.region(13).seat_total == 20
    assert missing is None


def test_placeholder_is_never_saved(store):
    cache = PredictionCache(store)

    async def scenario():
        saved = await cache.save_national(NationalPrediction())
        return saved, await cache.load_national()

    saved, loaded = asyncio.run(scenario())
    assert saved is False
    assert loaded is None


def test_unreadable_record_is_ignored(store):
    cache = PredictionCache(store)

    async def scenario():
        await store.put(region_key(13), {"timestamp": "x", "regionPredictions": [{"regionName": "no id"}]})
        return await cache.load_region(13)

    assert asyncio.run(scenario()) is None


def test_cache_info_and_clear(store):
    cache = PredictionCache(store)

    async def scenario():
        await cache.save_region(27, _envelope(27, "大阪府", [("日本維新の会", 19)]))
        await cache.save_region(13, _envelope(13, "東京都", [("自民党", 30)]))
        await cache.save_national(_envelope(13, "東京都", [("自民党", 30)], timestamp="2026-02-02T00:00:00+00:00"))
        info = await cache.cache_info()
        cleared = await cache.clear_regions()
        return info, cleared, await cache.cache_info()

    info, cleared, after = asyncio.run(scenario())
    assert info == {"nationalTimestamp": "2026-02-02T00:00:00+00:00", "regionIds": [13, 27]}
    assert cleared == 2
    assert after == {"nationalTimestamp": "2026-02-02T00:00:00+00:00", "regionIds": []}


def _aggregator(store, reference, normalizer):
    return NationalAggregator(PredictionCache(store), reference, normalizer, PipelineLimits())


def test_aggregate_needs_three_regions(store, reference, normalizer):
    cache = PredictionCache(store)

    async def scenario():
        await cache.save_region(13, _envelope(13, "東京都", [("自民党", 20)]))
        await cache.save_region(27, _envelope(27, "大阪府", [("維新", 19)]))
        # placeholders written directly to the store never count
        await store.put(region_key(23), _envelope(23, "愛知県", [("自民党", 16)], timestamp="").to_wire())
        aggregator = _aggregator(store, reference, normalizer)
        return await aggregator.aggregate(), aggregator

    result, aggregator = asyncio.run(scenario())
    assert result is None
    with pytest.raises(InsufficientDataError) as exc:
        asyncio.run(aggregator.require())
    assert (exc.value.found, exc.value.required) == (2, 3)


def test_aggregate_sums_normalized_parties(store, reference, normalizer):
    cache = PredictionCache(store)

    async def scenario():
        await cache.save_region(13, _envelope(13, "東京都", [("自由民主党", 20), ("立憲民主党", 10)]))
        await cache.save_region(27, _envelope(27, "大阪府", [("維新", 15), ("自民", 4)]))
        await cache.save_region(31, _envelope(31, "鳥取県", [("中道改革連合", 1), ("公明党", 1)], confidence="low"))
        return await _aggregator(store, reference, normalizer).aggregate()

    result = asyncio.run(scenario())
    ranges = {p.party: p.seat_range for p in result.national_summary.predictions}
    assert ranges == {
        "自民党": (14, 34),
        "日本維新の会": (5, 25),
        "中道改革連合": (1, 21),
        "公明党": (0, 11),
    }
    assert [p.party for p in result.national_summary.predictions][0] == "自民党"
    assert all(p.change == 0 for p in result.national_summary.predictions)
    assert result.national_summary.total_seats == 465
    assert result.timestamp
    assert result.key_battlegrounds == ["鳥取県"]


def test_summarize_floor_and_order():
    regions = [RegionPrediction(region_id=1, seat_prediction=[SeatCount(party="甲", seats=3), SeatCount(party="乙", seats=8)])]
    summary = summarize_seats(regions, band=5, total_seats=10)
    assert [(p.party, p.seat_range) for p in summary.predictions] == [("乙", (3, 13)), ("甲", (0, 8))]


def test_notable_districts_prefers_contested_districts():
    contested = DistrictPrediction(district_number=2, district_name="京都府2区", confidence="low")
    safe = DistrictPrediction(district_number=1, district_name="京都府1区", confidence="high")
    regions = [
        RegionPrediction(region_id=26, region_name="京都府", confidence="medium", districts=[safe, contested]),
        RegionPrediction(region_id=13, region_name="東京都", confidence="high"),
        RegionPrediction(region_id=27, region_name="大阪府", confidence="low"),
    ]
    assert notable_districts(regions, cap=10) == ["京都府2区", "大阪府"]
    assert notable_districts(regions, cap=1) == ["京都府2区"]
