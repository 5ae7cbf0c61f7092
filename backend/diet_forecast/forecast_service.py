"""
Forecast orchestration: cache-first reads, news -> generation -> reconciliation -> persistence
on refresh, and the administrative operations exposed next to prediction retrieval.

Read path (force_refresh off) never calls an external service: cached record or fixture.
Refresh path failures fall back to the stale cached record, then the fixture. Only
ConfigurationError escapes.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from .aggregator import NationalAggregator
from .config import PipelineLimits, Settings
from .errors import ConfigurationError, ForecastError
from .kv_store import KeyValueStore, create_store
from .llm_client import GenerationClient
from .models import (
    NationalPrediction,
    NationalSummary,
    PartySeatRange,
    PredictionRequest,
    RegionPrediction,
    SeatCount,
)
from .news_cache import NewsCache
from .news_client import NewsResult, NewsRetrievalClient
from .party_names import PartyNameNormalizer
from .prediction_cache import PredictionCache
from .prediction_generator import PredictionGenerator
from .reference_data import ReferenceData, Region, load_reference_data

logger = logging.getLogger(__name__)

FAST_MODE_NEWS = "（高速モード：リアルタイムニュースなし。候補者データと一般的な選挙トレンドに基づいて予測してください）"


def fixture_prediction() -> NationalPrediction:
    """Placeholder shown before any real prediction exists. Empty timestamp marks it as such."""
    return NationalPrediction(
        timestamp="",
        national_summary=NationalSummary(
            total_seats=465,
            predictions=[
                PartySeatRange(party="自民党", seat_range=(180, 210), change=-30),
                PartySeatRange(party="中道改革連合", seat_range=(100, 130), change=20),
                PartySeatRange(party="日本維新の会", seat_range=(50, 70), change=10),
                PartySeatRange(party="公明党", seat_range=(25, 35), change=-5),
                PartySeatRange(party="国民民主党", seat_range=(15, 25), change=5),
                PartySeatRange(party="共産党", seat_range=(10, 15), change=0),
                PartySeatRange(party="れいわ新選組", seat_range=(5, 10), change=3),
                PartySeatRange(party="その他", seat_range=(10, 20), change=0),
            ],
        ),
        region_predictions=[
            RegionPrediction(
                region_id=13,
                region_name="東京都",
                leading_party="中道改革連合",
                confidence="medium",
                seat_prediction=[
                    SeatCount(party="中道改革連合", seats=12),
                    SeatCount(party="自民党", seats=10),
                    SeatCount(party="日本維新の会", seats=5),
                    SeatCount(party="公明党", seats=2),
                    SeatCount(party="その他", seats=1),
                ],
            ),
            RegionPrediction(
                region_id=27,
                region_name="大阪府",
                leading_party="日本維新の会",
                confidence="high",
                seat_prediction=[
                    SeatCount(party="日本維新の会", seats=14),
                    SeatCount(party="自民党", seats=3),
                    SeatCount(party="公明党", seats=2),
                ],
            ),
        ],
        key_battlegrounds=["東京1区", "神奈川18区", "愛知1区", "大阪10区", "福岡2区"],
    )


class ForecastService:
    def __init__(
        self,
        settings: Settings,
        reference: ReferenceData,
        store: KeyValueStore,
        limits: Optional[PipelineLimits] = None,
        news_transport: Optional[httpx.AsyncBaseTransport] = None,
        llm_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.reference = reference
        self.limits = limits or PipelineLimits()
        self.normalizer = PartyNameNormalizer(reference)
        self.news_cache = NewsCache(store)
        self.prediction_cache = PredictionCache(store)
        self.news = NewsRetrievalClient(settings, reference, self.news_cache, transport=news_transport)
        self.generator = PredictionGenerator(
            GenerationClient(settings, transport=llm_transport),
            reference,
            self.normalizer,
            limits=self.limits,
        )
        self.aggregator = NationalAggregator(self.prediction_cache, reference, self.normalizer, self.limits)

    def resolve_region(self, region_id: Optional[int]) -> Optional[Region]:
        """None means national scope. Unknown ids raise ValueError."""
        if region_id is None:
            return None
        return self.reference.region(region_id)

    async def load_cached(self, region: Optional[Region]) -> Optional[NationalPrediction]:
        if region is None:
            return await self.prediction_cache.load_national()
        return await self.prediction_cache.load_region(region.id)

    async def get_prediction(self, request: PredictionRequest) -> NationalPrediction:
        region = self.resolve_region(request.region_id)
        if not request.force_refresh:
            cached = await self.load_cached(region)
            if cached is not None:
                return cached
            logger.info("No cached prediction for %s; returning fixture", region.name if region else "national")
            return fixture_prediction()
        return await self.refresh(region, fast_mode=request.fast_mode)

    async def refresh(self, region: Optional[Region], fast_mode: bool = False) -> NationalPrediction:
        label = region.name if region else "national"
        try:
            if fast_mode:
                news_text = FAST_MODE_NEWS
            else:
                news_text = (await self.news.fetch_news(region)).content
            prediction = await self.generator.generate(news_text, region, fast_mode=fast_mode)
        except ConfigurationError:
            raise
        except ForecastError as e:
            logger.warning("Refresh failed for %s: %s", label, e)
            cached = await self.load_cached(region)
            if cached is not None:
                logger.info("Serving stale cached prediction for %s (%s)", label, cached.timestamp)
                return cached
            return fixture_prediction()

        if region is None:
            await self.prediction_cache.save_national(prediction)
        else:
            await self.prediction_cache.save_region(region.id, prediction)
        return prediction

    async def refresh_all(
        self,
        fast_mode: bool = True,
        include_national: bool = True,
        concurrency: Optional[int] = None,
        region_ids: Optional[List[int]] = None,
    ) -> Dict[str, Any]:
        """Refresh national + every region with bounded parallelism; one failure never stops the rest."""
        scopes: List[Optional[Region]] = [None] if include_national else []
        if region_ids is None:
            scopes.extend(self.reference.regions)
        else:
            scopes.extend(self.reference.region(i) for i in region_ids)

        semaphore = asyncio.Semaphore(concurrency or self.settings.refresh_concurrency)

        async def run(region: Optional[Region]) -> bool:
            label = region.name if region else "national"
            async with semaphore:
                try:
                    prediction = await self.refresh(region, fast_mode=fast_mode)
                except ConfigurationError:
                    raise
                except Exception:
                    logger.exception("Unexpected error refreshing %s", label)
                    return False
            ok = not prediction.is_placeholder
            if ok:
                logger.info("Refreshed %s (%s)", label, prediction.timestamp)
            else:
                logger.error("Refresh of %s produced no real data", label)
            return ok

        results = await asyncio.gather(*(run(scope) for scope in scopes))
        failed = [
            (scope.id if scope else None) for scope, ok in zip(scopes, results) if not ok
        ]
        summary = {
            "total": len(scopes),
            "succeeded": len(scopes) - len(failed),
            "failed": len(failed),
            "failedRegionIds": failed,
        }
        logger.info("Bulk refresh finished: %s", summary)
        return summary

    async def rebuild_national(self) -> Optional[NationalPrediction]:
        """Aggregate region caches into the national slot. None when too few regions are cached."""
        prediction = await self.aggregator.aggregate()
        if prediction is not None:
            await self.prediction_cache.save_national(prediction)
        return prediction

    async def clear_news_cache(self) -> int:
        return await self.news_cache.clear_all()

    async def clear_region_cache(self) -> int:
        return await self.prediction_cache.clear_regions()

    async def cache_status(self) -> Dict[str, Any]:
        regions = await self.news_cache.list_status(self.reference.regions)
        info = await self.prediction_cache.cache_info()
        return {
            "newsEntries": await self.news_cache.count(),
            "nationalNewsCachedAt": await self.news_cache.national_cached_at(),
            "regions": regions,
            "predictions": info,
        }

    async def fetch_region_news(self, region_id: int) -> NewsResult:
        """Force a news-only refresh for one region without running generation."""
        return await self.news.fetch_news(self.reference.region(region_id), force_refresh=True)


def build_service(settings: Optional[Settings] = None) -> ForecastService:
    settings = settings or Settings.from_env()
    reference = load_reference_data(settings.reference_path, settings.candidates_path)
    return ForecastService(settings, reference, create_store(settings))
