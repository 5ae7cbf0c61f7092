"""
News retrieval through a search-augmented LLM (Perplexity chat completions).

The returned text is unstructured context for the prediction prompt; it is only checked for
being non-empty. Results are cached by exact query string (see news_cache.py).
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .config import Settings
from .errors import ExternalServiceError
from .news_cache import NewsCache
from .reference_data import Region, ReferenceData

logger = logging.getLogger(__name__)

SERVICE_NAME = "perplexity"

NEWS_SYSTEM_PROMPT = (
    "あなたは日本の選挙情報を分析するアナリストです。最新のニュースや世論調査の情報を検索し、"
    "選挙の情勢を分析してください。候補者名、政党、選挙区の情報を可能な限り詳しく報告してください。"
    "情報源は NHK、朝日新聞、読売新聞、毎日新聞、日本経済新聞、産経新聞、共同通信、時事通信 など"
    "報道機関を優先し、どの報道機関の情報かを明記してください。"
)


@dataclass
class NewsResult:
    content: str
    sources: List[str] = field(default_factory=list)
    cached_at: Optional[str] = None
    from_cache: bool = False


def build_news_query(region: Optional[Region], reference: ReferenceData) -> str:
    election = reference.election_name or "衆議院選挙"
    date = reference.election_date
    if region is not None:
        return (
            f"{date} {election} {region.name} 小選挙区（{region.district_count}区）"
            f" 候補者一覧 各選挙区の情勢 世論調査 報道機関名を明記"
        )
    return f"{date} {election} 全国情勢 各党支持率 主要候補者 最新世論調査 報道各社の情勢調査まとめ"


class NewsRetrievalClient:
    def __init__(
        self,
        settings: Settings,
        reference: ReferenceData,
        cache: NewsCache,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.reference = reference
        self.cache = cache
        self._transport = transport

    async def search(self, query: str) -> NewsResult:
        api_key = self.settings.require_news_credentials()
        payload = {
            "model": self.settings.perplexity_model,
            "messages": [
                {"role": "system", "content": NEWS_SYSTEM_PROMPT},
                {"role": "user", "content": query},
            ],
        }
        headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.settings.http_timeout, transport=self._transport) as client:
                response = await client.post(self.settings.perplexity_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ExternalServiceError(SERVICE_NAME, None, str(e)) from e

        if response.status_code >= 300:
            logger.error("Perplexity API error %s: %s", response.status_code, response.text[:500])
            raise ExternalServiceError(SERVICE_NAME, response.status_code, response.text)

        try:
            data: Dict[str, Any] = response.json()
            content = (data.get("choices") or [{}])[0].get("message", {}).get("content") or ""
        except (ValueError, AttributeError, IndexError) as e:
            raise ExternalServiceError(SERVICE_NAME, response.status_code, response.text) from e
        if not isinstance(content, str) or not content.strip():
            raise ExternalServiceError(SERVICE_NAME, response.status_code, "empty news content")

        sources = [str(s) for s in (data.get("citations") or []) if s]
        return NewsResult(content=content, sources=sources)

    async def fetch_news(self, region: Optional[Region], force_refresh: bool = False) -> NewsResult:
        query = build_news_query(region, self.reference)
        label = region.name if region else "national"
        if not force_refresh:
            cached = await self.cache.load(query)
            if cached:
                logger.info("News cache hit for %s (%s)", label, cached.get("cachedAt"))
                return NewsResult(
                    content=cached.get("content") or "",
                    sources=cached.get("sources") or [],
                    cached_at=cached.get("cachedAt"),
                    from_cache=True,
                )

        logger.info("Fetching news for %s", label)
        result = await self.search(query)
        entry = await self.cache.save(
            query, result.content, result.sources, region_id=region.id if region else None
        )
        result.cached_at = entry["cachedAt"]
        return result
