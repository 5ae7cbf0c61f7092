"""
News cache: retrieved news text keyed by a hash of the exact query string.

Two phrasings of the same question are two entries. Entries never expire; they live until
clear_all(). Per-region status comes from index records (news:index:<regionId>, one per scope)
written alongside each entry, not from matching region names against stored keys.
Saves for different regions write disjoint keys.
"""
import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from .kv_store import KeyValueStore
from .reference_data import Region

logger = logging.getLogger(__name__)

ENTRY_PREFIX = "news:entry:"
INDEX_PREFIX = "news:index:"
NATIONAL_SCOPE = "national"


def index_key(region_id: Optional[int]) -> str:
    return INDEX_PREFIX + (str(region_id) if region_id is not None else NATIONAL_SCOPE)


def query_hash(query: str) -> str:
    return hashlib.sha256(query.encode("utf-8")).hexdigest()


class NewsCache:
    def __init__(self, store: KeyValueStore):
        self.store = store

    async def load(self, query: str) -> Optional[Dict[str, Any]]:
        entry = await self.store.get(ENTRY_PREFIX + query_hash(query))
        if entry and entry.get("query") != query:
            # Hash collision or a hand-edited record; treat as a miss
            logger.warning("News cache entry for %s does not match its query; ignoring", query[:60])
            return None
        return entry

    async def save(
        self,
        query: str,
        content: str,
        sources: List[str],
        region_id: Optional[int] = None,
        cached_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        cached_at = cached_at or datetime.now(timezone.utc).isoformat()
        entry = {
            "query": query,
            "content": content,
            "sources": list(sources),
            "cachedAt": cached_at,
            "regionId": region_id,
        }
        await self.store.put(ENTRY_PREFIX + query_hash(query), entry)
        await self.store.put(index_key(region_id), {"cachedAt": cached_at, "query": query})
        logger.info("Cached news for %s (%d chars, %d sources)", query[:60], len(content), len(sources))
        return entry

    async def clear_all(self) -> int:
        count = await self.store.delete_prefix(ENTRY_PREFIX)
        await self.store.delete_prefix(INDEX_PREFIX)
        logger.info("Cleared %d cached news entries", count)
        return count

    async def count(self) -> int:
        return len(await self.store.list(ENTRY_PREFIX))

    async def list_status(self, regions: Iterable[Region]) -> List[Dict[str, Any]]:
        status = []
        for region in regions:
            cached_at = await self._cached_at(region.id)
            status.append({
                "regionId": region.id,
                "regionName": region.name,
                "hasCached": cached_at is not None,
                "cachedAt": cached_at,
            })
        return status

    async def _cached_at(self, region_id: Optional[int]) -> Optional[str]:
        record = await self.store.get(index_key(region_id))
        return record.get("cachedAt") if record else None

    async def national_cached_at(self) -> Optional[str]:
        return await self._cached_at(None)
