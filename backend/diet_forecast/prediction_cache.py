"""
Prediction cache: one record per region plus a single national slot.

Each save overwrites the whole record; no history is kept. Placeholder predictions
(empty timestamp) are refused so they can never be mistaken for real data.
"""
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .kv_store import KeyValueStore
from .models import NationalPrediction

logger = logging.getLogger(__name__)

NATIONAL_KEY = "prediction:national"
REGION_PREFIX = "prediction:region:"


def region_key(region_id: int) -> str:
    return f"{REGION_PREFIX}{region_id}"


class PredictionCache:
    def __init__(self, store: KeyValueStore):
        self.store = store

    async def _load(self, key: str) -> Optional[NationalPrediction]:
        data = await self.store.get(key)
        if data is None:
            return None
        try:
            return NationalPrediction.model_validate(data)
        except ValidationError as e:
            logger.error("Cached prediction %s is unreadable, ignoring: %s", key, e)
            return None

    async def _save(self, key: str, prediction: NationalPrediction) -> bool:
        if prediction.is_placeholder:
            logger.warning("Refusing to cache placeholder prediction under %s", key)
            return False
        await self.store.put(key, prediction.to_wire())
        logger.info("Cached prediction %s (%s)", key, prediction.timestamp)
        return True

    async def load_national(self) -> Optional[NationalPrediction]:
        return await self._load(NATIONAL_KEY)

    async def save_national(self, prediction: NationalPrediction) -> bool:
        return await self._save(NATIONAL_KEY, prediction)

    async def load_region(self, region_id: int) -> Optional[NationalPrediction]:
        return await self._load(region_key(region_id))

    async def save_region(self, region_id: int, prediction: NationalPrediction) -> bool:
        return await self._save(region_key(region_id), prediction)

    async def region_ids(self) -> List[int]:
        ids = []
        for key in await self.store.list(REGION_PREFIX):
            try:
                ids.append(int(key[len(REGION_PREFIX):]))
            except ValueError:
                logger.warning("Ignoring malformed region cache key %s", key)
        return sorted(ids)

    async def load_all_regions(self) -> Dict[int, NationalPrediction]:
        loaded = {}
        for region_id in await self.region_ids():
            prediction = await self.load_region(region_id)
            if prediction is not None:
                loaded[region_id] = prediction
        return loaded

    async def clear_regions(self) -> int:
        count = await self.store.delete_prefix(REGION_PREFIX)
        logger.info("Cleared %d cached region predictions", count)
        return count

    async def cache_info(self) -> Dict[str, Any]:
        national = await self.load_national()
        return {
            "nationalTimestamp": national.timestamp if national else None,
            "regionIds": await self.region_ids(),
        }
