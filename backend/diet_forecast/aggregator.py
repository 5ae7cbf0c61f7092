"""
National aggregation from cached region predictions.

Only non-placeholder regions count, and at least `min_regions_for_aggregate` are required.
Party names are normalized before summing so old and new names of one party share a total.
The seat range is a fixed band around the sum, not a statistical interval, and `change` is
always 0 because no baseline is stored.
"""
import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from .config import PipelineLimits
from .errors import InsufficientDataError
from .models import NationalPrediction, NationalSummary, PartySeatRange, RegionPrediction, SeatCount, now_iso
from .party_names import PartyNameNormalizer
from .prediction_cache import PredictionCache
from .reference_data import ReferenceData

logger = logging.getLogger(__name__)

CONTESTED = ("low", "medium")


def normalize_region(region: RegionPrediction, normalizer: PartyNameNormalizer) -> RegionPrediction:
    seats: Dict[str, int] = OrderedDict()
    for s in region.seat_prediction:
        party = normalizer(s.party)
        seats[party] = seats.get(party, 0) + s.seats
    return region.model_copy(update={
        "leading_party": normalizer(region.leading_party),
        "seat_prediction": [SeatCount(party=p, seats=n) for p, n in seats.items()],
    })


def summarize_seats(regions: Iterable[RegionPrediction], band: int, total_seats: int) -> NationalSummary:
    totals: Dict[str, int] = OrderedDict()
    for region in regions:
        for s in region.seat_prediction:
            totals[s.party] = totals.get(s.party, 0) + s.seats
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return NationalSummary(
        total_seats=total_seats,
        predictions=[
            PartySeatRange(party=party, seat_range=(max(0, seats - band), seats + band), change=0)
            for party, seats in ranked
        ],
    )


def notable_districts(regions: Iterable[RegionPrediction], cap: int) -> List[str]:
    names: List[str] = []
    for region in regions:
        if region.confidence not in CONTESTED:
            continue
        contested = [d.district_name for d in region.districts or [] if d.confidence in CONTESTED]
        for name in contested or [region.region_name]:
            if name and name not in names:
                names.append(name)
            if len(names) >= cap:
                return names
    return names


class NationalAggregator:
    def __init__(
        self,
        cache: PredictionCache,
        reference: ReferenceData,
        normalizer: PartyNameNormalizer,
        limits: Optional[PipelineLimits] = None,
    ):
        self.cache = cache
        self.reference = reference
        self.normalizer = normalizer
        self.limits = limits or PipelineLimits()

    async def collect(self) -> List[RegionPrediction]:
        regions = []
        for region_id, envelope in (await self.cache.load_all_regions()).items():
            if envelope.is_placeholder:
                logger.info("Skipping placeholder cache for region %s", region_id)
                continue
            region = envelope.region(region_id)
            if region is None:
                logger.warning("Region cache %s has no prediction for its own region", region_id)
                continue
            regions.append(normalize_region(region, self.normalizer))
        return regions

    async def require(self) -> NationalPrediction:
        regions = await self.collect()
        required = self.limits.min_regions_for_aggregate
        if len(regions) < required:
            raise InsufficientDataError(len(regions), required)

        logger.info("Aggregating national prediction from %d regions", len(regions))
        return NationalPrediction(
            timestamp=now_iso(),
            national_summary=summarize_seats(regions, self.limits.seat_band, self.reference.total_seats),
            region_predictions=regions,
            key_battlegrounds=notable_districts(regions, self.limits.max_notable_districts),
        )

    async def aggregate(self) -> Optional[NationalPrediction]:
        try:
            return await self.require()
        except InsufficientDataError as e:
            logger.warning("National aggregation skipped: %s", e)
            return None
