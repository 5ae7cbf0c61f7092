"""
Seat reconciliation: makes every region's seat breakdown sum to its district count.

Two paths:
  1. district data present -> count district winners per party (authoritative)
  2. declared seats only   -> largest-remainder apportionment of the declared counts to the target

Either way the leading party is recomputed from the reconciled seats.
"""
import logging
import math
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import RejectedOutputError
from .models import Candidate, DistrictPrediction, RegionPrediction, SeatCount
from .party_names import PartyNameNormalizer
from .reference_data import Region

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_vote_shares(candidates: List[Candidate]) -> List[Candidate]:
    """Rescale a district's shares to percentages.

    Scale is detected once for the whole set: if every share is <= 1 the set is fractional.
    """
    if not candidates:
        return []
    factor = 100 if all(c.share <= 1 for c in candidates) else 1
    return [
        c.model_copy(update={"predicted_vote_share": float(round_half_up(c.share * factor))})
        for c in candidates
    ]


def is_vote_share_too_uniform(candidates: List[Candidate], max_spread: float = 5.0) -> bool:
    if not candidates or len(candidates) < 2:
        return False
    shares = [c.share for c in normalize_vote_shares(candidates)]
    return max(shares) - min(shares) <= max_spread


def count_uniform_districts(districts: Iterable[DistrictPrediction], max_spread: float = 5.0) -> int:
    return sum(1 for d in districts if is_vote_share_too_uniform(d.candidates, max_spread))


def is_mostly_uniform(districts: List[DistrictPrediction], max_spread: float = 5.0) -> bool:
    """True when more than half of the districts have near-identical shares."""
    if not districts:
        return False
    return count_uniform_districts(districts, max_spread) > len(districts) / 2


def district_winner(district: DistrictPrediction) -> Optional[Candidate]:
    best = None
    for c in district.candidates:
        if best is None or c.share > best.share:
            best = c
    return best


def seats_from_districts(districts: Iterable[DistrictPrediction]) -> List[SeatCount]:
    counts: Dict[str, int] = OrderedDict()
    for d in districts:
        winner = district_winner(d)
        if winner is None:
            continue
        counts[winner.party] = counts.get(winner.party, 0) + 1
    seats = [SeatCount(party=p, seats=n) for p, n in counts.items()]
    return sorted(seats, key=lambda s: s.seats, reverse=True)


def apportion(weights: Sequence[float], target: int) -> List[int]:
    """Largest-remainder split of target across weights; the result always sums to target.

    Leftover units go to the largest fractional parts, ties to the larger weight, then the earlier entry.
    """
    total = sum(weights)
    if total <= 0:
        raise ValueError("Cannot apportion over a zero total")
    exact = [w * target / total for w in weights]
    counts = [int(math.floor(x)) for x in exact]
    leftover = target - sum(counts)
    order = sorted(range(len(weights)), key=lambda i: (-(exact[i] - counts[i]), -weights[i], i))
    for i in order[:leftover]:
        counts[i] += 1
    return counts


def rescale_seats(seats: List[SeatCount], target: int) -> List[SeatCount]:
    """Scale seat counts to sum to target. Zero or negative entries are dropped."""
    positive = [s for s in seats if s.seats > 0]
    if not positive:
        raise ValueError("Cannot rescale an empty seat breakdown")

    counts = apportion([s.seats for s in positive], target)
    return [SeatCount(party=s.party, seats=n) for s, n in zip(positive, counts) if n > 0]


def leading_party(seats: List[SeatCount]) -> str:
    best = None
    for s in seats:
        if best is None or s.seats > best.seats:
            best = s
    return best.party if best else ""


def merge_seat_counts(seats: Iterable[SeatCount]) -> List[SeatCount]:
    merged: Dict[str, int] = OrderedDict()
    for s in seats:
        merged[s.party] = merged.get(s.party, 0) + s.seats
    return [SeatCount(party=p, seats=n) for p, n in merged.items()]


class SeatReconciler:
    def __init__(self, normalizer: PartyNameNormalizer):
        self.normalizer = normalizer

    def clean_district(self, region: Region, district: DistrictPrediction) -> DistrictPrediction:
        candidates = [
            c.model_copy(update={"party": self.normalizer(c.party)}) for c in district.candidates
        ]
        candidates = sorted(normalize_vote_shares(candidates), key=lambda c: c.share, reverse=True)
        leader = candidates[0].name if candidates else ""
        return district.model_copy(update={
            "district_name": region.district_name(district.district_number),
            "candidates": candidates,
            "leading_candidate": leader,
        })

    def clean_districts(self, region: Region, districts: Iterable[DistrictPrediction]) -> List[DistrictPrediction]:
        """Keep districts 1..district_count, first occurrence of each number wins, sorted by number."""
        kept: Dict[int, DistrictPrediction] = {}
        for d in districts:
            if not 1 <= d.district_number <= region.district_count:
                logger.debug("Dropping out-of-range district %s for %s", d.district_number, region.name)
                continue
            if d.district_number in kept:
                continue
            kept[d.district_number] = self.clean_district(region, d)
        return [kept[n] for n in sorted(kept)]

    def reconcile(self, prediction: RegionPrediction, region: Region) -> RegionPrediction:
        target = region.district_count
        districts = self.clean_districts(region, prediction.districts or [])

        if districts:
            seats = seats_from_districts(districts)
            if sum(s.seats for s in seats) != target:
                logger.info(
                    "%s: %d districts counted for %d seats; rescaling",
                    region.name, sum(s.seats for s in seats), target,
                )
                seats = rescale_seats(seats, target)
        else:
            declared = merge_seat_counts(
                SeatCount(party=self.normalizer(s.party), seats=s.seats) for s in prediction.seat_prediction
            )
            try:
                seats = rescale_seats(declared, target)
            except ValueError as e:
                raise RejectedOutputError(f"{region.name}: no usable seat data") from e

        seats = sorted(seats, key=lambda s: s.seats, reverse=True)
        return prediction.model_copy(update={
            "region_id": region.id,
            "region_name": region.name,
            "seat_prediction": seats,
            "leading_party": leading_party(seats),
            "districts": districts or None,
        })
