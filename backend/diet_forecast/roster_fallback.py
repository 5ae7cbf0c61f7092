"""
Deterministic, roster-derived predictions.

Used as the last-resort fallback when generation fails and to fill districts a generative
call did not produce. Same roster in, same prediction out.
"""
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import Candidate, DistrictPrediction, RegionPrediction, SeatCount
from .party_names import PartyNameNormalizer
from .reference_data import ReferenceData, Region, RosterCandidate
from .seat_reconciler import apportion, leading_party, seats_from_districts

logger = logging.getLogger(__name__)

INCUMBENT_POINTS = 15
FORMER_INCUMBENT_POINTS = 10
NEWCOMER_POINTS = 5
MAJOR_PARTY_BONUS = 5

UNKNOWN_CANDIDATE = "候補者未詳"
UNKNOWN_PARTY = "無所属"

Template = Tuple[str, Tuple[Tuple[str, float], ...]]

# Regional leanings used when fast-mode generation fails and there is no roster to count.
# (confidence, ((party, seat ratio), ...)), apportioned by largest remainder.
BLOCK_TEMPLATES: Dict[str, Template] = {
    "hokkaido": ("medium", (("中道改革連合", 0.45), ("自民党", 0.4), ("日本維新の会", 0.1), ("その他", 0.05))),
    "tohoku": ("medium", (("自民党", 0.5), ("中道改革連合", 0.35), ("その他", 0.15))),
    "kanto": ("medium", (("自民党", 0.45), ("中道改革連合", 0.3), ("日本維新の会", 0.1), ("公明党", 0.1), ("その他", 0.05))),
    "chubu": ("high", (("自民党", 0.55), ("中道改革連合", 0.25), ("日本維新の会", 0.1), ("その他", 0.1))),
    "kinki": ("medium", (("日本維新の会", 0.4), ("自民党", 0.35), ("中道改革連合", 0.15), ("公明党", 0.1))),
    "chugoku": ("high", (("自民党", 0.6), ("中道改革連合", 0.2), ("日本維新の会", 0.1), ("その他", 0.1))),
    "shikoku": ("high", (("自民党", 0.6), ("中道改革連合", 0.2), ("日本維新の会", 0.1), ("その他", 0.1))),
    "kyushu": ("high", (("自民党", 0.55), ("中道改革連合", 0.25), ("公明党", 0.1), ("その他", 0.1))),
}
REGION_TEMPLATES: Dict[int, Template] = {
    13: ("medium", (("自民党", 0.35), ("中道改革連合", 0.3), ("日本維新の会", 0.15), ("公明党", 0.1),
                    ("共産党", 0.05), ("その他", 0.05))),
    23: ("medium", (("自民党", 0.4), ("中道改革連合", 0.25), ("国民民主党", 0.2), ("日本維新の会", 0.1),
                    ("その他", 0.05))),
    27: ("high", (("日本維新の会", 0.65), ("自民党", 0.2), ("公明党", 0.15))),
    47: ("low", (("中道改革連合", 0.35), ("自民党", 0.3), ("れいわ新選組", 0.15), ("その他", 0.2))),
}
DEFAULT_TEMPLATE: Template = ("medium", (("自民党", 0.5), ("中道改革連合", 0.3), ("その他", 0.2)))


def shares_from_points(points: Sequence[int]) -> List[int]:
    """Largest-remainder apportionment of 100 percentage points."""
    if sum(points) <= 0:
        return [0 for _ in points]
    return apportion(points, 100)


def template_seats(template: Template, district_count: int) -> List[SeatCount]:
    _, ratios = template
    counts = apportion([ratio for _, ratio in ratios], district_count)
    return [SeatCount(party=party, seats=n) for (party, _), n in zip(ratios, counts) if n > 0]


class RosterFallback:
    def __init__(self, reference: ReferenceData, normalizer: PartyNameNormalizer):
        self.reference = reference
        self.normalizer = normalizer

    def strength(self, candidate: RosterCandidate) -> int:
        if candidate.is_incumbent:
            points = INCUMBENT_POINTS
        elif candidate.is_former_incumbent:
            points = FORMER_INCUMBENT_POINTS
        else:
            points = NEWCOMER_POINTS
        if self.normalizer(candidate.party) in self.reference.major_parties:
            points += MAJOR_PARTY_BONUS
        return points

    def candidates(self, region_id: int, district_number: int) -> List[Candidate]:
        roster = self.reference.candidates_for(region_id, district_number)
        shares = shares_from_points([self.strength(c) for c in roster])
        return [
            Candidate(
                name=c.name,
                party=self.normalizer(c.party),
                is_incumbent=c.is_incumbent,
                predicted_vote_share=float(share),
            )
            for c, share in zip(roster, shares)
        ]

    def district(self, region: Region, number: int) -> DistrictPrediction:
        candidates = self.candidates(region.id, number)
        if not candidates:
            return DistrictPrediction(
                district_number=number,
                district_name=region.district_name(number),
                candidates=[Candidate(name=UNKNOWN_CANDIDATE, party=UNKNOWN_PARTY, predicted_vote_share=100.0)],
                leading_candidate=UNKNOWN_CANDIDATE,
                confidence="low",
            )

        candidates.sort(key=lambda c: c.share, reverse=True)
        return DistrictPrediction(
            district_number=number,
            district_name=region.district_name(number),
            candidates=candidates,
            leading_candidate=candidates[0].name,
            confidence="medium",
        )

    def districts(self, region: Region, numbers: Optional[Iterable[int]] = None) -> List[DistrictPrediction]:
        if numbers is None:
            numbers = range(1, region.district_count + 1)
        return [self.district(region, n) for n in numbers]

    def fill_missing(self, region: Region, districts: List[DistrictPrediction]) -> List[DistrictPrediction]:
        """Return districts 1..district_count, using the roster for any number not present."""
        by_number = {}
        for d in districts:
            by_number.setdefault(d.district_number, d)
        missing = [n for n in range(1, region.district_count + 1) if n not in by_number]
        if missing:
            logger.info("%s: filling %d districts from roster: %s", region.name, len(missing), missing)
            for d in self.districts(region, missing):
                by_number[d.district_number] = d
        return [by_number[n] for n in sorted(by_number) if 1 <= n <= region.district_count]

    def region_prediction(self, region: Region) -> RegionPrediction:
        districts = self.districts(region)
        seats = seats_from_districts(districts)
        return RegionPrediction(
            region_id=region.id,
            region_name=region.name,
            leading_party=leading_party(seats),
            confidence="low",
            seat_prediction=seats,
            districts=districts,
        )

    def template_prediction(self, region: Region) -> RegionPrediction:
        template = REGION_TEMPLATES.get(region.id) or BLOCK_TEMPLATES.get(region.block) or DEFAULT_TEMPLATE
        seats = template_seats(template, region.district_count)
        return RegionPrediction(
            region_id=region.id,
            region_name=region.name,
            leading_party=leading_party(seats),
            confidence=template[0],
            seat_prediction=seats,
        )

    def fast_prediction(self, region: Region) -> RegionPrediction:
        if self.reference.has_roster(region.id):
            return self.region_prediction(region)
        return self.template_prediction(region)
