"""
Static reference data: regions (prefectures) with authoritative district counts, parties with
aliases and colors, the "major party" list, and the candidate roster.

Loaded once at startup by load_reference_data() and passed to every component that needs it.
To swap the roster, point DIET_FORECAST_CANDIDATES_PATH at a JSON file with the same shape as
data/candidates.json.
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
REFERENCE_PATH = DATA_DIR / "reference.json"
CANDIDATES_PATH = DATA_DIR / "candidates.json"

UNKNOWN_PARTY_COLOR = "#808080"

STATUS_INCUMBENT = "前職"
STATUS_FORMER = "元職"
STATUS_NEWCOMER = "新人"


@dataclass(frozen=True)
class Region:
    id: int
    name: str
    district_count: int
    block: str = ""

    def district_name(self, number: int) -> str:
        return f"{self.name}{number}区"


@dataclass(frozen=True)
class Party:
    name: str
    short_name: str
    color: str
    aliases: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RosterCandidate:
    name: str
    party: str
    status: str = STATUS_NEWCOMER

    @property
    def is_incumbent(self) -> bool:
        return self.status == STATUS_INCUMBENT

    @property
    def is_former_incumbent(self) -> bool:
        return self.status == STATUS_FORMER


@dataclass(frozen=True)
class ReferenceData:
    regions: Tuple[Region, ...]
    parties: Tuple[Party, ...]
    major_parties: FrozenSet[str] = frozenset()
    major_region_ids: Tuple[int, ...] = ()
    roster: Mapping[int, Mapping[int, Tuple[RosterCandidate, ...]]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    election_name: str = ""
    election_date: str = ""
    total_seats: int = 465

    def __post_init__(self):
        canonical = {p.name for p in self.parties}
        for party in self.parties:
            for alias in party.aliases:
                # An alias equal to another canonical name would make normalization non-idempotent
                if alias in canonical:
                    raise ValueError(f"Alias {alias!r} of {party.name!r} is itself a canonical party name")
        ids = [r.id for r in self.regions]
        if len(ids) != len(set(ids)):
            raise ValueError("Duplicate region ids in reference data")

    @property
    def alias_table(self) -> Tuple[Tuple[str, str], ...]:
        """(alias, canonical) pairs in file order; the order decides substring matches."""
        return tuple((alias, p.name) for p in self.parties for alias in p.aliases)

    @property
    def party_names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.parties)

    def find_region(self, region_id: Optional[int]) -> Optional[Region]:
        if region_id is None:
            return None
        for r in self.regions:
            if r.id == region_id:
                return r
        return None

    def region(self, region_id: int) -> Region:
        r = self.find_region(region_id)
        if r is None:
            raise ValueError(f"Unknown region id: {region_id}")
        return r

    def candidates_for(self, region_id: int, district_number: int) -> Tuple[RosterCandidate, ...]:
        return self.roster.get(region_id, {}).get(district_number, ())

    def has_roster(self, region_id: int) -> bool:
        return bool(self.roster.get(region_id))

    def party_color(self, name: str) -> str:
        for p in self.parties:
            if p.name == name:
                return p.color
        return UNKNOWN_PARTY_COLOR

    @property
    def major_regions(self) -> List[Region]:
        return [r for r in self.regions if r.id in self.major_region_ids]


def _read_json(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _build_roster(data: Dict[str, Any]) -> Mapping[int, Mapping[int, Tuple[RosterCandidate, ...]]]:
    roster: Dict[int, Mapping[int, Tuple[RosterCandidate, ...]]] = {}
    for pref in data.get("prefectures") or []:
        districts: Dict[int, Tuple[RosterCandidate, ...]] = {}
        for d in pref.get("districts") or []:
            try:
                number = int(d.get("number"))
            except (TypeError, ValueError):
                logger.warning("Skipping roster district without a number in region %s", pref.get("id"))
                continue
            districts[number] = tuple(
                RosterCandidate(
                    name=(c.get("name") or "").strip(),
                    party=(c.get("party") or "").strip(),
                    status=(c.get("status") or STATUS_NEWCOMER).strip(),
                )
                for c in d.get("candidates") or []
                if c.get("name")
            )
        roster[int(pref["id"])] = MappingProxyType(districts)
    return MappingProxyType(roster)


def load_reference_data(
    reference_path: Optional[Path] = None,
    candidates_path: Optional[Path] = None,
) -> ReferenceData:
    """Read region/party tables and the candidate roster. A missing roster file yields an empty roster."""
    ref = _read_json(reference_path or REFERENCE_PATH)
    election = ref.get("election") or {}

    regions = tuple(
        Region(id=int(r["id"]), name=r["name"], district_count=int(r["districts"]), block=r.get("block", ""))
        for r in ref.get("regions") or []
    )
    parties = tuple(
        Party(
            name=p["name"],
            short_name=p.get("shortName") or p["name"],
            color=p.get("color") or UNKNOWN_PARTY_COLOR,
            aliases=tuple(p.get("aliases") or ()),
        )
        for p in ref.get("parties") or []
    )

    roster_file = candidates_path or CANDIDATES_PATH
    if roster_file.exists():
        roster = _build_roster(_read_json(roster_file))
    else:
        logger.warning("Candidate roster not found at %s; roster fallback will use placeholders", roster_file)
        roster = MappingProxyType({})

    data = ReferenceData(
        regions=regions,
        parties=parties,
        major_parties=frozenset(ref.get("majorParties") or ()),
        major_region_ids=tuple(ref.get("majorRegionIds") or ()),
        roster=roster,
        election_name=election.get("name", ""),
        election_date=election.get("date", ""),
        total_seats=int(election.get("totalSeats") or 465),
    )
    logger.info(
        "Reference data loaded: %d regions, %d districts, %d parties, roster for %d regions",
        len(regions), sum(r.district_count for r in regions), len(parties), len(roster),
    )
    return data
