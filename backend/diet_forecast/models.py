"""
Prediction data model. Field names are snake_case in Python and camelCase on the wire
(cache records, model output, API responses).
"""
from datetime import datetime, timezone
from typing import Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Confidence = Literal["high", "medium", "low"]
CONFIDENCE_LEVELS = ("high", "medium", "low")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _coerce_number(value: Any) -> Any:
    """Accept '35%', ' 35 ' and similar strings the models like to emit."""
    if isinstance(value, str):
        cleaned = value.replace("%", "").replace("+", "").strip()
        if not cleaned:
            return None
        return cleaned
    return value


def _coerce_confidence(value: Any) -> str:
    text = str(value or "").strip().strip("[]").lower()
    # Template echoes such as "high/medium/low" fall through to medium
    return text if text in CONFIDENCE_LEVELS else "medium"


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class Candidate(WireModel):
    name: str
    party: str = ""
    is_incumbent: bool = False
    predicted_vote_share: Optional[float] = None

    @field_validator("predicted_vote_share", mode="before")
    @classmethod
    def _share(cls, v):
        return _coerce_number(v)

    @field_validator("name", "party", mode="before")
    @classmethod
    def _text(cls, v):
        return "" if v is None else str(v).strip()

    @field_validator("is_incumbent", mode="before")
    @classmethod
    def _incumbent(cls, v):
        if isinstance(v, str):
            return v.strip().lower() in ("true", "yes", "1", "前職")
        return bool(v)

    @property
    def share(self) -> float:
        return self.predicted_vote_share or 0.0


class DistrictPrediction(WireModel):
    district_number: int
    district_name: str = ""
    candidates: List[Candidate] = Field(default_factory=list)
    leading_candidate: str = ""
    confidence: Confidence = "medium"

    @field_validator("district_number", mode="before")
    @classmethod
    def _number(cls, v):
        if isinstance(v, str):
            return v.replace("区", "").strip()
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return _coerce_confidence(v)

    @field_validator("leading_candidate", "district_name", mode="before")
    @classmethod
    def _text(cls, v):
        return "" if v is None else str(v)


class SeatCount(WireModel):
    party: str
    seats: int = 0

    @field_validator("seats", mode="before")
    @classmethod
    def _seats(cls, v):
        v = _coerce_number(v)
        if v is None:
            return 0
        return int(round(float(v)))


class RegionPrediction(WireModel):
    region_id: int
    region_name: str = ""
    leading_party: str = ""
    confidence: Confidence = "medium"
    seat_prediction: List[SeatCount] = Field(default_factory=list)
    districts: Optional[List[DistrictPrediction]] = None
    commentary: Optional[str] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return _coerce_confidence(v)

    @property
    def seat_total(self) -> int:
        return sum(s.seats for s in self.seat_prediction)


class PartySeatRange(WireModel):
    party: str
    seat_range: Tuple[int, int]
    change: int = 0

    @field_validator("seat_range", mode="before")
    @classmethod
    def _range(cls, v):
        if isinstance(v, (int, float)):
            return (int(v), int(v))
        if isinstance(v, (list, tuple)) and len(v) == 2:
            low, high = (int(round(float(_coerce_number(x) or 0))) for x in v)
            return (min(low, high), max(low, high))
        return v

    @field_validator("change", mode="before")
    @classmethod
    def _change(cls, v):
        v = _coerce_number(v)
        if v is None:
            return 0
        return int(round(float(v)))


class NationalSummary(WireModel):
    total_seats: int = 465
    predictions: List[PartySeatRange] = Field(default_factory=list)


class NationalPrediction(WireModel):
    # "" marks a placeholder/fixture that must never be persisted or aggregated
    timestamp: str = ""
    national_summary: NationalSummary = Field(default_factory=NationalSummary)
    region_predictions: List[RegionPrediction] = Field(default_factory=list)
    key_battlegrounds: List[str] = Field(default_factory=list)

    @field_validator("key_battlegrounds", mode="before")
    @classmethod
    def _battlegrounds(cls, v):
        if not isinstance(v, list):
            return []
        return [str(x) for x in v if x]

    @property
    def is_placeholder(self) -> bool:
        return self.timestamp == ""

    def region(self, region_id: int) -> Optional[RegionPrediction]:
        for r in self.region_predictions:
            if r.region_id == region_id:
                return r
        return None


class PredictionRequest(WireModel):
    region_id: Optional[int] = None
    force_refresh: bool = False
    fast_mode: bool = False
