"""
Parsing of raw model output into typed predictions.

Steps: strip an optional ``` fence, take the first balanced JSON object/array, repair the
"+5" integer idiom, json.loads, then validate against the pydantic models. Every function
returns a ParseResult instead of raising; call unwrap() to get GenerationParseError.
"""
import json
import re
from dataclasses import dataclass
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import ValidationError

from .errors import GenerationParseError
from .models import DistrictPrediction, NationalPrediction

T = TypeVar("T")

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")
# "+5" after ':' ',' or '[' is not valid JSON
_PLUS_INT_RE = re.compile(r"([:\[,]\s*)\+(?=\d)")
_PAIRS = {"{": "}", "[": "]"}


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[str] = None
    raw: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise GenerationParseError(self.error, self.raw)
        return self.value

    @classmethod
    def success(cls, value: T, raw: str = "") -> "ParseResult[T]":
        return cls(value=value, raw=raw)

    @classmethod
    def failure(cls, error: str, raw: str = "") -> "ParseResult[T]":
        return cls(error=error, raw=raw)


def strip_code_fence(text: str) -> str:
    m = _FENCE_RE.search(text or "")
    return m.group(1) if m else (text or "")


def extract_json_block(text: str) -> Optional[str]:
    """Return the first balanced {...} or [...] substring, ignoring brackets inside strings."""
    start = None
    for i, ch in enumerate(text):
        if ch in _PAIRS:
            start = i
            break
    if start is None:
        return None

    stack = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _PAIRS:
            stack.append(_PAIRS[ch])
        elif ch in ("}", "]"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return text[start:i + 1]
    return None


def repair_json(text: str) -> str:
    return _PLUS_INT_RE.sub(r"\1", text)


def parse_json_payload(text: str) -> ParseResult[Any]:
    raw = text or ""
    block = extract_json_block(strip_code_fence(raw))
    if block is None:
        return ParseResult.failure("No JSON found in model response", raw)
    try:
        return ParseResult.success(json.loads(repair_json(block)), raw)
    except json.JSONDecodeError as e:
        return ParseResult.failure(f"Invalid JSON in model response: {e}", raw)


def parse_national_prediction(text: str) -> ParseResult[NationalPrediction]:
    payload = parse_json_payload(text)
    if not payload.ok:
        return ParseResult.failure(payload.error, payload.raw)
    data = payload.value
    if not isinstance(data, dict):
        return ParseResult.failure("Expected a JSON object for the prediction", payload.raw)
    try:
        return ParseResult.success(NationalPrediction.model_validate(data), payload.raw)
    except ValidationError as e:
        return ParseResult.failure(f"Prediction failed validation: {e.error_count()} errors", payload.raw)


def parse_district_list(text: str) -> ParseResult[List[DistrictPrediction]]:
    """Accept a bare array of districts or an object with a "districts" array."""
    payload = parse_json_payload(text)
    if not payload.ok:
        return ParseResult.failure(payload.error, payload.raw)
    data = payload.value
    if isinstance(data, dict):
        data = data.get("districts")
    if not isinstance(data, list):
        return ParseResult.failure("Expected a JSON array of districts", payload.raw)

    districts = []
    skipped = 0
    for item in data:
        try:
            districts.append(DistrictPrediction.model_validate(item))
        except ValidationError:
            skipped += 1
    if not districts:
        return ParseResult.failure(f"No valid districts in response ({skipped} rejected)", payload.raw)
    return ParseResult.success(districts, payload.raw)
