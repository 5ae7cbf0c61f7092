"""
Prediction generation: news + roster -> reconciled NationalPrediction envelope.

Region scope (normal mode):
    main call -> district data?
        large region with under half its districts -> batched district generation
        mostly uniform vote shares                 -> retry-governed regeneration
        no districts                               -> retry-governed generation
    -> roster merge / fill -> seat reconciliation -> commentary

Region scope (fast mode): one call for declared seats only, reconciled by rescaling.

Any service or output failure ends in a deterministic roster-derived prediction; the
caller always gets a result with a real timestamp.
"""
import asyncio
import logging
import re
from typing import Dict, List, Optional

from . import prompts
from .aggregator import normalize_region, notable_districts, summarize_seats
from .config import PipelineLimits
from .errors import ConfigurationError, ExternalServiceError, ForecastError, GenerationParseError, RejectedOutputError
from .llm_client import GenerationClient
from .models import (
    DistrictPrediction,
    NationalPrediction,
    NationalSummary,
    RegionPrediction,
    now_iso,
)
from .party_names import PartyNameNormalizer
from .reference_data import ReferenceData, Region
from .response_parser import parse_district_list, parse_national_prediction
from .retry_policy import RetryPolicy
from .roster_fallback import RosterFallback
from .seat_reconciler import SeatReconciler, is_mostly_uniform, normalize_vote_shares

logger = logging.getLogger(__name__)

MAIN_TEMPERATURE = 0.7
MAIN_MAX_TOKENS = 8192
MAIN_CONTEXT = 16384
DISTRICT_MAX_TOKENS = 4096
DISTRICT_CONTEXT = 8192
COMMENTARY_MAX_TOKENS = 256
COMMENTARY_CONTEXT = 4096

_QUOTE_PREFIX_RE = re.compile(r"^[「『\"']+")
_QUOTE_SUFFIX_RE = re.compile(r"[」』\"']+$")
_NEWLINES_RE = re.compile(r"\n+")


def clean_commentary(text: str, max_chars: int = 200) -> str:
    text = (text or "").strip()
    text = _QUOTE_PREFIX_RE.sub("", text)
    text = _QUOTE_SUFFIX_RE.sub("", text)
    text = _NEWLINES_RE.sub(" ", text).strip()
    if len(text) > max_chars:
        text = text[: max_chars - 3] + "..."
    return text


def batch_numbers(district_count: int, batch_size: int) -> List[List[int]]:
    numbers = list(range(1, district_count + 1))
    return [numbers[i:i + batch_size] for i in range(0, len(numbers), batch_size)]


class PredictionGenerator:
    def __init__(
        self,
        llm: GenerationClient,
        reference: ReferenceData,
        normalizer: PartyNameNormalizer,
        reconciler: Optional[SeatReconciler] = None,
        fallback: Optional[RosterFallback] = None,
        limits: Optional[PipelineLimits] = None,
    ):
        self.llm = llm
        self.reference = reference
        self.normalizer = normalizer
        self.reconciler = reconciler or SeatReconciler(normalizer)
        self.fallback = fallback or RosterFallback(reference, normalizer)
        self.limits = limits or PipelineLimits()

    def _district_policy(self) -> RetryPolicy:
        spread = self.limits.uniform_spread
        return RetryPolicy.from_limits(self.limits, accept=lambda ds: not is_mostly_uniform(ds, spread))

    async def generate(
        self,
        news_text: str,
        region: Optional[Region] = None,
        roster_text: Optional[str] = None,
        fast_mode: bool = False,
    ) -> NationalPrediction:
        if roster_text is None:
            roster_text = prompts.roster_section(self.reference, region)
        label = region.name if region else "national"
        try:
            if region is not None:
                prediction = await self._generate_region(news_text, region, roster_text, fast_mode)
            else:
                prediction = await self._generate_national(news_text, roster_text, fast_mode)
        except ConfigurationError:
            raise
        except ForecastError as e:
            logger.warning("Generation failed for %s, using roster fallback: %s", label, e)
            prediction = self.fallback_prediction(region, fast_mode)
        logger.info("Prediction ready for %s (%d regions)", label, len(prediction.region_predictions))
        return prediction

    async def _main_call(self, prompt: str) -> NationalPrediction:
        raw = await self.llm.generate(
            prompt, temperature=MAIN_TEMPERATURE, max_tokens=MAIN_MAX_TOKENS, context_window=MAIN_CONTEXT
        )
        return parse_national_prediction(raw).unwrap()

    def _normalize_summary(self, summary: NationalSummary) -> NationalSummary:
        seen = set()
        ranges = []
        for p in summary.predictions:
            party = self.normalizer(p.party)
            if party in seen:
                continue
            seen.add(party)
            ranges.append(p.model_copy(update={"party": party}))
        return NationalSummary(total_seats=self.reference.total_seats, predictions=ranges)

    # Region scope

    async def _generate_region(
        self, news_text: str, region: Region, roster_text: str, fast_mode: bool
    ) -> NationalPrediction:
        budget = self.limits.news_budget_main
        if fast_mode:
            prompt = prompts.fast_region_prompt(self.reference, news_text, roster_text, region, budget)
        else:
            prompt = prompts.prediction_prompt(self.reference, news_text, roster_text, region, budget)
        parsed = await self._main_call(prompt)

        candidate = parsed.region(region.id)
        if candidate is None and len(parsed.region_predictions) == 1:
            candidate = parsed.region_predictions[0]

        if fast_mode:
            if candidate is None:
                raise GenerationParseError(f"No prediction for {region.name} in fast-mode output")
            reconciled = self.reconciler.reconcile(candidate.model_copy(update={"districts": None}), region)
        else:
            if candidate is None:
                logger.info("%s: main output has no region entry; generating districts", region.name)
                candidate = RegionPrediction(region_id=region.id, region_name=region.name)
            districts = await self._resolve_districts(region, candidate.districts or [], news_text)
            reconciled = self.reconciler.reconcile(candidate.model_copy(update={"districts": districts}), region)
            if reconciled.districts and not reconciled.commentary:
                commentary = await self.generate_commentary(region, reconciled.districts, news_text)
                reconciled = reconciled.model_copy(update={"commentary": commentary or None})

        return NationalPrediction(
            timestamp=now_iso(),
            national_summary=self._normalize_summary(parsed.national_summary),
            region_predictions=[reconciled],
            key_battlegrounds=parsed.key_battlegrounds,
        )

    async def _resolve_districts(
        self, region: Region, districts: List[DistrictPrediction], news_text: str
    ) -> List[DistrictPrediction]:
        present = {d.district_number for d in districts if 1 <= d.district_number <= region.district_count}
        if region.district_count > self.limits.large_region_threshold and len(present) < region.district_count / 2:
            logger.info(
                "%s: district data incomplete (%d/%d), generating in batches",
                region.name, len(present), region.district_count,
            )
            districts = await self.generate_districts_in_batches(region, news_text)
        elif not districts:
            logger.info("%s: no district data, generating districts", region.name)
            districts = await self.regenerate_districts(region, news_text)
        elif is_mostly_uniform(districts, self.limits.uniform_spread):
            logger.warning("%s: vote shares too uniform, regenerating districts", region.name)
            districts = await self.regenerate_districts(region, news_text)
        return self.complete_districts(region, districts)

    def complete_districts(self, region: Region, districts: List[DistrictPrediction]) -> List[DistrictPrediction]:
        """Append roster candidates the model left out, then fill missing districts from the roster."""
        merged: Dict[int, DistrictPrediction] = {}
        for d in districts:
            if not 1 <= d.district_number <= region.district_count or d.district_number in merged:
                continue
            candidates = normalize_vote_shares(d.candidates)
            roster = self.fallback.candidates(region.id, d.district_number)
            if len(roster) > len(candidates):
                named = {c.name for c in candidates}
                extra = [c.model_copy(update={"predicted_vote_share": 0.0}) for c in roster if c.name not in named]
                if extra:
                    logger.debug("%s: merged %d roster candidates", region.district_name(d.district_number), len(extra))
                candidates = candidates + extra
            merged[d.district_number] = d.model_copy(update={"candidates": candidates})
        return self.fallback.fill_missing(region, list(merged.values()))

    async def _district_call(self, prompt: str, temperature: float) -> List[DistrictPrediction]:
        raw = await self.llm.generate(
            prompt, temperature=temperature, max_tokens=DISTRICT_MAX_TOKENS, context_window=DISTRICT_CONTEXT
        )
        return parse_district_list(raw).unwrap()

    async def regenerate_districts(self, region: Region, news_text: str) -> List[DistrictPrediction]:
        prompt = prompts.districts_prompt(self.reference, region, news_text, self.limits.news_budget_districts)
        try:
            districts = await self._district_policy().run(
                lambda temperature: self._district_call(prompt, temperature), label=region.name
            )
        except (ExternalServiceError, GenerationParseError, RejectedOutputError) as e:
            logger.warning("%s: district generation failed, using roster: %s", region.name, e)
            return self.fallback.districts(region)
        logger.info("%s: generated %d districts", region.name, len(districts))
        return districts

    async def _generate_batch(self, region: Region, numbers: List[int], news_text: str) -> List[DistrictPrediction]:
        label = f"{region.name} {numbers[0]}-{numbers[-1]}区"
        prompt = prompts.batch_prompt(self.reference, region, numbers, news_text, self.limits.news_budget_batch)
        try:
            districts = await self._district_policy().run(
                lambda temperature: self._district_call(prompt, temperature), label=label
            )
        except (ExternalServiceError, GenerationParseError, RejectedOutputError) as e:
            logger.warning("%s: batch failed: %s", label, e)
            return []
        logger.info("%s: got %d districts", label, len(districts))
        return districts

    async def generate_districts_in_batches(self, region: Region, news_text: str) -> List[DistrictPrediction]:
        batches = batch_numbers(region.district_count, self.limits.batch_size)
        semaphore = asyncio.Semaphore(self.limits.batch_concurrency)

        async def run(numbers: List[int]) -> List[DistrictPrediction]:
            async with semaphore:
                return await self._generate_batch(region, numbers, news_text)

        results = await asyncio.gather(*(run(numbers) for numbers in batches))

        merged: Dict[int, DistrictPrediction] = {}
        for districts in results:
            for d in districts:
                if 1 <= d.district_number <= region.district_count and d.district_number not in merged:
                    merged[d.district_number] = d
        logger.info("%s: batches produced %d/%d districts", region.name, len(merged), region.district_count)
        return [merged[n] for n in sorted(merged)]

    async def generate_commentary(self, region: Region, districts: List[DistrictPrediction], news_text: str) -> str:
        prompt = prompts.commentary_prompt(
            self.reference, region, districts, news_text, self.limits.news_budget_commentary
        )
        try:
            raw = await self.llm.generate(
                prompt, temperature=MAIN_TEMPERATURE, max_tokens=COMMENTARY_MAX_TOKENS,
                context_window=COMMENTARY_CONTEXT,
            )
        except ExternalServiceError as e:
            logger.warning("%s: commentary generation failed: %s", region.name, e)
            return ""
        text = clean_commentary(raw, self.limits.commentary_max_chars)
        logger.info("%s: commentary ready (%d chars)", region.name, len(text))
        return text

    # National scope

    async def _generate_national(self, news_text: str, roster_text: str, fast_mode: bool) -> NationalPrediction:
        budget = self.limits.news_budget_main
        if fast_mode:
            prompt = prompts.fast_national_prompt(self.reference, news_text, budget)
        else:
            prompt = prompts.prediction_prompt(self.reference, news_text, roster_text, None, budget)
        parsed = await self._main_call(prompt)

        summary = self._normalize_summary(parsed.national_summary)
        if not summary.predictions:
            raise RejectedOutputError("National output has no party seat ranges")

        regions = []
        seen = set()
        for candidate in parsed.region_predictions:
            region = self.reference.find_region(candidate.region_id)
            if region is None or region.id in seen:
                logger.warning("Dropping region prediction with unknown or repeated id %s", candidate.region_id)
                continue
            seen.add(region.id)
            regions.append(self._reconcile_national_region(candidate, region))

        return NationalPrediction(
            timestamp=now_iso(),
            national_summary=summary,
            region_predictions=regions,
            key_battlegrounds=parsed.key_battlegrounds,
        )

    def _reconcile_national_region(self, candidate: RegionPrediction, region: Region) -> RegionPrediction:
        if candidate.districts:
            candidate = candidate.model_copy(update={
                "districts": self.complete_districts(region, candidate.districts)
            })
        try:
            return self.reconciler.reconcile(candidate, region)
        except RejectedOutputError as e:
            logger.warning("%s: %s; using roster fallback", region.name, e)
            return self.fallback.region_prediction(region)

    # Fallback

    def fallback_prediction(self, region: Optional[Region], fast_mode: bool = False) -> NationalPrediction:
        if region is not None:
            if fast_mode:
                prediction = self.fallback.fast_prediction(region)
            else:
                prediction = self.fallback.region_prediction(region)
            return NationalPrediction(
                timestamp=now_iso(),
                national_summary=NationalSummary(total_seats=self.reference.total_seats),
                region_predictions=[self.reconciler.reconcile(prediction, region)],
                key_battlegrounds=[],
            )

        regions = [
            normalize_region(self.fallback.region_prediction(r), self.normalizer)
            for r in self.reference.major_regions
        ]
        return NationalPrediction(
            timestamp=now_iso(),
            national_summary=summarize_seats(regions, self.limits.seat_band, self.reference.total_seats),
            region_predictions=regions,
            key_battlegrounds=notable_districts(regions, self.limits.max_notable_districts),
        )
