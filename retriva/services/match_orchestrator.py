"""AI-backed matching with a deterministic local fallback.

Every operation has the same shape: pre-filter -> model cascade with a JSON
prompt -> coerce -> local heuristic when the cascade or the contract fails ->
sort. Callers always get a usable result; AI errors never escape.
"""
from __future__ import annotations
from typing import Dict, List, Optional, Sequence
import json

from config import settings
from retriva.domain.report_schema import PRIMARY_CATEGORIES, ItemCategory, ReportStatus
from retriva.models.reports import CandidateMatch, ComparisonResult, ItemReport, MatchCandidate, VisualDetails
from retriva.scripts.logging_config import get_logger
from retriva.services import json_contract, similarity
from retriva.services.errors import AllModelsExhausted
from retriva.services.llm_providers import CascadeClient, LLMRequest
from retriva.services.match_cache import MatchCache, compute_signature

logger = get_logger("match")

EXTRACT_PROMPT = """Expert Appraiser Task.
Analyze the image of the lost/found item.
Extract JSON:
- title: Short descriptive title (e.g. "Blue Hydroflask Water Bottle").
- category: One of [{categories}].
- tags: Array of 3-5 visual keywords.
- color: Dominant color name.
- brand: Visible brand or "Unknown".
- condition: "New", "Good", "Used", "Damaged".
- distinguishingFeatures: Array of unique identifiers (e.g. "Sticker on laptop", "Crack on screen").
Output only the JSON object."""

MATCH_SYSTEM_PROMPT = """You are a Forensic Recovery Agent matching Lost & Found items.
TARGET ITEM: The item we are looking for.
CANDIDATES: Potential matches.

RULES:
1. Semantic Matching: "AirPods" = "Earbuds", "MacBook" = "Laptop".
2. Visual Constraints: If target is "Red", candidate "Blue" is 0 confidence.
3. Time/Loc: Allow fuzzy matches (e.g. "Library" vs "Student Center" might be close).

OUTPUT: JSON Object with "matches" array.
Format: { "matches": [ { "id": "string", "confidence": number (0-100), "reason": "string" } ] }
Only include items with confidence > 40."""

COMPARE_PROMPT = """Comparison Task.
Are Item A and Item B the same physical object?

Item A: {a}
Item B: {b}

Output JSON: {{
   "confidence": number (0-100),
   "explanation": "Concise reasoning",
   "similarities": ["point 1", "point 2"],
   "differences": ["point 1", "point 2"]
}}"""


def _describe(r: ItemReport) -> str:
    tags = ", ".join(r.tags) if r.tags else "None"
    return f"{r.title}, {r.description}, {r.category.value}, Tags: {tags}, Location: {r.location}, When: {r.date} {r.time}".strip()


def _minify(r: ItemReport) -> Dict[str, str]:
    return {"id": r.id, "t": r.title, "d": r.description, "c": r.category.value,
            "l": r.location, "tm": f"{r.date} {r.time}".strip()}


class MatchOrchestrator:
    def __init__(self, cascade: CascadeClient, cache: Optional[MatchCache] = None):
        self.cascade = cascade
        self.cache = cache

    # ---- extract ----
    async def extract_attributes(self, image: str) -> VisualDetails:
        """Describe a photo. No meaningful offline answer exists, so failure returns empty defaults."""
        prompt = EXTRACT_PROMPT.format(categories=", ".join(PRIMARY_CATEGORIES))
        try:
            text = await self.cascade.execute(LLMRequest(text=prompt, images=[image]))
        except AllModelsExhausted as e:
            logger.warning("extract.degraded reason=exhausted errors=%d", len(e.errors))
            return VisualDetails(is_offline=True)
        details = json_contract.coerce_visual_details(json_contract.parse_json(text))
        if details is None:
            logger.warning("extract.degraded reason=malformed")
            return VisualDetails(is_offline=True)
        return details

    # ---- find ----
    def candidate_pool(self, source: ItemReport, all_reports: Sequence[ItemReport]) -> List[ItemReport]:
        target_type = source.type.opposite
        pool = [
            r for r in all_reports
            if r.status == ReportStatus.OPEN
            and r.type == target_type
            and r.id != source.id
            and not (source.reporter_id and r.reporter_id == source.reporter_id)
        ]
        if source.category != ItemCategory.OTHER:
            narrowed = [r for r in pool if r.category == source.category]
            if narrowed:
                pool = narrowed
        cap = settings.MATCH_MAX_CANDIDATES
        if len(pool) > cap:
            pool = pool[:cap]
        return pool

    async def find_candidates(self, source: ItemReport, all_reports: Sequence[ItemReport]) -> List[CandidateMatch]:
        candidates = self.candidate_pool(source, all_reports)
        if not candidates:
            return []
        order = {c.id: i for i, c in enumerate(candidates)}
        by_id = {c.id: c for c in candidates}

        results: Optional[List[CandidateMatch]] = None
        prompt = (
            f"CANDIDATES JSON: {json.dumps([_minify(c) for c in candidates], ensure_ascii=False)}\n\n"
            f"TARGET ITEM DATA: ITEM: {source.title}. DESC: {source.description}. CAT: {source.category.value}. "
            f"LOC: {source.location}. TIME: {source.date} {source.time}"
        )
        try:
            text = await self.cascade.execute(LLMRequest(text=prompt, system=MATCH_SYSTEM_PROMPT))
            parsed = json_contract.coerce_match_candidates(json_contract.parse_json(text), by_id.keys())
            if parsed is None:
                logger.warning("find.malformed source=%s", source.id)
            else:
                results = [
                    CandidateMatch(report=by_id[m.id], confidence=m.confidence, reason=m.reason, is_offline=False)
                    for m in parsed
                ]
        except AllModelsExhausted as e:
            logger.warning("find.exhausted source=%s errors=%d", source.id, len(e.errors))

        if results is None:
            results = similarity.fallback_matches(source, candidates, settings.MATCH_FALLBACK_MIN_SCORE)
        results.sort(key=lambda m: (-m.confidence, order[m.report.id]))
        logger.info("find.done source=%s pool=%d results=%d offline=%s",
                    source.id, len(candidates), len(results), bool(results and results[0].is_offline))
        return results

    # ---- compare ----
    async def compare_items(self, a: ItemReport, b: ItemReport) -> ComparisonResult:
        if similarity.is_near_duplicate(a, b, settings.COMPARE_DUPLICATE_THRESHOLD):
            logger.info("compare.pinned a=%s b=%s", a.id, b.id)
            return json_contract.pinned_comparison()
        images = [u for u in (a.primary_image, b.primary_image) if u]
        request = LLMRequest(text=COMPARE_PROMPT.format(a=_describe(a), b=_describe(b)), images=images)
        try:
            text = await self.cascade.execute(request)
        except AllModelsExhausted:
            logger.warning("compare.exhausted a=%s b=%s", a.id, b.id)
            return similarity.local_comparison(a, b)
        result = json_contract.coerce_comparison(json_contract.parse_json(text))
        if result is None:
            logger.warning("compare.malformed a=%s b=%s", a.id, b.id)
            return similarity.local_comparison(a, b)
        return result

    # ---- per-reporter match map (cached) ----
    async def find_matches_for_reporter(self, reporter_id: str, all_reports: Sequence[ItemReport]) -> Dict[str, List[CandidateMatch]]:
        own_open = [r for r in all_reports if r.reporter_id == reporter_id and r.status == ReportStatus.OPEN]
        if not own_open:
            if self.cache is not None:
                self.cache.clear(reporter_id)
            return {}
        signature = compute_signature(own_open, all_reports)
        if self.cache is not None:
            cached = self.cache.get(reporter_id, signature)
            if cached is not None:
                logger.info("match_map.cache_hit reporter=%s sources=%d", reporter_id, len(cached))
                return self._rehydrate(cached, own_open, all_reports)

        out: Dict[str, List[CandidateMatch]] = {}
        for source in own_open:
            out[source.id] = await self.find_candidates(source, all_reports)
        if self.cache is not None:
            self.cache.put(reporter_id, signature, {
                sid: [MatchCandidate(id=m.report.id, confidence=m.confidence, reason=m.reason) for m in matches]
                for sid, matches in out.items()
            })
        return out

    def _rehydrate(self, cached: Dict[str, List[MatchCandidate]], own_open: Sequence[ItemReport],
                   all_reports: Sequence[ItemReport]) -> Dict[str, List[CandidateMatch]]:
        out: Dict[str, List[CandidateMatch]] = {}
        for source in own_open:
            pool = {c.id: c for c in self.candidate_pool(source, all_reports)}
            out[source.id] = [
                CandidateMatch(report=pool[m.id], confidence=m.confidence, reason=m.reason,
                               is_offline=m.reason == similarity.FALLBACK_REASON)
                for m in cached.get(source.id, []) if m.id in pool
            ]
        return out
