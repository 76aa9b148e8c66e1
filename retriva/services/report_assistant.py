"""Moderation and copywriting helpers around report creation and search.

All of these are advisory. When the cascade is exhausted or answers garbage
they fall back permissively so a user is never blocked because AI is down.
"""
from __future__ import annotations
from typing import Any, Dict, List
import json

from retriva.domain.report_schema import coerce_category
from retriva.models.reports import DescriptionAnalysis, ImageSafetyResult, ReportValidation, SearchIntent
from retriva.scripts.logging_config import get_logger
from retriva.services.errors import AllModelsExhausted
from retriva.services.json_contract import parse_json
from retriva.services.llm_providers import CascadeClient, LLMRequest

logger = get_logger("report_assistant")

SAFETY_PROMPT = """Safety Analysis Task.
Strict Policy:
1. NO GORE or VIOLENCE.
2. NO NUDITY or SEXUAL CONTENT.
3. NO SELFIES (Accidental faces in background are OK, but primary subject cannot be a person posing).

Analyze the image.
Return JSON: { "violationType": "GORE"|"NUDITY"|"HUMAN"|"NONE", "faceStatus": "NONE"|"ACCIDENTAL"|"PRANK", "isPrank": boolean, "reason": "short explanation" }"""

ANALYZE_PROMPT = """Analysis Task.
Item: "{title}"
Desc: "{description}"

1. Check for VIOLATIONS (Drugs, Weapons, Hate Speech).
2. Summarize content.
3. Tag attributes.

Output JSON: {{
  "isViolating": boolean,
  "violationType": string (optional),
  "violationReason": string (optional),
  "isPrank": boolean,
  "category": string,
  "summary": string,
  "tags": string[],
  "distinguishingFeatures": string[]
}}"""

VALIDATE_PROMPT = """Validation Task.
Review this report for logical consistency.
Data: {data}

Is this a valid item report?
Reject if:
- Title/Description is gibberish.
- Location is impossible (e.g. "Mars").
- Content is abusive.

Output JSON: {{ "isValid": boolean, "reason": "string (only if invalid)" }}"""

MERGE_PROMPT = """Copywriting Task.
Combine User Notes and Visual Data into a helpful description for a Lost & Found post.
User Notes: "{notes}"
Visual Data: {visual}

Output: A concise, factual paragraph (max 3 sentences). Do not include "Here is the description". Just the text."""

SEARCH_PROMPT = """NLP Task.
Query: "{query}"
1. Determine intent: Is user looking for something they LOST? Or reporting something they FOUND?
2. Extract core keywords (remove stop words).

Output JSON: {{ "userStatus": "LOST"|"FOUND"|"UNKNOWN", "refinedQuery": "string" }}"""

FACE_STATUSES = {"NONE", "ACCIDENTAL", "PRANK"}
VIOLATION_TYPES = {"GORE", "NUDITY", "HUMAN", "NONE"}
USER_STATUSES = {"LOST", "FOUND", "UNKNOWN"}


async def _ask_json(cascade: CascadeClient, request: LLMRequest, task: str) -> Dict[str, Any]:
    try:
        text = await cascade.execute(request)
    except AllModelsExhausted:
        logger.warning("%s.exhausted", task)
        return {}
    parsed = parse_json(text)
    if not isinstance(parsed, dict):
        return {}
    return parsed


def _bool(v: Any, default: bool = False) -> bool:
    return v if isinstance(v, bool) else default


def _strs(v: Any) -> List[str]:
    return [s.strip() for s in v if isinstance(s, str) and s.strip()] if isinstance(v, list) else []


async def check_image_safety(cascade: CascadeClient, image: str) -> ImageSafetyResult:
    data = await _ask_json(cascade, LLMRequest(text=SAFETY_PROMPT, images=[image]), "safety")
    if not data:
        return ImageSafetyResult(reason="Check unavailable")
    face = str(data.get("faceStatus") or "NONE").upper()
    violation = str(data.get("violationType") or "NONE").upper()
    return ImageSafetyResult(
        face_status=face if face in FACE_STATUSES else "NONE",
        is_prank=_bool(data.get("isPrank")),
        violation_type=violation if violation in VIOLATION_TYPES else "NONE",
        reason=data.get("reason") if isinstance(data.get("reason"), str) else "",
    )


async def analyze_item_description(cascade: CascadeClient, description: str, images: List[str] | None = None,
                                   title: str = "") -> DescriptionAnalysis:
    # only the first image is sent for context
    imgs = (images or [])[:1]
    data = await _ask_json(
        cascade, LLMRequest(text=ANALYZE_PROMPT.format(title=title, description=description), images=imgs), "analyze"
    )
    if not data:
        return DescriptionAnalysis(title=title, summary=description, description=description)
    violation_reason = data.get("violationReason") if isinstance(data.get("violationReason"), str) else None
    summary = data.get("summary")
    return DescriptionAnalysis(
        category=coerce_category(data.get("category")),
        title=title,
        summary=summary.strip() if isinstance(summary, str) and summary.strip() else description,
        description=description,
        tags=_strs(data.get("tags")),
        distinguishing_features=_strs(data.get("distinguishingFeatures")),
        is_prank=_bool(data.get("isPrank")),
        prank_reason=violation_reason,
        is_violating=_bool(data.get("isViolating")),
        violation_type=data.get("violationType") if isinstance(data.get("violationType"), str) else None,
        violation_reason=violation_reason,
    )


async def validate_report_context(cascade: CascadeClient, report_data: Dict[str, Any]) -> ReportValidation:
    data = await _ask_json(
        cascade,
        LLMRequest(text=VALIDATE_PROMPT.format(data=json.dumps(report_data, ensure_ascii=False, default=str))),
        "validate",
    )
    is_valid = _bool(data.get("isValid"), True)
    reason = data.get("reason") if isinstance(data.get("reason"), str) else ""
    return ReportValidation(is_valid=is_valid, reason="" if is_valid else reason)


async def merge_descriptions(cascade: CascadeClient, user_notes: str, visual_data: Dict[str, Any]) -> str:
    prompt = MERGE_PROMPT.format(notes=user_notes, visual=json.dumps(visual_data, ensure_ascii=False, default=str))
    try:
        text = await cascade.execute(LLMRequest(text=prompt))
    except AllModelsExhausted:
        logger.warning("merge.exhausted")
        return user_notes
    return text.strip() or user_notes


async def parse_search_query(cascade: CascadeClient, query: str) -> SearchIntent:
    data = await _ask_json(cascade, LLMRequest(text=SEARCH_PROMPT.format(query=query)), "search")
    status = str(data.get("userStatus") or "UNKNOWN").upper()
    refined = data.get("refinedQuery")
    return SearchIntent(
        user_status=status if status in USER_STATUSES else "UNKNOWN",
        refined_query=refined.strip() if isinstance(refined, str) and refined.strip() else query,
    )
