"""Coerce loosely formatted model output into strict data contracts.

Models wrap JSON in prose or markdown fences, answer confidences as "85%",
0.85 or "85", and omit fields. Everything here is total: malformed input
yields an empty object or a default, never an exception.
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional, Union
import json
import math
import numbers
import re

from retriva.domain.report_schema import CONDITIONS, coerce_category
from retriva.models.reports import ComparisonResult, MatchCandidate, VisualDetails
from retriva.scripts.logging_config import get_logger

logger = get_logger("json_contract")

_FENCE_JSON_RE = re.compile(r"```json", re.IGNORECASE)

COMPARISON_DEFAULT_CONFIDENCE = 50
CANDIDATE_DEFAULT_CONFIDENCE = 0
PINNED_CONFIDENCE = 99
PINNED_EXPLANATION = "Title and description are virtually identical; treated as the same item."


def clean_json(text: str) -> str:
    if not text:
        return "{}"
    cleaned = _FENCE_JSON_RE.sub("", text).replace("```", "").strip()
    first_brace = cleaned.find("{")
    first_bracket = cleaned.find("[")
    start = end = -1
    if first_brace != -1 and (first_bracket == -1 or first_brace < first_bracket):
        start = first_brace
        end = cleaned.rfind("}")
    elif first_bracket != -1:
        start = first_bracket
        end = cleaned.rfind("]")
    if start != -1 and end > start:
        cleaned = cleaned[start:end + 1]
    return cleaned


def parse_json(raw: str) -> Union[Dict[str, Any], List[Any]]:
    try:
        parsed = json.loads(clean_json(raw))
    except (TypeError, ValueError):
        logger.warning("parse_failed snippet=%r", (raw or "")[:120])
        return {}
    if isinstance(parsed, (dict, list)):
        return parsed
    return {}


def normalize_confidence(value: Any, default: int = COMPARISON_DEFAULT_CONFIDENCE) -> int:
    """Integer 0..100 from int / float / "85" / "85%" / fraction input.

    Floats and numeric strings in (0, 1] are fractions; ints are already
    percentages, which keeps the function idempotent on its own output.
    """
    if value is None or isinstance(value, bool):
        return default
    explicit_percent = False
    if isinstance(value, str):
        s = value.strip()
        if s.endswith("%"):
            explicit_percent = True
            s = s[:-1].strip()
        try:
            num = float(s)
        except ValueError:
            return default
        fraction_allowed = not explicit_percent
    elif isinstance(value, numbers.Integral):
        num = float(value)
        fraction_allowed = False
    elif isinstance(value, numbers.Real):
        num = float(value)
        fraction_allowed = True
    else:
        return default
    if not math.isfinite(num):
        return default
    if fraction_allowed and 0 < num <= 1:
        num *= 100
    rounded = int(math.floor(num + 0.5))
    return max(0, min(100, rounded))


def _str_list(values: Any, limit: int = 10) -> List[str]:
    out: List[str] = []
    if not isinstance(values, list):
        return out
    for v in values:
        if isinstance(v, (str, int, float)) and not isinstance(v, bool):
            s = str(v).strip()
            if s and s not in out:
                out.append(s)
        if len(out) >= limit:
            break
    return out


def _str_field(parsed: Dict[str, Any], key: str, default: str = "") -> str:
    v = parsed.get(key)
    if isinstance(v, str) and v.strip():
        return v.strip()
    return default


def coerce_comparison(parsed: Any) -> Optional[ComparisonResult]:
    """None when the payload is not a usable comparison object."""
    if not isinstance(parsed, dict) or not parsed:
        return None
    return ComparisonResult(
        confidence=normalize_confidence(parsed.get("confidence"), COMPARISON_DEFAULT_CONFIDENCE),
        explanation=_str_field(parsed, "explanation"),
        similarities=_str_list(parsed.get("similarities")),
        differences=_str_list(parsed.get("differences")),
    )


def pinned_comparison() -> ComparisonResult:
    return ComparisonResult(
        confidence=PINNED_CONFIDENCE,
        explanation=PINNED_EXPLANATION,
        similarities=["Identical title", "Identical description"],
        differences=[],
    )


def coerce_match_candidates(parsed: Any, allowed_ids: Iterable[str]) -> Optional[List[MatchCandidate]]:
    """Entries of {matches: [...]} (or a bare list) restricted to allowed_ids.

    Returns None when there is no matches array at all, so the caller can fall back.
    """
    if isinstance(parsed, dict):
        raw_matches = parsed.get("matches")
    else:
        raw_matches = parsed
    if not isinstance(raw_matches, list):
        return None
    allowed = set(allowed_ids)
    seen: set[str] = set()
    out: List[MatchCandidate] = []
    for entry in raw_matches:
        if not isinstance(entry, dict):
            continue
        mid = entry.get("id")
        if not isinstance(mid, str) or mid not in allowed or mid in seen:
            continue
        seen.add(mid)
        reason = entry.get("reason")
        out.append(MatchCandidate(
            id=mid,
            confidence=normalize_confidence(entry.get("confidence"), CANDIDATE_DEFAULT_CONFIDENCE),
            reason=reason.strip() if isinstance(reason, str) and reason.strip() else None,
        ))
    dropped = len(raw_matches) - len(out)
    if dropped:
        logger.info("match_candidates dropped=%d kept=%d", dropped, len(out))
    return out


def coerce_visual_details(parsed: Any) -> Optional[VisualDetails]:
    if not isinstance(parsed, dict) or not parsed:
        return None
    condition = _str_field(parsed, "condition", "Good")
    if condition.capitalize() in CONDITIONS:
        condition = condition.capitalize()
    return VisualDetails(
        title=_str_field(parsed, "title", "Found Item")[:80],
        category=coerce_category(parsed.get("category")),
        tags=_str_list(parsed.get("tags"), limit=5),
        color=_str_field(parsed, "color", "Unknown"),
        brand=_str_field(parsed, "brand", "Unknown"),
        condition=condition,
        distinguishing_features=_str_list(parsed.get("distinguishingFeatures"), limit=5),
    )
