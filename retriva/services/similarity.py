"""Deterministic local scoring between two item reports.

Used when the model cascade is unavailable, and as the near-duplicate guard
in front of AI comparisons. No I/O.
"""
from __future__ import annotations
from typing import Iterable, List, Optional, Set
from datetime import date, datetime
import re

from retriva.models.reports import CandidateMatch, ComparisonResult, ItemReport

_PUNCT_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")

MIN_TOKEN_LEN = 4  # tokens of length <= 3 are dropped
KEYWORD_BASE = 40
KEYWORD_STEP = 15
LOCATION_BONUS = 20
FALLBACK_REASON = "Keyword Fallback"

# local_comparison weights
CMP_CATEGORY = 30
CMP_TITLE_STEP = 15
CMP_TITLE_MAX = 40
CMP_LOCATION = 10

DATE_FORMATS = ["%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%d/%m/%Y", "%d.%m.%Y", "%b %d, %Y", "%B %d, %Y"]


def clean(text: str) -> str:
    return _PUNCT_RE.sub("", (text or "").lower()).strip()


def words(text: str) -> List[str]:
    cleaned = clean(text)
    return [w for w in _WS_RE.split(cleaned) if w]


def tokenize(text: str) -> Set[str]:
    return {w for w in words(text) if len(w) >= MIN_TOKEN_LEN}


def _keyword_tokens(report: ItemReport) -> Set[str]:
    return tokenize(f"{report.title} {' '.join(report.tags)}")


def location_overlap(a: str, b: str) -> bool:
    la, lb = clean(a), clean(b)
    # empty locations carry no signal
    if not la or not lb:
        return False
    return la in lb or lb in la


def score(a: ItemReport, b: ItemReport) -> int:
    if a.id == b.id or a.type == b.type:
        return 0
    # strict category gate: a phone never matches a bottle
    if a.category != b.category:
        return 0
    total = 0
    shared = _keyword_tokens(a) & _keyword_tokens(b)
    if shared:
        total += KEYWORD_BASE + KEYWORD_STEP * len(shared)
    if location_overlap(a.location, b.location):
        total += LOCATION_BONUS
    return max(0, min(100, total))


def jaccard(a: str, b: str) -> float:
    sa, sb = set(words(a)), set(words(b))
    # blank text is never evidence of sameness
    if not sa or not sb:
        return 0.0
    return len(sa & sb) / len(sa | sb)


def is_near_duplicate(a: ItemReport, b: ItemReport, threshold: float = 0.9) -> bool:
    return (jaccard(a.title, b.title) >= threshold
            and jaccard(a.description, b.description) >= threshold)


def parse_loose_date(raw: str) -> Optional[date]:
    s = (raw or "").strip()
    if not s:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(s).date()
    except ValueError:
        return None


def _temporal_points(a: ItemReport, b: ItemReport) -> tuple[int, Optional[int]]:
    da, db = parse_loose_date(a.date), parse_loose_date(b.date)
    if not da or not db:
        return 0, None
    gap = abs((da - db).days)
    if gap == 0:
        return 20, gap
    if gap <= 3:
        return 15, gap
    if gap <= 7:
        return 5, gap
    return 0, gap


def local_comparison(a: ItemReport, b: ItemReport) -> ComparisonResult:
    """Rough comparison used when no model answered."""
    similarities: List[str] = []
    differences: List[str] = []
    total = 0

    if a.category == b.category:
        total += CMP_CATEGORY
        similarities.append(f"Same category ({a.category.value})")
    else:
        differences.append(f"Different categories ({a.category.value} vs {b.category.value})")

    shared = sorted(tokenize(a.title) & tokenize(b.title))
    if shared:
        total += min(CMP_TITLE_MAX, CMP_TITLE_STEP * len(shared))
        similarities.append("Shared title keywords: " + ", ".join(shared))
    else:
        differences.append("No shared title keywords")

    points, gap = _temporal_points(a, b)
    total += points
    if gap is not None:
        if points:
            similarities.append(f"Reported {gap} day(s) apart")
        else:
            differences.append(f"Reported {gap} days apart")

    if location_overlap(a.location, b.location):
        total += CMP_LOCATION
        similarities.append("Overlapping location")

    return ComparisonResult(
        confidence=max(0, min(100, total)),
        explanation="Estimated locally from category, title keywords and dates; AI comparison was unavailable.",
        similarities=similarities,
        differences=differences,
        is_estimate=True,
    )


def fallback_matches(source: ItemReport, candidates: Iterable[ItemReport], min_score: int = 40) -> List[CandidateMatch]:
    """Heuristic scores for every candidate, keeping those strictly above min_score (candidate order)."""
    out: List[CandidateMatch] = []
    for c in candidates:
        s = score(source, c)
        if s > min_score:
            out.append(CandidateMatch(report=c, confidence=s, reason=FALLBACK_REASON, is_offline=True))
    return out
