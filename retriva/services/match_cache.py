"""Per-reporter cache of computed match maps.

An entry is reused verbatim while the signature (reporter's open report ids,
newest report id, total report count) is unchanged. Entries are JSON text,
kept in memory and mirrored to disk when a directory is configured. Any read
problem is a miss; write problems are logged and ignored.
"""
from __future__ import annotations
from pathlib import Path
from typing import Dict, List, Optional, Sequence
import hashlib
import json

from pydantic import ValidationError

from retriva.models.reports import ItemReport, MatchCandidate
from retriva.scripts.logging_config import get_logger

logger = get_logger("match_cache")

MatchMap = Dict[str, List[MatchCandidate]]


def compute_signature(reporter_open: Sequence[ItemReport], all_reports: Sequence[ItemReport]) -> str:
    newest = max(all_reports, key=lambda r: r.created_at, default=None)
    raw = json.dumps({
        "open": sorted(r.id for r in reporter_open),
        "newest": newest.id if newest else None,
        "total": len(all_reports),
    }, sort_keys=True)
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


class MatchCache:
    def __init__(self, directory: Optional[str | Path] = None):
        self._dir = Path(directory) if directory else None
        self._memory: Dict[str, str] = {}

    def _path(self, reporter_id: str) -> Optional[Path]:
        if self._dir is None:
            return None
        return self._dir / (hashlib.sha1(reporter_id.encode("utf-8")).hexdigest()[:24] + ".json")

    def _read_raw(self, reporter_id: str) -> Optional[str]:
        if reporter_id in self._memory:
            return self._memory[reporter_id]
        path = self._path(reporter_id)
        if path is None or not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("cache.read_failed reporter=%s err=%s", reporter_id, e)
            return None

    def get(self, reporter_id: str, signature: str) -> Optional[MatchMap]:
        raw = self._read_raw(reporter_id)
        if raw is None:
            return None
        try:
            doc = json.loads(raw)
            if doc.get("signature") != signature:
                return None
            return {
                source_id: [MatchCandidate.model_validate(m) for m in entries]
                for source_id, entries in doc["matches"].items()
            }
        except (ValueError, KeyError, TypeError, AttributeError, ValidationError) as e:
            logger.warning("cache.corrupt reporter=%s err=%s", reporter_id, e)
            return None

    def put(self, reporter_id: str, signature: str, matches: MatchMap) -> None:
        raw = json.dumps({
            "signature": signature,
            "matches": {
                sid: [m.model_dump(by_alias=True) for m in entries]
                for sid, entries in matches.items()
            },
        }, ensure_ascii=False)
        self._memory[reporter_id] = raw
        path = self._path(reporter_id)
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(raw, encoding="utf-8")
        except OSError as e:
            logger.warning("cache.write_failed reporter=%s err=%s", reporter_id, e)

    def clear(self, reporter_id: str) -> None:
        self._memory.pop(reporter_id, None)
        path = self._path(reporter_id)
        if path is None:
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("cache.clear_failed reporter=%s err=%s", reporter_id, e)
