from typing import Optional

from config import settings
from retriva.services.llm_providers import CascadeClient, CascadeRegistry
from retriva.services.match_cache import MatchCache
from retriva.services.match_orchestrator import MatchOrchestrator

# 프로세스 단위 싱글톤 (세션별 cascade, 공용 match cache)
cascades = CascadeRegistry()
match_cache = MatchCache(settings.MATCH_CACHE_DIR)


def cascade_for(session_id: Optional[str], fallback: Optional[str] = None) -> CascadeClient:
    """X-Session-ID wins, then the acting user (X-User-ID or the reporter).

    No key at all gets an unshared client.
    """
    return cascades.for_session(session_id or fallback)


def orchestrator_for(session_id: Optional[str], fallback: Optional[str] = None) -> MatchOrchestrator:
    return MatchOrchestrator(cascade_for(session_id, fallback), match_cache)
