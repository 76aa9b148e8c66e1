from __future__ import annotations
from typing import List, Optional

from pydantic import ValidationError

from retriva.domain.report_schema import ReportStatus
from retriva.models.reports import ItemReport
from retriva.scripts.logging_config import get_logger
from retriva.services import chat_store  # reuse Firestore client
from retriva.services.chat_sync import now_ms
from retriva.services.errors import InvalidTransition, ReportNotFound

logger = get_logger("report_store")


def _collection():
    return chat_store.get_db().collection("reports")


def _to_report(snap) -> Optional[ItemReport]:
    try:
        return ItemReport.model_validate({**(snap.to_dict() or {}), "id": snap.id})
    except ValidationError as e:
        logger.warning("report.skip_invalid id=%s err=%s", snap.id, str(e)[:160])
        return None


def list_reports() -> List[ItemReport]:
    """Every report, newest first. A failed read is an empty list."""
    try:
        docs = list(_collection().stream())
    except Exception as e:
        logger.error("firestore.read_failed collection=reports err=%s", e)
        return []
    reports = [r for r in (_to_report(d) for d in docs) if r is not None]
    reports.sort(key=lambda r: r.created_at, reverse=True)
    return reports


def get_report(report_id: str) -> ItemReport:
    snap = _collection().document(report_id).get()
    if not snap.exists:
        raise ReportNotFound(report_id)
    report = _to_report(snap)
    if report is None:
        raise ReportNotFound(report_id)
    return report


def mark_resolved(report_id: str) -> ItemReport:
    """OPEN -> RESOLVED. Write errors propagate; resolving twice is rejected."""
    report = get_report(report_id)
    if report.status != ReportStatus.OPEN:
        raise InvalidTransition(f"report {report_id} is {report.status.value}")
    _collection().document(report_id).update({"status": ReportStatus.RESOLVED.value, "resolvedAt": now_ms()})
    logger.info("firestore.write op=update doc=reports/%s status=RESOLVED", report_id)
    return report.model_copy(update={"status": ReportStatus.RESOLVED})
