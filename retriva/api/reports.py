from fastapi import APIRouter, File, Header, HTTPException, UploadFile
from google.api_core import exceptions as gexc
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional

from retriva.api.deps import cascade_for, orchestrator_for
from retriva.domain.report_schema import ReportStatus
from retriva.models.reports import (
    CandidateMatch,
    ComparisonResult,
    DescriptionAnalysis,
    ImageSafetyResult,
    ItemReport,
    ReportValidation,
    SearchIntent,
    VisualDetails,
)
from retriva.scripts.logging_config import get_logger
from retriva.services import image_payload, report_assistant, report_store
from retriva.services.errors import InvalidTransition, ReportNotFound

logger = get_logger("reports")

router = APIRouter(prefix="/reports", tags=["reports"])


class AnalyzeRequest(BaseModel):
    title: str = ""
    description: str
    images: List[str] = []  # data URIs or https URLs, only the first is used


class ValidateRequest(BaseModel):
    report: Dict[str, Any]


class DescribeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    user_notes: str = Field("", alias="userNotes")
    visual_data: Dict[str, Any] = Field(default_factory=dict, alias="visualData")


class DescribeResponse(BaseModel):
    description: str


class SearchParseRequest(BaseModel):
    query: str


class CompareRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    report_a_id: str = Field(..., alias="reportAId")
    report_b_id: str = Field(..., alias="reportBId")


async def _read_image(file: UploadFile) -> str:
    if file.content_type not in image_payload.ALLOWED_CONTENT_TYPES:
        raise HTTPException(status_code=400, detail="unsupported_type")
    raw = await file.read()
    try:
        return image_payload.to_jpeg_data_uri(raw)
    except image_payload.InvalidImage as e:
        raise HTTPException(status_code=400, detail=str(e))


def _load(report_id: str) -> ItemReport:
    try:
        return report_store.get_report(report_id)
    except ReportNotFound:
        raise HTTPException(status_code=404, detail="not_found")


@router.post("/extract", response_model=VisualDetails)
async def extract(file: UploadFile = File(...), x_session_id: Optional[str] = Header(None),
                  x_user_id: Optional[str] = Header(None)):
    image = await _read_image(file)
    return await orchestrator_for(x_session_id, x_user_id).extract_attributes(image)


@router.post("/safety", response_model=ImageSafetyResult)
async def safety(file: UploadFile = File(...), x_session_id: Optional[str] = Header(None),
                 x_user_id: Optional[str] = Header(None)):
    image = await _read_image(file)
    return await report_assistant.check_image_safety(cascade_for(x_session_id, x_user_id), image)


@router.post("/analyze", response_model=DescriptionAnalysis)
async def analyze(req: AnalyzeRequest, x_session_id: Optional[str] = Header(None),
                  x_user_id: Optional[str] = Header(None)):
    if not req.description.strip():
        raise HTTPException(status_code=400, detail="empty_description")
    images = [u for u in req.images if image_payload.is_usable_source(u)]
    return await report_assistant.analyze_item_description(
        cascade_for(x_session_id, x_user_id), req.description, images=images, title=req.title
    )


@router.post("/validate", response_model=ReportValidation)
async def validate(req: ValidateRequest, x_session_id: Optional[str] = Header(None),
                   x_user_id: Optional[str] = Header(None)):
    return await report_assistant.validate_report_context(cascade_for(x_session_id, x_user_id), req.report)


@router.post("/describe", response_model=DescribeResponse)
async def describe(req: DescribeRequest, x_session_id: Optional[str] = Header(None),
                   x_user_id: Optional[str] = Header(None)):
    cascade = cascade_for(x_session_id, x_user_id)
    text = await report_assistant.merge_descriptions(cascade, req.user_notes, req.visual_data)
    return DescribeResponse(description=text)


@router.post("/search/parse", response_model=SearchIntent)
async def search_parse(req: SearchParseRequest, x_session_id: Optional[str] = Header(None),
                       x_user_id: Optional[str] = Header(None)):
    return await report_assistant.parse_search_query(cascade_for(x_session_id, x_user_id), req.query)


@router.get("/matches", response_model=Dict[str, List[CandidateMatch]])
async def reporter_matches(reporter_id: str, x_session_id: Optional[str] = Header(None)):
    norm = (reporter_id or "").strip()
    if not norm:
        raise HTTPException(status_code=400, detail="missing_reporter_id")
    orchestrator = orchestrator_for(x_session_id, norm)
    return await orchestrator.find_matches_for_reporter(norm, report_store.list_reports())


@router.get("/{report_id}/matches", response_model=List[CandidateMatch])
async def report_matches(report_id: str, x_session_id: Optional[str] = Header(None)):
    source = _load(report_id)
    if source.status != ReportStatus.OPEN:
        return []
    orchestrator = orchestrator_for(x_session_id, source.reporter_id)
    return await orchestrator.find_candidates(source, report_store.list_reports())


@router.post("/compare", response_model=ComparisonResult)
async def compare(req: CompareRequest, x_session_id: Optional[str] = Header(None),
                  x_user_id: Optional[str] = Header(None)):
    a = _load(req.report_a_id)
    b = _load(req.report_b_id)
    return await orchestrator_for(x_session_id, x_user_id).compare_items(a, b)


@router.post("/{report_id}/resolve", response_model=ItemReport)
def resolve(report_id: str):
    try:
        return report_store.mark_resolved(report_id)
    except ReportNotFound:
        raise HTTPException(status_code=404, detail="not_found")
    except InvalidTransition:
        raise HTTPException(status_code=409, detail="invalid_transition")
    except gexc.GoogleAPICallError as e:
        logger.error("resolve.write_failed report=%s err=%s", report_id, e)
        raise HTTPException(status_code=503, detail="write_failed")
