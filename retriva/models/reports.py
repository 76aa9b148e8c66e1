from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

from retriva.domain.report_schema import ItemCategory, ReportStatus, ReportType


class CamelModel(BaseModel):
    # Firestore documents use the web client's camelCase names
    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)


class ItemReport(CamelModel):
    id: str
    type: ReportType
    status: ReportStatus = ReportStatus.OPEN
    category: ItemCategory = ItemCategory.OTHER
    title: str = ""
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    location: str = ""
    date: str = ""
    time: str = ""
    image_urls: List[str] = Field(default_factory=list, alias="imageUrls")
    reporter_id: str = Field("", alias="reporterId")
    created_at: int = Field(0, alias="createdAt")  # epoch millis
    summary: Optional[str] = None
    distinguishing_features: List[str] = Field(default_factory=list, alias="distinguishingFeatures")
    color: Optional[str] = None
    brand: Optional[str] = None
    condition: Optional[str] = None

    @property
    def primary_image(self) -> Optional[str]:
        return self.image_urls[0] if self.image_urls else None


class MatchCandidate(CamelModel):
    id: str
    confidence: int
    reason: Optional[str] = None


class CandidateMatch(CamelModel):
    report: ItemReport
    confidence: int
    reason: Optional[str] = None
    is_offline: bool = Field(False, alias="isOffline")


class ComparisonResult(CamelModel):
    confidence: int
    explanation: str
    similarities: List[str] = Field(default_factory=list)
    differences: List[str] = Field(default_factory=list)
    is_estimate: bool = Field(False, alias="isEstimate")


class VisualDetails(CamelModel):
    title: str = ""
    category: ItemCategory = ItemCategory.OTHER
    tags: List[str] = Field(default_factory=list)
    color: str = ""
    brand: str = ""
    condition: str = ""
    distinguishing_features: List[str] = Field(default_factory=list, alias="distinguishingFeatures")
    is_offline: bool = Field(False, alias="isOffline")


class ImageSafetyResult(CamelModel):
    face_status: str = Field("NONE", alias="faceStatus")  # NONE | ACCIDENTAL | PRANK
    is_prank: bool = Field(False, alias="isPrank")
    violation_type: str = Field("NONE", alias="violationType")  # GORE | NUDITY | HUMAN | NONE
    reason: str = ""


class DescriptionAnalysis(CamelModel):
    category: ItemCategory = ItemCategory.OTHER
    title: str = ""
    summary: str = ""
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    distinguishing_features: List[str] = Field(default_factory=list, alias="distinguishingFeatures")
    is_prank: bool = Field(False, alias="isPrank")
    prank_reason: Optional[str] = Field(None, alias="prankReason")
    is_violating: bool = Field(False, alias="isViolating")
    violation_type: Optional[str] = Field(None, alias="violationType")
    violation_reason: Optional[str] = Field(None, alias="violationReason")


class ReportValidation(CamelModel):
    is_valid: bool = Field(True, alias="isValid")
    reason: str = ""


class SearchIntent(CamelModel):
    user_status: str = Field("UNKNOWN", alias="userStatus")  # LOST | FOUND | UNKNOWN
    refined_query: str = Field("", alias="refinedQuery")
