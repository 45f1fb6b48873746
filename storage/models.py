"""Pydantic models for records kept in client storage"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import Field

from models.schemas import AnalysisResult, CamelModel, FaceShape


class SavedStyleType(str, Enum):
    SIMULATION = "simulation"
    VIDEO = "video"
    BLUEPRINT = "blueprint"


class StyleCategory(str, Enum):
    CUT = "cut"
    PERM = "perm"
    COLOR = "color"


# Filter-only value; never stored on a SavedStyle
ALL_CATEGORIES = "all"


class FaceAnalysisSummary(CamelModel):
    """Denormalized subset of AnalysisResult kept on every history item"""

    face_shape: FaceShape
    upper_ratio: int
    middle_ratio: int
    lower_ratio: int
    features: List[str] = Field(default_factory=list)

    @classmethod
    def from_analysis(cls, analysis: AnalysisResult) -> "FaceAnalysisSummary":
        return cls(
            face_shape=analysis.face_shape,
            upper_ratio=analysis.upper_ratio,
            middle_ratio=analysis.middle_ratio,
            lower_ratio=analysis.lower_ratio,
            features=analysis.feature_names,
        )


class NewHistoryItem(CamelModel):
    """History item before id/date assignment"""

    original_image: str
    result_image: str
    face_analysis: FaceAnalysisSummary
    full_analysis_result: Optional[AnalysisResult] = None
    recommended_styles: List[str] = Field(default_factory=list)
    liked: bool = False


class HistoryItem(NewHistoryItem):
    """One completed analysis session (v1.0 items have no full_analysis_result)"""

    id: str
    date: datetime


class NewSavedStyle(CamelModel):
    type: SavedStyleType
    category: StyleCategory
    title: str
    thumbnail: str
    source_url: Optional[str] = None
    video_id: Optional[str] = None
    notes: Optional[str] = None
    is_pro: Optional[bool] = None


class SavedStyle(NewSavedStyle):
    id: str
    saved_date: datetime


class SessionSnapshot(CamelModel):
    """In-progress session kept for reload / payment-redirect recovery"""

    original_image: Optional[str] = None
    result_image: Optional[str] = None
    analysis_result: Optional[AnalysisResult] = None
    recommended_styles: List[str] = Field(default_factory=list)
    user_email: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_resumable(self) -> bool:
        return bool(self.original_image and self.result_image and self.analysis_result)


class PremiumStatus(CamelModel):
    is_premium: bool = False
    purchase_date: Optional[datetime] = None
    email: Optional[str] = None
    checkout_id: Optional[str] = None
