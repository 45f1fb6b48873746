"""FastAPI request/response Pydantic models"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from storage.models import SavedStyleType, StyleCategory


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ========== Enums ==========
class Tab(str, Enum):
    """Initial tab selected by the ?tab= query parameter"""
    HOME = "home"
    HISTORY = "history"
    SAVED = "saved"


# ========== Proxy endpoints ==========
class ImageRequest(ApiModel):
    image: str = Field(..., min_length=1, description="Base64 이미지 데이터 (data URI 접두사 제외)")
    mime_type: str = Field("image/png", description="이미지 MIME 타입")


class GenerateRequest(ImageRequest):
    styles: Optional[List[str]] = Field(None, description="3x3 그리드 스타일 9개 (9개가 아니면 기본 스타일 사용)")


class GenerateResponse(ApiModel):
    success: bool = True
    image: str
    mime_type: str


class CheckoutCreateRequest(ApiModel):
    email: Optional[str] = None
    success_url: str = Field(..., min_length=1)
    cancel_url: str = Field(..., min_length=1)


class CheckoutSessionResponse(ApiModel):
    id: str
    url: str


class CheckoutDetailsRequest(ApiModel):
    checkout_id: str = Field(..., min_length=1)


class CheckoutDetailsResponse(ApiModel):
    email: Optional[str] = None
    status: str


class SendReportRequest(ApiModel):
    email: str
    analysis_result: dict = Field(..., description="AnalysisResult JSON")
    result_image: Optional[str] = None


class SendRefundRequest(ApiModel):
    user_email: Optional[str] = None
    reason: Optional[str] = None
    timestamp: str
    error_detail: Optional[str] = None


# ========== Session endpoints ==========
class AcquireImageRequest(ApiModel):
    image: str = Field(..., min_length=1, description="data:image/...;base64,... 형식")


class ResetRequest(ApiModel):
    confirmed: bool = False


class PaymentReturnRequest(BaseModel):
    """Query string of the checkout redirect, sent as-is"""
    checkout: Optional[str] = None
    checkout_id: Optional[str] = None


class SessionCheckoutRequest(ApiModel):
    success_url: str = Field(..., min_length=1)
    cancel_url: str = Field(..., min_length=1)
    email: Optional[str] = None


class EmailRequest(ApiModel):
    email: Optional[str] = None


class RefundRequest(ApiModel):
    reason: Optional[str] = None


# ========== Library endpoints ==========
class SaveStyleRequest(ApiModel):
    type: SavedStyleType
    category: StyleCategory
    title: str = Field(..., min_length=1)
    thumbnail: str
    source_url: Optional[str] = None
    video_id: Optional[str] = None
    notes: Optional[str] = None
    is_pro: Optional[bool] = None


class BookmarkVideoRequest(ApiModel):
    title: str = Field(..., min_length=1)
    video_id: str = Field(..., pattern=r"^[A-Za-z0-9_-]{6,20}$", description="YouTube 영상 ID")
    thumbnail: str


class BookmarkBlueprintRequest(ApiModel):
    title: str = Field(..., min_length=1, description="스타일명 (카테고리는 이름으로 추론)")
    thumbnail: str
    notes: Optional[str] = None


class BookmarkGridCellRequest(ApiModel):
    index: int = Field(..., ge=0, le=8, description="그리드 셀 위치 (0-8, 행 우선)")


class CategoryUpdateRequest(ApiModel):
    category: str


class NotesUpdateRequest(ApiModel):
    notes: str
