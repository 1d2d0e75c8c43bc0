"""
Pydantic schemas for request/response validation
Separate from SQLAlchemy models for clean API contracts
"""

from pydantic import BaseModel, Field, ConfigDict, EmailStr
from typing import Optional, List, Dict, Any
from datetime import datetime


# ==========================================
# FETCH-OUT (PUBLIC) REQUESTS
# ==========================================
# Fields are optional at the schema level: missing values are reported as
# 400 by the handlers, not as 422 validation errors.

class FetchOutBoardsRequest(BaseModel):
    state_id: Optional[int] = None
    state_name: Optional[str] = None


class FetchOutSubjectsRequest(BaseModel):
    board_id: Optional[int] = None
    board_name: Optional[str] = None
    class_id: Optional[int] = None
    class_name: Optional[str] = None
    stream_id: Optional[int] = None
    stream_name: Optional[str] = None


class FetchOutChaptersRequest(BaseModel):
    subject_id: Optional[int] = None
    subject_name: Optional[str] = None
    board_name: Optional[str] = None
    class_name: Optional[str] = None


class TaxonomyRow(BaseModel):
    """Row created or reactivated by a fetch-out run"""
    id: int
    name: str


class FetchOutResponse(BaseModel):
    success: bool = True
    count: int
    data: List[TaxonomyRow]


# ==========================================
# ADMIN AI FETCH REQUESTS
# ==========================================

class AiFetchBoardsRequest(BaseModel):
    state_id: int
    state_name: str = Field(..., min_length=1)


class AiFetchPapersRequest(BaseModel):
    category_id: int
    category_name: str = Field(..., min_length=1)


class AiFetchSubjectsRequest(BaseModel):
    context_name: str = Field(..., min_length=1, description="Human-readable scope, e.g. 'WBBSE Class 10'")
    category_id: Optional[int] = None
    board_id: Optional[int] = None
    university_id: Optional[int] = None
    class_id: Optional[int] = None
    stream_id: Optional[int] = None
    semester_id: Optional[int] = None
    degree_type_id: Optional[int] = None
    paper_stage_id: Optional[int] = None


class AiFetchChaptersRequest(BaseModel):
    subject_id: int
    subject_name: str = Field(..., min_length=1)


class AiFetchMcqsRequest(BaseModel):
    topic: str = Field(..., min_length=1)
    count: int = Field(5, ge=1, le=20)
    subject_id: Optional[int] = None
    chapter_id: Optional[int] = None


class AiFetchResponse(BaseModel):
    message: str
    data: List[Dict[str, Any]]


# ==========================================
# AUTH
# ==========================================

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserOut(BaseModel):
    id: int
    email: str
    username: Optional[str] = None
    role: str
    is_premium: bool
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==========================================
# ADMIN CRUD
# ==========================================

class UserStatusUpdate(BaseModel):
    is_active: bool


class SubscriptionAdjust(BaseModel):
    action: str = Field(..., pattern="^(extend|reduce)$")


class CategoryPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    image_url: Optional[str] = None
    description: Optional[str] = None
    sort_order: int = 0
    is_active: bool = True


class NamedStatusUpdate(BaseModel):
    """Shared update body for states and languages"""
    name: str = Field(..., min_length=1, max_length=100)
    is_active: bool = True


class BoardPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    state_id: Optional[int] = None
    logo_url: Optional[str] = None
    is_active: bool = True


class UniversityPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    state_id: Optional[int] = None
    logo_url: Optional[str] = None


class SubjectPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    category_id: Optional[int] = None
    board_id: Optional[int] = None
    university_id: Optional[int] = None
    class_id: Optional[int] = None
    stream_id: Optional[int] = None
    semester_id: Optional[int] = None
    degree_type_id: Optional[int] = None
    paper_stage_id: Optional[int] = None


class ChapterPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    subject_id: int
    description: Optional[str] = None
    sort_order: int = 0


class AiProviderUpdate(BaseModel):
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    model_name: Optional[str] = None
    is_active: bool = False


class PlanPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    duration_hours: int = Field(..., gt=0)
    price: float = Field(..., ge=0)
    is_active: bool = True


class ReferralRewardUpdate(BaseModel):
    status: str
    reward_given: bool


class GlobalSettingsUpdate(BaseModel):
    settings: Dict[str, Any]


class FreeLimitUpdate(BaseModel):
    limit: int = Field(..., ge=0)
    logic: str


class LegalPageUpdate(BaseModel):
    title: str
    content: str


class AdsSettingsUpdate(BaseModel):
    ADS_HEADER_SCRIPT: Optional[str] = None
    ADS_BODY_SCRIPT: Optional[str] = None
    ADS_TXT: Optional[str] = None
    ADS_ENABLED: bool = False


class SeoSettingsUpdate(BaseModel):
    GA_ID: Optional[str] = None
    SEARCH_CONSOLE_CODE: Optional[str] = None
    META_TITLE: Optional[str] = None
    META_DESC: Optional[str] = None
    KEYWORDS: Optional[str] = None


class PaymentGatewayUpdate(BaseModel):
    provider: str = Field(..., min_length=1, max_length=50)
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    is_active: bool = False
