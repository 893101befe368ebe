"""FastAPI dependencies and Pydantic models"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# ========== Request Models ==========
class PayerRequest(BaseModel):
    """Email the payment receipt is sent to"""
    email: str = Field(..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
                       description="Payer email address")


# ========== Response Models ==========
class UsageResponse(BaseModel):
    success: bool = True
    free_uploads_consumed: int
    free_upload_limit: int
    can_consume_free_upload: bool
    is_paid: bool
    paid_at: Optional[str] = None
    just_paid: bool = False
    premium_price_kes: int


class UploadResponse(BaseModel):
    success: bool = True
    state: str
    image_hash: str
    size_bytes: int
    mime_type: str
    source: str
    budget: Optional[int] = None


class AnalysisResponse(BaseModel):
    success: bool = True
    data: Dict[str, Any]
    quality: str
    missing_fields: List[str] = Field(default_factory=list)
    cached: bool = False
    processing_time: float
    usage_count: int
    analysis_id: Optional[int] = None


class RequestMoreResponse(BaseModel):
    success: bool = True
    action: str
    redirect_url: Optional[str] = None
    reference: Optional[str] = None


class PaymentInitResponse(BaseModel):
    success: bool = True
    authorization_url: str
    reference: Optional[str] = None
    amount: int


class FlowStatusResponse(BaseModel):
    success: bool = True
    state: str
    has_image: bool
    has_result: bool
    analyzing: bool
    last_error: Optional[str] = None
