"""Upload, analysis and usage endpoints"""

from typing import Optional

from fastapi import APIRouter, File, UploadFile, Request, Depends, Form
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from api.dependencies import (
    AnalysisResponse,
    FlowStatusResponse,
    PayerRequest,
    RequestMoreResponse,
    UploadResponse,
    UsageResponse,
)
from config.settings import settings
from core.dependencies import get_orchestrator, get_usage_ledger
from core.exceptions import AnalysisInProgressException, FaceFitException, UploadValidationException
from core.logging import logger
from core.monitoring import capture_exception
from models.upload import CaptureSource
from services.analysis_orchestrator import AnalysisRequestOrchestrator
from services.usage_ledger import UsageLedger


router = APIRouter()

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


# ========== Helper Functions ==========
def parse_budget(budget: Optional[str]) -> Optional[int]:
    """Form budget in KES; blank means no budget"""
    if budget is None or not budget.strip():
        return None
    cleaned = budget.strip().lower().replace(",", "").replace("ksh", "").replace("kes", "").strip()
    try:
        value = int(float(cleaned))
    except ValueError:
        raise UploadValidationException("Budget must be a number in Ksh.")
    if value < 0:
        raise UploadValidationException("Budget must be a positive amount in Ksh.")
    return value or None


def parse_source(source: Optional[str]) -> CaptureSource:
    try:
        return CaptureSource((source or CaptureSource.FILE_PICKER.value).lower())
    except ValueError:
        raise UploadValidationException(f"Unknown capture source: {source}")


def _internal_error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "internal_error", "message": message}
    )


async def _select_upload(
    orchestrator: AnalysisRequestOrchestrator,
    file: UploadFile,
    source: Optional[str],
    budget: Optional[int]
):
    image_data = await file.read()
    return orchestrator.select_image(
        image_data,
        file.content_type or "",
        source=parse_source(source),
        budget=budget
    )


# ========== API Endpoints ==========
@router.post("/upload", response_model=UploadResponse)
@limiter.limit("30/minute")
async def upload_image(
    request: Request,
    file: UploadFile = File(...),
    source: Optional[str] = Form(None),
    budget: Optional[str] = Form(None),
    orchestrator: AnalysisRequestOrchestrator = Depends(get_orchestrator)
):
    """Select an image (file picker or camera capture) for analysis"""
    try:
        attempt = await _select_upload(orchestrator, file, source, parse_budget(budget))
        return UploadResponse(
            state=orchestrator.state.value,
            image_hash=attempt.image_hash,
            size_bytes=attempt.size_bytes,
            mime_type=attempt.mime_type,
            source=attempt.source.value,
            budget=attempt.budget
        )

    except FaceFitException:
        raise

    except Exception as e:
        logger.error(f"❌ Upload failed: {str(e)}")
        capture_exception(e, tags={"component": "upload"})
        return _internal_error("Failed to read the uploaded image. Please try again.")


@router.post("/analyze", response_model=AnalysisResponse)
@limiter.limit("10/minute")
async def analyze_face(
    request: Request,
    file: Optional[UploadFile] = File(None),
    source: Optional[str] = Form(None),
    budget: Optional[str] = Form(None),
    orchestrator: AnalysisRequestOrchestrator = Depends(get_orchestrator)
):
    """
    Analyze the selected image

    A file in the request replaces the selected image first; otherwise the
    image from /api/upload is analyzed. Free quota or a paid session is
    required.
    """
    try:
        parsed_budget = parse_budget(budget)
        if file is not None:
            # A replacement image must not start a second model call; /api/reset cancels
            if orchestrator.is_analyzing:
                raise AnalysisInProgressException()
            await _select_upload(orchestrator, file, source, parsed_budget)
            result = await orchestrator.analyze()
        else:
            result = await orchestrator.analyze(budget=parsed_budget)

        return AnalysisResponse(**result.to_dict())

    except FaceFitException:
        raise

    except Exception as e:
        logger.error(f"❌ Analysis failed unexpectedly: {str(e)}")
        capture_exception(e, tags={"component": "analysis"})
        return _internal_error("Failed to analyze image. Please try again.")


@router.post("/reset", response_model=FlowStatusResponse)
async def reset_flow(orchestrator: AnalysisRequestOrchestrator = Depends(get_orchestrator)):
    """Drop the selected image and result; a running analysis is discarded"""
    orchestrator.reset()
    return FlowStatusResponse(**orchestrator.status())


@router.get("/status", response_model=FlowStatusResponse)
async def flow_status(orchestrator: AnalysisRequestOrchestrator = Depends(get_orchestrator)):
    return FlowStatusResponse(**orchestrator.status())


@router.post("/request-more", response_model=RequestMoreResponse)
@limiter.limit("10/minute")
async def request_more(
    request: Request,
    payload: PayerRequest,
    orchestrator: AnalysisRequestOrchestrator = Depends(get_orchestrator)
):
    """
    "Upload another photo"

    Returns action=choose_image when the session may analyze again, or
    action=redirect with the checkout URL when payment is required.
    """
    result = orchestrator.request_more(payload.email)
    return RequestMoreResponse(
        action=result.action.value,
        redirect_url=result.redirect.url if result.redirect else None,
        reference=result.redirect.reference if result.redirect else None
    )


@router.get("/usage", response_model=UsageResponse)
async def get_usage(ledger: UsageLedger = Depends(get_usage_ledger)):
    """Usage snapshot; the post-payment just_paid signal is consumed here"""
    state = ledger.snapshot()
    return UsageResponse(
        free_uploads_consumed=state.free_uploads_consumed,
        free_upload_limit=state.free_upload_limit,
        can_consume_free_upload=state.can_consume_free_upload,
        is_paid=state.is_paid,
        paid_at=state.paid_at,
        just_paid=ledger.consume_just_paid_flag(),
        premium_price_kes=settings.PREMIUM_PRICE_KES
    )
