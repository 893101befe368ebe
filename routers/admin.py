"""
Admin router

Circuit breaker status/reset and analysis history statistics.
All endpoints require the X-API-Key header.
"""

from fastapi import APIRouter, HTTPException, Depends
from services.circuit_breaker import get_circuit_breaker_status, reset_circuit_breakers
from core.auth import verify_admin_api_key
from core.dependencies import active_session_count, get_analysis_repository
from database.repository import AnalysisRepository
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/admin/circuit-breakers")
async def get_circuit_status(api_key: str = Depends(verify_admin_api_key)):
    """
    Circuit breaker status

    Returns:
        - gemini_api / payment_api:
            - state: closed/open/half-open
            - fail_counter: current consecutive failures
            - fail_max: failures before opening
            - reset_timeout: seconds before a half-open trial
            - is_open / is_closed / is_half_open
    """
    try:
        status = get_circuit_breaker_status()

        logger.info(f"⚡ Circuit breaker status requested: {status}")

        return {
            "success": True,
            **status
        }

    except Exception as e:
        logger.error(f"❌ Circuit breaker status failed: {e}")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to read circuit breaker status: {str(e)}"
        )


@router.post("/admin/circuit-breakers/reset")
async def reset_circuit(api_key: str = Depends(verify_admin_api_key)):
    """Force every circuit breaker back to closed"""
    try:
        reset_circuit_breakers()

        logger.warning("⚠️ [ADMIN] Circuit breakers manually reset")

        return {
            "success": True,
            "message": "All circuit breakers have been reset"
        }

    except Exception as e:
        logger.error(f"❌ Circuit breaker reset failed: {e}")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to reset circuit breakers: {str(e)}"
        )


@router.get("/admin/analysis-stats")
async def get_analysis_stats(
    api_key: str = Depends(verify_admin_api_key),
    repository: AnalysisRepository = Depends(get_analysis_repository)
):
    """
    Analysis history statistics

    Returns:
        - total_analysis: number of stored analyses
        - by_quality: strict/degraded counts
        - by_facial_shape: counts per facial shape
        - average_processing_time: seconds
        - active_sessions: in-memory session flows
    """
    stats = repository.get_statistics()
    return {
        **stats,
        "active_sessions": active_session_count()
    }
