"""Dependency injection providers for FastAPI"""

import re
import threading
import uuid
from collections import OrderedDict
from typing import Optional

from fastapi import Depends, Request, Response

from config.settings import settings
from core import cache
from core.logging import logger
from core.session_store import SessionStore, create_session_store
from database.repository import AnalysisRepository, get_repository
from services.analysis_normalizer import AnalysisResponseNormalizer
from services.analysis_orchestrator import AnalysisRequestOrchestrator
from services.gemini_analysis_service import GeminiAnalysisService
from services.payment_gateway import PaymentGatewayClient
from services.product_catalog import ProductCatalog, StaticProductCatalog
from services.usage_ledger import UsageLedger

SESSION_COOKIE_NAME = "facefit_session_id"
SESSION_HEADER_NAME = "X-Session-Id"

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{8,64}$")


# ========== Global Service Instances (Initialized at Startup) ==========
_gemini_service: Optional[GeminiAnalysisService] = None
_product_catalog: Optional[ProductCatalog] = None
_normalizer: Optional[AnalysisResponseNormalizer] = None

# session id -> orchestrator, least recently used first
_orchestrators: "OrderedDict[str, AnalysisRequestOrchestrator]" = OrderedDict()
_orchestrators_lock = threading.Lock()


# ========== Initialization Functions (Called from main.py) ==========
def init_services() -> None:
    """
    Initialize global service instances

    Called from main.py startup event
    """
    global _gemini_service, _product_catalog, _normalizer

    _gemini_service = GeminiAnalysisService()
    _product_catalog = StaticProductCatalog()
    _normalizer = AnalysisResponseNormalizer(catalog=_product_catalog)

    logger.info("✅ Services initialized")


# ========== Dependency Providers (for FastAPI Depends) ==========
def get_session_id(request: Request, response: Response) -> str:
    """
    Resolve the caller's session id

    Header first, then cookie; a fresh id is issued (and set as a cookie)
    when neither carries a well-formed value.
    """
    session_id = request.headers.get(SESSION_HEADER_NAME) or request.cookies.get(SESSION_COOKIE_NAME)
    if session_id and _SESSION_ID_RE.match(session_id):
        return session_id

    session_id = uuid.uuid4().hex
    attach_session_cookie(response, session_id)
    logger.info(f"🆕 New session {session_id[:8]}")
    return session_id


def attach_session_cookie(response: Response, session_id: str) -> None:
    """Set the session cookie on a response the endpoint builds itself"""
    response.set_cookie(
        SESSION_COOKIE_NAME,
        session_id,
        httponly=True,
        samesite="lax",
        secure=settings.ENVIRONMENT == "production",
        max_age=60 * 60 * 24 * 365
    )


def get_session_store(session_id: str = Depends(get_session_id)) -> SessionStore:
    return create_session_store(
        session_id,
        client=cache.redis_client,
        session_ttl=settings.SESSION_TTL
    )


def get_usage_ledger(store: SessionStore = Depends(get_session_store)) -> UsageLedger:
    return UsageLedger(store, free_limit=settings.FREE_UPLOAD_LIMIT)


def get_payment_gateway(ledger: UsageLedger = Depends(get_usage_ledger)) -> PaymentGatewayClient:
    return PaymentGatewayClient(ledger)


def get_gemini_service() -> GeminiAnalysisService:
    """Get GeminiAnalysisService instance (Lazy Initialization)"""
    global _gemini_service
    if _gemini_service is None:
        logger.info("🐢 Lazy initializing GeminiAnalysisService...")
        _gemini_service = GeminiAnalysisService()
    return _gemini_service


def get_product_catalog() -> ProductCatalog:
    global _product_catalog
    if _product_catalog is None:
        _product_catalog = StaticProductCatalog()
    return _product_catalog


def get_normalizer(catalog: ProductCatalog = Depends(get_product_catalog)) -> AnalysisResponseNormalizer:
    global _normalizer
    if _normalizer is None or _normalizer.catalog is not catalog:
        _normalizer = AnalysisResponseNormalizer(catalog=catalog)
    return _normalizer


def get_analysis_repository() -> AnalysisRepository:
    return get_repository()


def get_orchestrator(
    session_id: str = Depends(get_session_id),
    ledger: UsageLedger = Depends(get_usage_ledger),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
    gemini_service: GeminiAnalysisService = Depends(get_gemini_service),
    normalizer: AnalysisResponseNormalizer = Depends(get_normalizer),
    repository: AnalysisRepository = Depends(get_analysis_repository)
) -> AnalysisRequestOrchestrator:
    """
    Get the orchestrator for this session, creating it on first use

    The registry is bounded by MAX_ACTIVE_SESSIONS; the least recently used
    idle orchestrator is evicted first.
    """
    with _orchestrators_lock:
        orchestrator = _orchestrators.get(session_id)
        if orchestrator is not None:
            _orchestrators.move_to_end(session_id)
            orchestrator.ledger = ledger
            orchestrator.gateway = gateway
            return orchestrator

        orchestrator = AnalysisRequestOrchestrator(
            ledger=ledger,
            gateway=gateway,
            gemini_service=gemini_service,
            normalizer=normalizer,
            repository=repository
        )
        _orchestrators[session_id] = orchestrator
        _evict_idle_orchestrators()
        return orchestrator


def _evict_idle_orchestrators() -> None:
    excess = len(_orchestrators) - settings.MAX_ACTIVE_SESSIONS
    if excess <= 0:
        return
    for session_id in list(_orchestrators.keys()):
        if excess <= 0:
            break
        if _orchestrators[session_id].is_analyzing:
            continue
        del _orchestrators[session_id]
        excess -= 1


def active_session_count() -> int:
    return len(_orchestrators)


def clear_orchestrators() -> None:
    """Forget every session's in-memory flow state"""
    with _orchestrators_lock:
        _orchestrators.clear()
