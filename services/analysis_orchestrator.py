"""
Upload-gate-and-analysis orchestration for one session

Sequences image selection, the quota/paywall gate, the Gemini call and the
normalizer against the usage ledger and payment gateway. One orchestrator
exists per session id; at most one analysis runs at a time, and a result
that arrives after reset() or a new image selection is discarded.
"""

import asyncio
import dataclasses
import io
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from config.settings import settings
from core.cache import get_cached_response, save_response_to_cache
from core.exceptions import (
    AnalysisInProgressException,
    AnalysisTimeoutException,
    FaceFitException,
    FileTooLargeException,
    InvalidFileFormatException,
    NoImageSelectedException,
    QuotaExhaustedException,
    StaleAnalysisException,
    UploadValidationException,
)
from core.logging import logger, log_structured
from models.recommendation import FailedParse, ParseQuality, RecommendationBundle
from models.upload import CaptureSource, UploadAttempt
from services.analysis_normalizer import AnalysisResponseNormalizer
from services.gemini_analysis_service import GeminiAnalysisService
from services.payment_gateway import PaymentGatewayClient, RedirectTarget
from services.usage_ledger import UsageLedger

ALLOWED_MIME_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")


class OrchestratorState(str, Enum):
    EMPTY = "empty"
    IMAGE_SELECTED = "image_selected"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    FAILED = "failed"
    PAYWALL_BLOCKED = "paywall_blocked"


class RequestMoreAction(str, Enum):
    CHOOSE_IMAGE = "choose_image"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class RequestMoreResult:
    action: RequestMoreAction
    redirect: Optional[RedirectTarget] = None


@dataclass(frozen=True)
class AnalysisResult:
    bundle: RecommendationBundle
    quality: ParseQuality
    missing_fields: FrozenSet[str]
    cached: bool
    processing_time: float
    usage_count: int
    analysis_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.bundle.to_dict(),
            "quality": self.quality.value,
            "missing_fields": sorted(self.missing_fields),
            "cached": self.cached,
            "processing_time": self.processing_time,
            "usage_count": self.usage_count,
            "analysis_id": self.analysis_id,
        }


class AnalysisRequestOrchestrator:
    """
    Per-session analysis flow

    Args:
        ledger: Usage ledger for the session
        gateway: Payment client used when the paywall is hit
        gemini_service: Produces raw model text for an image
        normalizer: Turns raw model text into a ParseOutcome
        repository: Optional analysis history store (best effort)
        use_cache: Look up and save raw responses in the Redis cache
    """

    def __init__(
        self,
        ledger: UsageLedger,
        gateway: PaymentGatewayClient,
        gemini_service: GeminiAnalysisService,
        normalizer: AnalysisResponseNormalizer,
        repository=None,
        use_cache: bool = True,
        max_upload_bytes: Optional[int] = None,
        analysis_timeout: Optional[float] = None,
        premium_price: Optional[int] = None
    ):
        self.ledger = ledger
        self.gateway = gateway
        self.gemini_service = gemini_service
        self.normalizer = normalizer
        self.repository = repository
        self.use_cache = use_cache
        self.max_upload_bytes = max_upload_bytes or settings.MAX_UPLOAD_BYTES
        self.analysis_timeout = analysis_timeout or settings.ANALYSIS_TIMEOUT_SECONDS
        self.premium_price = premium_price or settings.PREMIUM_PRICE_KES

        self.state = OrchestratorState.EMPTY
        self.attempt: Optional[UploadAttempt] = None
        self.bundle: Optional[RecommendationBundle] = None
        self.last_error: Optional[str] = None
        self._generation = 0
        self._in_flight_generation: Optional[int] = None

    @property
    def session_id(self) -> str:
        return self.ledger.store.session_id

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_analyzing(self) -> bool:
        return self._in_flight_generation is not None

    # ========== Image selection ==========

    def select_image(
        self,
        image_data: bytes,
        mime_type: str,
        source: CaptureSource = CaptureSource.FILE_PICKER,
        budget: Optional[int] = None
    ) -> UploadAttempt:
        """
        Validate and hold an image for analysis

        A rejected image leaves the current state untouched. An accepted
        image replaces the previous one and invalidates any running analysis;
        a new analysis can start once that call has returned.

        Raises:
            FileTooLargeException: If the image exceeds the size ceiling
            InvalidFileFormatException: If the MIME type is unsupported or
                the bytes are not a decodable image
            NoImageSelectedException: If no bytes were submitted
        """
        size = len(image_data or b"")
        if size == 0:
            raise NoImageSelectedException()
        if size > self.max_upload_bytes:
            logger.warning(f"⚠️ Rejected upload of {size} bytes (limit {self.max_upload_bytes})")
            raise FileTooLargeException(size_bytes=size, max_bytes=self.max_upload_bytes)

        mime_type = (mime_type or "").lower()
        if mime_type not in ALLOWED_MIME_TYPES:
            raise InvalidFileFormatException()

        try:
            with Image.open(io.BytesIO(image_data)) as image:
                image.verify()
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
            raise InvalidFileFormatException("The file could not be read as an image.") from e

        attempt = UploadAttempt(
            image_data=image_data,
            mime_type=mime_type,
            size_bytes=size,
            source=CaptureSource(source),
            budget=self._validate_budget(budget),
        )

        # The superseded call stays in flight until the model returns
        if self.is_analyzing:
            self._generation += 1
        self.attempt = attempt
        self.last_error = None
        self.state = OrchestratorState.IMAGE_SELECTED
        logger.info(f"🖼️ Image selected for session {self.session_id[:8]}: {attempt.describe()}")
        return attempt

    @staticmethod
    def _validate_budget(budget: Optional[int]) -> Optional[int]:
        if budget is None or budget == 0:
            return None
        if budget < 0:
            raise UploadValidationException("Budget must be a positive amount in Ksh.")
        return int(budget)

    # ========== Paywall ==========

    def _has_quota(self) -> bool:
        return self.ledger.can_consume_free_upload() or self.ledger.is_paid()

    def request_more(self, payer_email: str) -> RequestMoreResult:
        """
        Handle "upload another photo"

        With quota left (or a paid session) the caller should open the image
        chooser; otherwise a checkout session is created and the caller
        redirects to it. The chooser is never opened for an exhausted,
        unpaid session.
        """
        if self._has_quota():
            return RequestMoreResult(action=RequestMoreAction.CHOOSE_IMAGE)

        self.state = OrchestratorState.PAYWALL_BLOCKED
        log_structured("paywall_blocked", {"session_id": self.session_id[:8]})
        redirect = self.gateway.initiate_charge(self.premium_price, payer_email)
        return RequestMoreResult(action=RequestMoreAction.REDIRECT, redirect=redirect)

    # ========== Analysis ==========

    async def _fetch_raw(self, attempt: UploadAttempt) -> Tuple[str, bool]:
        image_hash = attempt.image_hash
        if self.use_cache:
            cached = get_cached_response(image_hash, attempt.budget)
            if cached:
                return cached, True

        try:
            raw_text = await asyncio.wait_for(
                asyncio.to_thread(self.gemini_service.analyze_image, attempt.image_data, attempt.budget),
                timeout=self.analysis_timeout
            )
        except asyncio.TimeoutError as e:
            raise AnalysisTimeoutException(timeout_seconds=self.analysis_timeout) from e
        return raw_text, False

    async def analyze(
        self,
        attempt: Optional[UploadAttempt] = None,
        budget: Optional[int] = None
    ) -> AnalysisResult:
        """
        Run one analysis

        Args:
            attempt: Upload to analyze; the selected image when None
            budget: Budget override in KES

        Returns:
            AnalysisResult for a strict or degraded parse

        Raises:
            NoImageSelectedException: If there is nothing to analyze
            QuotaExhaustedException: If the free quota is used and the session is unpaid
            AnalysisInProgressException: If an analysis is already running
            StaleAnalysisException: If reset() or a new image superseded this call
            TransportException: If the Gemini call failed or timed out
            AnalysisOutputException: If the model output was unusable
        """
        attempt = attempt or self.attempt
        if attempt is None:
            raise NoImageSelectedException()
        if budget is not None:
            attempt = dataclasses.replace(attempt, budget=self._validate_budget(budget))

        if self.is_analyzing:
            raise AnalysisInProgressException()

        if not self._has_quota():
            self.state = OrchestratorState.PAYWALL_BLOCKED
            log_structured("paywall_blocked", {"session_id": self.session_id[:8]})
            raise QuotaExhaustedException()

        generation = self._generation
        self._in_flight_generation = generation
        self.attempt = attempt
        self.state = OrchestratorState.ANALYZING
        start_time = time.time()

        log_structured("analysis_start", {
            "session_id": self.session_id[:8],
            **attempt.describe()
        })

        try:
            raw_text, cached = await self._fetch_raw(attempt)
            if generation != self._generation:
                raise StaleAnalysisException()

            outcome = self.normalizer.normalize(raw_text, attempt.budget)
            if isinstance(outcome, FailedParse):
                raise outcome.error

            if not cached and self.use_cache:
                save_response_to_cache(attempt.image_hash, raw_text, attempt.budget)

            usage_count = self.ledger.record_successful_analysis()

        except StaleAnalysisException:
            logger.info(f"🗑️ Discarded stale analysis for session {self.session_id[:8]}")
            raise

        except Exception as e:
            if generation != self._generation:
                logger.info(f"🗑️ Discarded stale analysis failure for session {self.session_id[:8]}")
                raise StaleAnalysisException() from e
            self.state = OrchestratorState.FAILED
            if isinstance(e, FaceFitException):
                self.last_error = e.message
                error_type = e.error_code
            else:
                self.last_error = "Failed to analyze image. Please try again."
                error_type = type(e).__name__
            log_structured("analysis_error", {
                "session_id": self.session_id[:8],
                "error_type": error_type,
                "message": str(e),
                "image_hash": attempt.image_hash[:16]
            })
            raise

        finally:
            if self._in_flight_generation == generation:
                self._in_flight_generation = None

        processing_time = round(time.time() - start_time, 2)
        self.bundle = outcome.bundle
        self.state = OrchestratorState.COMPLETE

        analysis_id = self._save_history(attempt, outcome, processing_time)

        log_structured("analysis_complete", {
            "session_id": self.session_id[:8],
            "image_hash": attempt.image_hash[:16],
            "quality": outcome.quality.value,
            "cached": cached,
            "processing_time": processing_time,
            "products": len(outcome.bundle.product_suggestions),
            "usage_count": usage_count,
            "analysis_id": analysis_id
        })

        return AnalysisResult(
            bundle=outcome.bundle,
            quality=outcome.quality,
            missing_fields=frozenset(outcome.missing_fields),
            cached=cached,
            processing_time=processing_time,
            usage_count=usage_count,
            analysis_id=analysis_id,
        )

    def _save_history(self, attempt: UploadAttempt, outcome, processing_time: float) -> Optional[int]:
        if self.repository is None:
            return None
        try:
            analysis_id = self.repository.save_analysis(
                session_id=self.session_id,
                image_hash=attempt.image_hash,
                bundle=outcome.bundle,
                quality=outcome.quality.value,
                processing_time=processing_time,
                capture_source=attempt.source.value
            )
        except Exception as e:
            logger.error(f"❌ Failed to save analysis history: {str(e)}")
            return None

        if analysis_id is None:
            logger.warning(
                "⚠️ Analysis history not saved - the analysis itself succeeded. "
                f"image_hash: {attempt.image_hash[:16]}"
            )
        return analysis_id

    # ========== Reset ==========

    def reset(self) -> None:
        """Drop the image and result; any running analysis becomes stale"""
        self._generation += 1
        self._in_flight_generation = None
        self.attempt = None
        self.bundle = None
        self.last_error = None
        self.state = OrchestratorState.EMPTY

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "has_image": self.attempt is not None,
            "has_result": self.bundle is not None,
            "analyzing": self.is_analyzing,
            "last_error": self.last_error,
        }
