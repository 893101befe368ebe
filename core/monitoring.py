"""
Monitoring and Observability Configuration

Integrates Sentry for error tracking and performance monitoring.
"""

import logging
import os
from typing import Optional, Dict, Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from config.settings import settings

logger = logging.getLogger(__name__)

# User-facing 4xx conditions; not worth an alert
EXPECTED_EXCEPTIONS = [
    'UploadValidationException',
    'FileTooLargeException',
    'InvalidFileFormatException',
    'NoImageSelectedException',
    'QuotaExhaustedException',
    'AnalysisInProgressException',
    'StaleAnalysisException',
    'IncompleteAnalysisException',
    'NoStructuredDataException',
    'AdminAccessDeniedException',
]


def init_sentry(
    dsn: Optional[str] = None,
    environment: Optional[str] = None,
    traces_sample_rate: float = 0.1
) -> bool:
    """
    Initialize Sentry error tracking and performance monitoring

    Args:
        dsn: Sentry DSN (from env var SENTRY_DSN if not provided)
        environment: Environment name (production, staging, development)
        traces_sample_rate: Percentage of transactions to trace (0.0-1.0)

    Returns:
        True if Sentry initialized successfully, False otherwise

    Environment Variables:
        SENTRY_DSN: Sentry project DSN
        SENTRY_ENVIRONMENT: Environment name (overrides environment param)
        SENTRY_TRACES_SAMPLE_RATE: Traces sample rate (overrides param)
    """
    sentry_dsn = dsn or os.getenv('SENTRY_DSN')

    if not sentry_dsn:
        logger.warning("⚠️ SENTRY_DSN not configured - Sentry disabled")
        return False

    sentry_env = os.getenv('SENTRY_ENVIRONMENT') or environment or settings.ENVIRONMENT

    try:
        traces_rate = float(os.getenv('SENTRY_TRACES_SAMPLE_RATE', traces_sample_rate))

        sentry_sdk.init(
            dsn=sentry_dsn,
            environment=sentry_env,
            release=f"facefit-backend@{settings.APP_VERSION}",
            traces_sample_rate=traces_rate,
            integrations=[
                FastApiIntegration(
                    transaction_style="endpoint",
                    failed_request_status_codes=[500, 501, 502, 503, 504, 505]
                ),
                LoggingIntegration(
                    level=logging.INFO,
                    event_level=logging.ERROR
                ),
            ],
            before_send=before_send_filter,
            attach_stacktrace=True,
            send_default_pii=False,
            max_breadcrumbs=50,
            debug=settings.DEBUG,
        )

        logger.info(
            f"✅ Sentry initialized\n"
            f"   Environment: {sentry_env}\n"
            f"   Release: facefit-backend@{settings.APP_VERSION}\n"
            f"   Traces: {traces_rate * 100}%"
        )
        return True

    except Exception as e:
        logger.error(f"❌ Failed to initialize Sentry: {str(e)}")
        return False


def before_send_filter(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Filter events before sending to Sentry

    Returns:
        The event, or None to drop it
    """
    if event.get('transaction') == 'GET /api/health':
        return None

    if 'exception' in event:
        values = event['exception'].get('values') or [{}]
        if values[0].get('type', '') in EXPECTED_EXCEPTIONS:
            return None

    request = event.get('request', {})
    if request.get('headers', {}).get('X-Test-Request') == 'true':
        return None

    return event


def capture_exception(exception: Exception, **scope_kwargs):
    """
    Manually capture an exception to Sentry

    Example:
        capture_exception(e, tags={"component": "payment"})
    """
    with sentry_sdk.push_scope() as scope:
        for key, value in scope_kwargs.get('tags', {}).items():
            scope.set_tag(key, value)
        if 'level' in scope_kwargs:
            scope.set_level(scope_kwargs['level'])
        sentry_sdk.capture_exception(exception)


def track_gemini_api_call(latency_ms: float, success: bool, **context):
    """Record a Gemini call as a breadcrumb"""
    sentry_sdk.add_breadcrumb(
        message=f"Gemini API call: {'success' if success else 'failed'} ({latency_ms:.0f}ms)",
        category="api",
        level="info" if success else "warning",
        data={
            "latency_ms": latency_ms,
            "success": success,
            **context
        }
    )
