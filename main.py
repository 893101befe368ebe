"""
Face-Fit Backend - AI beauty & fashion recommendations
Version: 5.0.0
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import google.generativeai as genai

from config.settings import settings
from core.exceptions import FaceFitException
from core.logging import logger, log_structured
from core.monitoring import init_sentry

from routers.admin import router as admin_router
from api.endpoints.analyze import router as analyze_router
from api.endpoints.payment import router as payment_router


# ========== Initialize Sentry (if configured) ==========
sentry_enabled = init_sentry()
if sentry_enabled:
    logger.info("✅ Sentry error tracking enabled")
else:
    logger.info("ℹ️  Sentry not configured - running without error tracking")


# ========== Rate Limiter Initialization ==========
limiter = Limiter(key_func=get_remote_address)

# ========== Service Startup Status Tracking ==========
startup_status = {
    "gemini": False,
    "database": False,
    "redis": False
}

# ========== FastAPI App Initialization ==========
app = FastAPI(
    title=settings.APP_TITLE,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION
)

# Attach limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ========== Domain Exception Handler ==========
@app.exception_handler(FaceFitException)
async def facefit_exception_handler(request: Request, exc: FaceFitException):
    """Render domain errors as {success, error, message}"""
    if exc.status_code >= 500:
        logger.error(f"❌ {exc.error_code} on {request.url.path}: {exc.message}")
    else:
        logger.warning(f"⚠️ {exc.error_code} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.error_code,
            "message": exc.message
        }
    )


# ========== CORS Middleware ==========
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ========== Security Headers Middleware ==========
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """
    Add security headers to all responses

    Headers added:
    - Content-Security-Policy: Prevent XSS attacks
    - X-Frame-Options: Prevent clickjacking
    - X-Content-Type-Options: Prevent MIME sniffing
    - Strict-Transport-Security: Force HTTPS (production only)
    - Referrer-Policy: Control referrer information
    - Permissions-Policy: Restrict browser features
    """
    response = await call_next(request)

    response.headers["Content-Security-Policy"] = (
        "default-src 'self'; "
        "img-src 'self' data: https:; "
        "script-src 'self'; "
        "style-src 'self' 'unsafe-inline'; "
        "font-src 'self'; "
        "connect-src 'self'; "
        "frame-ancestors 'none';"
    )

    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-XSS-Protection"] = "1; mode=block"

    if request.url.scheme == "https" or settings.ENVIRONMENT == "production":
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )

    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    # Camera stays allowed for in-browser capture
    response.headers["Permissions-Policy"] = (
        "geolocation=(), microphone=(), camera=(self), payment=(), usb=()"
    )

    if "Server" in response.headers:
        del response.headers["Server"]

    return response


# ========== Request Size Limit Middleware ==========
# Multipart framing and form fields on top of the image itself
MULTIPART_OVERHEAD_BYTES = 1024 * 1024
MAX_REQUEST_BYTES = settings.MAX_UPLOAD_BYTES + MULTIPART_OVERHEAD_BYTES


@app.middleware("http")
async def limit_upload_size(request: Request, call_next):
    """Reject oversized request bodies before they are read"""
    if request.method == "POST":
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_BYTES:
            logger.warning(f"🚫 Request too large: {int(content_length)} bytes (max: {MAX_REQUEST_BYTES})")
            return JSONResponse(
                status_code=413,
                content={
                    "success": False,
                    "error": "file_too_large",
                    "message": f"Image is too large. Maximum size is {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB."
                }
            )
    return await call_next(request)


# ========== Register Routers ==========
app.include_router(admin_router, prefix="/api", tags=["admin"])
app.include_router(analyze_router, prefix="/api", tags=["analysis"])
app.include_router(payment_router, prefix="/api", tags=["payment"])


# ========== Startup Event ==========
@app.on_event("startup")
async def startup_event():
    """Initialize essential services on server startup"""
    logger.info("🚀 Starting Face-Fit backend...")

    # ========== 1. Gemini API (required) ==========
    if not settings.GEMINI_API_KEY:
        logger.error("❌ GEMINI_API_KEY is not set!")
        raise RuntimeError("GEMINI_API_KEY environment variable is required")

    try:
        genai.configure(api_key=settings.GEMINI_API_KEY)
        startup_status["gemini"] = True
        logger.info("✅ Gemini API configured")
    except Exception as e:
        logger.error(f"❌ Gemini API configuration failed: {str(e)}")
        raise RuntimeError(f"Gemini API initialization failed: {str(e)}")

    # ========== 2. Database & Cache ==========
    from database import init_database
    from core.cache import init_redis
    from core.dependencies import init_services

    startup_status["database"] = init_database()
    startup_status["redis"] = init_redis()

    init_services()

    log_structured("startup_complete", startup_status)
    logger.info("✅ Services initialized")


# ========== Root Endpoint ==========
@app.get("/")
async def root():
    """Root endpoint with service status"""
    return {
        "message": f"{settings.APP_TITLE} - v{settings.APP_VERSION}",
        "version": settings.APP_VERSION,
        "model": settings.MODEL_NAME,
        "status": "running",
        "features": {
            "gemini_analysis": "enabled" if settings.GEMINI_API_KEY else "disabled",
            "redis_sessions": "enabled" if startup_status["redis"] else "in-memory",
            "analysis_history": "enabled" if startup_status["database"] else "disabled",
            "payments": "enabled",
            "free_uploads": settings.FREE_UPLOAD_LIMIT,
            "premium_price_kes": settings.PREMIUM_PRICE_KES
        }
    }


# ========== Health Check Endpoint ==========
@app.get("/api/health")
async def health_check(deep: bool = False):
    """
    Health check endpoint with actual service validation

    Query parameters:
    - deep: If true, also pings the Gemini API (slower)

    Returns:
    - status: "healthy" or "degraded"
    - startup: Services initialized during startup
    - checks: Redis, database, circuit breakers, system metrics, Gemini
    """
    from core.health_check import get_health_check_service

    base_status = {
        "status": "healthy" if startup_status["gemini"] else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "startup": dict(startup_status)
    }

    health_service = get_health_check_service()
    comprehensive_result = await health_service.comprehensive_health_check(
        include_expensive_checks=deep
    )

    base_status.update({
        "checks": comprehensive_result["checks"],
        "check_duration_ms": comprehensive_result["check_duration_ms"],
        "timestamp": comprehensive_result["timestamp"]
    })

    if comprehensive_result["status"] == "degraded":
        base_status["status"] = "degraded"

    return base_status


# ========== Main Entry Point ==========
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
