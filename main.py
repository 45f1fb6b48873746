"""
Hair Director Backend - AI face analysis and 3x3 hairstyle grid service
"""

import os
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from config.settings import settings
from core.logging import logger, log_structured
from core.monitoring import init_sentry

from api.endpoints.analyze import router as analyze_router
from api.endpoints.generate import router as generate_router
from api.endpoints.checkout import router as checkout_router
from api.endpoints.email import router as email_router
from api.endpoints.webhook import router as webhook_router
from api.endpoints.session import router as session_router
from api.endpoints.library import router as library_router

# Lambda 환경 감지
IS_LAMBDA = os.environ.get('AWS_LAMBDA_FUNCTION_NAME') is not None

# Lambda initialization flag
_services_initialized = False


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
    "storage": False,
    "payment": False,
    "email": False
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


# ========== Trusted Host Middleware ==========
# ALB health checks arrive without a custom Host header
allowed_hosts = ["*"]
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=allowed_hosts
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
    - Permissions-Policy: Camera stays available for photo capture
    """
    response = await call_next(request)

    response.headers["Content-Security-Policy"] = (
        "default-src 'self'; "
        "img-src 'self' data: blob: https:; "
        "script-src 'self'; "
        "style-src 'self' 'unsafe-inline'; "
        "font-src 'self'; "
        "connect-src 'self'; "
        "frame-src https://www.youtube.com; "
        "frame-ancestors 'none';"
    )
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-XSS-Protection"] = "1; mode=block"

    # HSTS - only in HTTPS/production environments
    if request.url.scheme == "https" or settings.ENVIRONMENT == "production":
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )

    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = (
        "geolocation=(), microphone=(), camera=(self), payment=(), usb=()"
    )

    if "Server" in response.headers:
        del response.headers["Server"]

    return response


# ========== Service Initialization ==========
def initialize_services():
    """Configure Gemini, client storage and provider clients (idempotent)"""
    global _services_initialized

    if _services_initialized:
        return

    from core.dependencies import init_services
    from services.gemini_analysis_service import init_gemini
    from storage import init_storage

    # ========== 1. Gemini API 키 검증 (필수) ==========
    if not settings.GEMINI_API_KEY:
        logger.error("❌ GEMINI_API_KEY is not set!")
        raise RuntimeError("GEMINI_API_KEY environment variable is required")

    try:
        startup_status["gemini"] = init_gemini()
    except Exception as e:
        logger.error(f"❌ Gemini API 설정 실패: {str(e)}")
        raise RuntimeError(f"Gemini API initialization failed: {str(e)}")

    # ========== 2. Client storage ==========
    backend = init_storage()
    init_services(backend)
    startup_status["storage"] = backend.ping()

    # ========== 3. Optional providers ==========
    startup_status["payment"] = bool(settings.POLAR_ACCESS_TOKEN and settings.POLAR_PRODUCT_ID)
    startup_status["email"] = bool(settings.RESEND_API_KEY)
    if not startup_status["payment"]:
        logger.warning("⚠️ Polar.sh 설정 없음 - 결제 비활성화")
    if not startup_status["email"]:
        logger.warning("⚠️ RESEND_API_KEY 없음 - 이메일 전송 비활성화")

    _services_initialized = True
    log_structured("startup", dict(startup_status))


# ========== Lambda Initialization Middleware ==========
@app.middleware("http")
async def lambda_init_middleware(request: Request, call_next):
    """Ensure Lambda is initialized before processing requests"""
    if IS_LAMBDA and not _services_initialized:
        logger.info("🔧 Lambda cold start - initializing essential services...")
        initialize_services()
    return await call_next(request)


# ========== Request Size Limit Middleware ==========
# Images travel as base64 JSON (4/3 of the raw size) plus envelope
MAX_BODY_SIZE = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024 * 4 // 3 + 64 * 1024


@app.middleware("http")
async def limit_upload_size(request: Request, call_next):
    """Limit request body size to prevent DoS attacks"""
    if request.method in ("POST", "PATCH"):
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > MAX_BODY_SIZE:
            logger.warning(f"🚫 Request too large: {int(content_length)} bytes (max: {MAX_BODY_SIZE})")
            return JSONResponse(
                status_code=413,
                content={
                    "success": False,
                    "error": "payload_too_large",
                    "message": f"파일 크기가 {settings.MAX_UPLOAD_SIZE_MB}MB를 초과합니다."
                }
            )
    return await call_next(request)


# ========== Register Routers ==========
app.include_router(analyze_router, prefix="/api", tags=["analysis"])
app.include_router(generate_router, prefix="/api", tags=["generation"])
app.include_router(checkout_router, prefix="/api", tags=["checkout"])
app.include_router(email_router, prefix="/api", tags=["email"])
app.include_router(webhook_router, prefix="/api", tags=["webhook"])
app.include_router(session_router, prefix="/api", tags=["session"])
app.include_router(library_router, prefix="/api", tags=["library"])


# ========== Startup Event ==========
@app.on_event("startup")
async def startup_event():
    """Initialize essential services on server startup"""
    logger.info("🚀 서버 시작 중...")
    initialize_services()
    logger.info("✅ 기본 서비스 초기화 완료")


# ========== Root Endpoint ==========
@app.get("/")
async def root():
    """Root endpoint with service status"""
    return {
        "message": f"{settings.APP_TITLE} - v{settings.APP_VERSION}",
        "version": settings.APP_VERSION,
        "models": {
            "analysis": settings.ANALYSIS_MODEL,
            "image": settings.IMAGE_MODEL
        },
        "status": "running",
        "features": {
            "gemini_analysis": "enabled" if settings.GEMINI_API_KEY else "disabled",
            "grid_generation": "enabled" if settings.GEMINI_API_KEY else "disabled",
            "payment": "enabled" if startup_status["payment"] else "disabled",
            "email_report": "enabled" if startup_status["email"] else "disabled",
            "redis_storage": "enabled" if settings.REDIS_URL else "disabled"
        }
    }


# ========== Health Check Endpoint ==========
@app.get("/api/health")
async def health_check(deep: bool = False):
    """
    Enhanced health check endpoint with actual service validation

    Query parameters:
    - deep: If true, runs comprehensive checks including Gemini API ping (slower)

    Returns:
    - status: "healthy" or "degraded"
    - startup: Services initialized during startup
    - checks: Real-time connectivity checks
    """
    from core.health_check import get_health_check_service

    required_services_ok = startup_status["gemini"] and startup_status["storage"]

    base_status = {
        "status": "healthy" if required_services_ok else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "startup": {
            "required_services": {
                "gemini": startup_status["gemini"],
                "storage": startup_status["storage"]
            },
            "optional_services": {
                "payment": startup_status["payment"],
                "email": startup_status["email"]
            }
        }
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


# ========== Lambda Handler ==========
# For AWS Lambda deployment using Mangum
from mangum import Mangum

# lifespan="on": startup 이벤트는 첫 요청 시 실행
handler = Mangum(app, lifespan="on")


# ========== Main Entry Point ==========
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
