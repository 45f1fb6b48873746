"""Domain exception -> JSON error response mapping shared by the routers"""

import re

from fastapi.responses import JSONResponse

from core.exceptions import (
    AnalysisInProgressException,
    CheckoutException,
    CircuitBreakerOpenException,
    EmailSendException,
    EmailServiceNotConfiguredException,
    GeminiAPIException,
    GeminiPermissionException,
    GeminiRateLimitException,
    HairDirectorException,
    ImageAcquisitionException,
    InvalidCategoryException,
    InvalidEmailException,
    InvalidWebhookSignatureException,
    PaymentServiceNotConfiguredException,
)
from core.logging import logger

_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")

# Checked in order; subclasses before their bases
_STATUS_CODES = (
    (GeminiRateLimitException, 429),
    (GeminiPermissionException, 403),
    (GeminiAPIException, 500),
    (CircuitBreakerOpenException, 503),
    (ImageAcquisitionException, 400),
    (InvalidEmailException, 400),
    (InvalidCategoryException, 400),
    (AnalysisInProgressException, 409),
    (InvalidWebhookSignatureException, 401),
    (PaymentServiceNotConfiguredException, 500),
    (EmailServiceNotConfiguredException, 500),
    (EmailSendException, 502),
)


def status_code_for(exc: HairDirectorException) -> int:
    if isinstance(exc, CheckoutException):
        return exc.status_code
    for exc_class, status_code in _STATUS_CODES:
        if isinstance(exc, exc_class):
            return status_code
    return 400


def error_code_for(exc: HairDirectorException) -> str:
    """InvalidEmailException -> invalid_email, GeminiAPIException -> gemini_api"""
    name = exc.__class__.__name__.replace("Exception", "")
    return _WORD_BOUNDARY.sub("_", name).lower()


def error_response(exc: HairDirectorException) -> JSONResponse:
    status_code = status_code_for(exc)

    if isinstance(exc, GeminiRateLimitException):
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "error": "RATE_LIMIT_EXCEEDED",
                "message": exc.message,
                "retryAfter": exc.retry_after
            }
        )

    if status_code >= 500:
        logger.error(f"❌ {exc.__class__.__name__}: {exc.message}")
    else:
        logger.warning(f"⚠️ {exc.__class__.__name__}: {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error_code_for(exc),
            "message": exc.message
        }
    )


def internal_error_response(operation: str, exc: Exception) -> JSONResponse:
    """Unexpected failure; the raw exception text stays in the logs"""
    logger.error(f"❌ {operation} 중 오류 발생: {type(exc).__name__}: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "internal_error",
            "message": "서버 오류가 발생했습니다. 잠시 후 다시 시도해주세요."
        }
    )
