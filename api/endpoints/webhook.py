"""Polar.sh payment webhook endpoint"""

from typing import Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from api.errors import error_response
from core.exceptions import InvalidWebhookSignatureException
from core.logging import logger
from services.checkout_service import handle_webhook_event

router = APIRouter()


@router.post("/webhook/polar")
async def polar_webhook(
    request: Request,
    x_polar_signature: Optional[str] = Header(None)
):
    """
    Polar.sh 웹훅 수신

    서명(X-Polar-Signature)은 원본 body 바이트에 대한 HMAC-SHA256으로 검증합니다.
    주문/체크아웃 이벤트는 로그만 남깁니다.
    """
    payload = await request.body()

    try:
        return handle_webhook_event(payload, x_polar_signature or "")
    except InvalidWebhookSignatureException as e:
        return error_response(e)
    except ValueError:
        logger.warning("⚠️ 웹훅 본문이 올바른 JSON이 아닙니다")
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "invalid_payload", "message": "Invalid JSON payload"}
        )
