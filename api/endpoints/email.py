"""Report and refund email endpoints (Resend)"""

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from slowapi import Limiter
from slowapi.util import get_remote_address

from api.dependencies import SendRefundRequest, SendReportRequest
from api.errors import error_response, internal_error_response
from core.exceptions import HairDirectorException, InvalidEmailException
from core.logging import logger
from models.schemas import AnalysisResult
from services.email_service import EmailService, get_email_service, is_valid_email

router = APIRouter()

limiter = Limiter(key_func=get_remote_address)


@router.post("/email/send-report")
@limiter.limit("5/minute")
async def send_report(
    request: Request,
    body: SendReportRequest,
    email_service: EmailService = Depends(get_email_service)
):
    """
    분석 결과 리포트 이메일 전송

    Returns:
        {"success": true, "messageId": "<resend id>"}
    """
    # Validate before any network call
    if not is_valid_email(body.email):
        return error_response(InvalidEmailException())

    try:
        analysis = AnalysisResult.model_validate(body.analysis_result)
    except ValidationError as e:
        logger.warning(f"⚠️ 잘못된 분석 결과 형식: {e.error_count()}개 오류")
        return error_response(HairDirectorException("이메일 주소와 분석 결과는 필수입니다."))

    try:
        message_id = await run_in_threadpool(
            email_service.send_analysis_report, body.email, analysis, body.result_image
        )
    except HairDirectorException as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response("리포트 이메일 전송", e)

    return {"success": True, "messageId": message_id}


@router.post("/email/send-refund")
@limiter.limit("5/minute")
async def send_refund(
    request: Request,
    body: SendRefundRequest,
    email_service: EmailService = Depends(get_email_service)
):
    """
    환불 요청 알림 (관리자 + 사용자)

    Returns:
        {"success": true, "adminMessageId": ..., "userMessageId": ..., "userNotified": bool}
    """
    try:
        result = await run_in_threadpool(
            email_service.send_refund_request,
            body.timestamp,
            body.user_email,
            body.reason,
            body.error_detail
        )
    except HairDirectorException as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response("환불 이메일 전송", e)

    return {
        "success": True,
        "adminMessageId": result.admin_message_id,
        "userMessageId": result.user_message_id,
        "userNotified": result.user_notified
    }
