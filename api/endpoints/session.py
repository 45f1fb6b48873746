"""Per-client session endpoints driving the analysis orchestrator"""

from fastapi import APIRouter, Depends, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from api.dependencies import (
    AcquireImageRequest,
    BookmarkGridCellRequest,
    EmailRequest,
    PaymentReturnRequest,
    RefundRequest,
    ResetRequest,
    SessionCheckoutRequest,
    Tab,
)
from api.errors import error_response, internal_error_response
from core.dependencies import get_client_id, get_orchestrator
from core.exceptions import HairDirectorException
from core.logging import log_structured
from services.library_service import LibraryService
from services.orchestrator import AnalysisOrchestrator, AppState

router = APIRouter()

limiter = Limiter(key_func=get_remote_address)


def _premium(orchestrator: AnalysisOrchestrator) -> dict:
    return orchestrator.gate.get_status().model_dump(mode="json", by_alias=True)


@router.get("/session")
async def get_session(
    tab: Tab = Query(Tab.HOME, description="초기 탭 (home/history/saved)"),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)
):
    """
    앱 시작 시 세션 상태 조회

    - tab: 초기 탭 (알 수 없는 값은 422)
    - 복원 가능한 스냅샷이 있으면 COMPLETED 상태로 복원된 뷰를 반환합니다.
    """
    return {
        "tab": tab.value,
        "premium": _premium(orchestrator),
        "resumed": orchestrator.state == AppState.COMPLETED,
        "session": orchestrator.view()
    }


@router.post("/session/image")
async def acquire_image(
    body: AcquireImageRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)
):
    """사진 선택/드롭/촬영 결과 등록 → PREVIEW"""
    try:
        orchestrator.acquire_image(body.image)
    except HairDirectorException as e:
        return error_response(e)
    return {"success": True, "session": orchestrator.view()}


@router.post("/session/analyze")
@limiter.limit("10/minute")
async def start_analysis(
    request: Request,
    client_id: str = Depends(get_client_id),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)
):
    """
    분석 시작

    Returns:
        outcome: completed | error | payment_required | ignored
    """
    outcome = await orchestrator.start_analysis()
    log_structured("session_analysis", {"outcome": outcome.value}, client_id=client_id)
    return {
        "outcome": outcome.value,
        "premium": _premium(orchestrator),
        "session": orchestrator.view()
    }


@router.post("/session/retry")
async def retry(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)):
    orchestrator.retry()
    return {"session": orchestrator.view()}


@router.post("/session/reset")
async def reset(
    body: ResetRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)
):
    """처음으로 (confirmed=true일 때만 세션 스냅샷 삭제, 히스토리는 유지)"""
    orchestrator.reset(confirmed=body.confirmed)
    return {"session": orchestrator.view()}


@router.post("/session/payment-return")
async def payment_return(
    body: PaymentReturnRequest,
    client_id: str = Depends(get_client_id),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)
):
    """
    결제 리다이렉트 처리 (?checkout=success&checkout_id=...)

    같은 checkout_id는 한 번만 처리되며, 복원된 사진이 있으면 자동 분석을 한 번 실행합니다.
    """
    try:
        callback = await orchestrator.handle_payment_return(body.checkout, body.checkout_id)
    except HairDirectorException as e:
        return error_response(e)

    outcome = await orchestrator.maybe_auto_start()
    log_structured("payment_return", {
        "checkout": body.checkout,
        "handled": callback is not None,
        "outcome": outcome.value
    }, client_id=client_id)
    return {
        "callback": {"status": callback.status, "checkoutId": callback.checkout_id} if callback else None,
        "outcome": outcome.value,
        "premium": _premium(orchestrator),
        "session": orchestrator.view()
    }


@router.post("/session/checkout")
@limiter.limit("10/minute")
async def session_checkout(
    request: Request,
    body: SessionCheckoutRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)
):
    """현재 사진을 백업하고 결제 페이지 URL 반환"""
    try:
        session = await orchestrator.request_checkout(body.success_url, body.cancel_url, body.email)
    except HairDirectorException as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response("결제 세션 생성", e)
    return {"id": session.id, "url": session.url}


@router.post("/session/email")
@limiter.limit("5/minute")
async def session_email(
    request: Request,
    body: EmailRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)
):
    """현재 결과 리포트 이메일 전송 (주소는 전송 전에 검증)"""
    try:
        message_id = await orchestrator.send_report(body.email)
    except HairDirectorException as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response("리포트 이메일 전송", e)
    return {"success": True, "messageId": message_id}


@router.post("/session/refund")
@limiter.limit("5/minute")
async def session_refund(
    request: Request,
    body: RefundRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)
):
    """에러 배너의 환불 요청"""
    try:
        result = await orchestrator.request_refund(body.reason)
    except HairDirectorException as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response("환불 요청", e)
    return {
        "success": True,
        "userNotified": result.user_notified,
        "session": orchestrator.view()
    }


@router.post("/session/bookmark")
async def bookmark_grid_cell(
    body: BookmarkGridCellRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)
):
    """결과 그리드의 한 칸을 저장함에 추가"""
    if orchestrator.state != AppState.COMPLETED or not orchestrator.result_image:
        return error_response(HairDirectorException("저장할 결과가 없습니다."))

    library = LibraryService(orchestrator.store)
    try:
        saved = library.bookmark_grid_cell(
            orchestrator.result_image, orchestrator.recommended_styles, body.index
        )
    except IndexError:
        return error_response(HairDirectorException("잘못된 그리드 위치입니다."))

    return {
        "success": saved is not None,
        "saved": saved.model_dump(mode="json", by_alias=True) if saved else None
    }
