"""
Analysis/generation orchestrator

One instance per client drives the session state machine:

    IDLE -> PREVIEW -> ANALYZING -> GENERATING -> COMPLETED
                           \\____________\\______-> ERROR

ERROR returns to PREVIEW on retry; reset returns to IDLE from any state.
Collaborator failures stop here: they become an ERROR state plus an
ErrorBanner and are never raised to the caller.
"""

import time
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool

from core.exceptions import (
    AnalysisInProgressException,
    EmailServiceNotConfiguredException,
    GeminiAPIException,
    GeminiPermissionException,
    GeminiRateLimitException,
    HairDirectorException,
    InvalidEmailException,
)
from core.logging import logger, log_structured
from core.monitoring import capture_exception, track_gemini_api_call
from models.schemas import AnalysisResult
from services.checkout_service import (
    CheckoutService,
    CheckoutSession,
    PaymentCallback,
    parse_payment_callback,
)
from services.email_service import EmailService, RefundEmailResult, is_valid_email
from services.gemini_analysis_service import is_credential_error
from services.image_acquisition import validate_image
from services.premium_gate import PremiumEntitlementGate, refund_available
from services.recommendations import normalize_to_nine
from storage.local_store import LocalPersistenceStore
from storage.models import FaceAnalysisSummary, NewHistoryItem, PremiumStatus, SessionSnapshot
from storage.session_snapshot import SessionSnapshotManager
from utils.image_utils import parse_data_uri, to_data_uri

GENERIC_ERROR_MESSAGE = "분석 중 오류가 발생했습니다. 다시 시도해주세요."


class AppState(str, Enum):
    IDLE = "idle"
    PREVIEW = "preview"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


class OneShotFlag(str, Enum):
    NOT_STARTED = "not_started"
    IN_FLIGHT = "in_flight"
    DONE = "done"


class AttemptOutcome(str, Enum):
    COMPLETED = "completed"
    ERROR = "error"
    PAYMENT_REQUIRED = "payment_required"
    IGNORED = "ignored"


@dataclass
class ErrorBanner:
    """The single user-facing message for a failed attempt"""

    message: str
    show_credential_change: bool = False
    show_refund: bool = False
    retry_after: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_error_banner(error: Exception, refund_offered: bool) -> ErrorBanner:
    """Turn a collaborator failure into a banner; raw payloads never reach the message"""
    if isinstance(error, HairDirectorException):
        message = error.message
    else:
        message = GENERIC_ERROR_MESSAGE

    retry_after = error.retry_after if isinstance(error, GeminiRateLimitException) else None
    credential = isinstance(error, GeminiPermissionException) or is_credential_error(str(error))

    return ErrorBanner(
        message=message,
        show_credential_change=credential,
        show_refund=refund_offered,
        retry_after=retry_after,
    )


class AnalysisOrchestrator:
    """
    Session state machine for one client

    Args:
        store: Durable history/saved collections
        snapshots: Ephemeral snapshot, image backup and one-shot markers
        gate: Premium entitlement
        analysis_service: Anything with analyze(image_base64, mime_type) -> AnalysisResult
        synthesis_service: Anything with generate_grid(image_base64, mime_type, styles) -> GeneratedImage
        checkout_service: Polar client (payment redirect and email backfill)
        email_service: Resend client (report and refund emails)
    """

    def __init__(
        self,
        store: LocalPersistenceStore,
        snapshots: SessionSnapshotManager,
        gate: PremiumEntitlementGate,
        analysis_service,
        synthesis_service,
        checkout_service: Optional[CheckoutService] = None,
        email_service: Optional[EmailService] = None
    ):
        self.store = store
        self.snapshots = snapshots
        self.gate = gate
        self.analysis_service = analysis_service
        self.synthesis_service = synthesis_service
        self.checkout_service = checkout_service
        self.email_service = email_service

        self.state = AppState.IDLE
        self.original_image: Optional[str] = None
        self.result_image: Optional[str] = None
        self.analysis_result: Optional[AnalysisResult] = None
        self.recommended_styles: List[str] = []
        self.user_email: Optional[str] = None
        self.error: Optional[ErrorBanner] = None
        self.last_history_id: Optional[str] = None

        # None until a payment redirect arms it
        self.auto_start: Optional[OneShotFlag] = None
        self.auto_export = OneShotFlag.NOT_STARTED

        # Bumped by reset/acquire so a superseded in-flight attempt does not write state
        self._attempt_id = 0
        # Survives reset: at most one collaborator attempt per client
        self._in_flight = False

    @property
    def is_busy(self) -> bool:
        """A collaborator attempt is running, even if reset has superseded it"""
        return self._in_flight

    # ========== Image acquisition ==========
    def acquire_image(self, data_uri: str) -> None:
        """
        IDLE/PREVIEW/COMPLETED/ERROR -> PREVIEW with a new photo

        Raises:
            ImageAcquisitionException: Invalid image; state is left untouched
            AnalysisInProgressException: An attempt is in flight, including one superseded by reset
        """
        if self._in_flight or self.state in (AppState.ANALYZING, AppState.GENERATING):
            raise AnalysisInProgressException()

        image = validate_image(data_uri)

        # New work supersedes the old session
        self.snapshots.clear_snapshot()
        self._clear_result()
        self.original_image = image.data_uri
        self.state = AppState.PREVIEW
        logger.info(f"📸 이미지 준비 완료 ({image.mime_type})")

    def _clear_result(self) -> None:
        self._attempt_id += 1
        self.result_image = None
        self.analysis_result = None
        self.recommended_styles = []
        self.error = None
        self.last_history_id = None
        self.auto_export = OneShotFlag.NOT_STARTED

    # ========== Analysis attempt ==========
    async def start_analysis(self) -> AttemptOutcome:
        """
        PREVIEW -> ANALYZING -> GENERATING -> COMPLETED | ERROR

        Without an entitlement the attempt is diverted to payment and the
        state stays PREVIEW. Calls outside PREVIEW are ignored.
        """
        if self._in_flight or self.state != AppState.PREVIEW or not self.original_image:
            logger.info(f"⏭️ 분석 요청 무시 (state={self.state.value}, in_flight={self._in_flight})")
            return AttemptOutcome.IGNORED

        if not self.gate.is_granted():
            logger.info("💳 프리미엄 권한 없음 → 결제 필요")
            log_structured("payment_required", {})
            return AttemptOutcome.PAYMENT_REQUIRED

        status_at_attempt = self.gate.get_status()
        attempt_id = self._attempt_id
        mime_type, image_base64 = parse_data_uri(self.original_image)

        self.error = None
        self.state = AppState.ANALYZING
        self._in_flight = True
        logger.info("🔍 얼굴 분석 시작")

        try:
            outcome = await self._run_attempt(attempt_id, status_at_attempt, image_base64, mime_type)
        finally:
            self._in_flight = False

        if outcome == AttemptOutcome.COMPLETED:
            await self.maybe_auto_export()
        return outcome

    async def _run_attempt(self, attempt_id: int, status_at_attempt: PremiumStatus,
                           image_base64: str, mime_type: str) -> AttemptOutcome:
        try:
            analysis = await self._call(
                "analysis", self.analysis_service.analyze, image_base64, mime_type
            )
            styles = normalize_to_nine(analysis.recommended_names)
            if attempt_id != self._attempt_id:
                return self._superseded()

            self.analysis_result = analysis
            self.recommended_styles = styles
            self.state = AppState.GENERATING
            logger.info(f"🎨 3x3 그리드 생성 시작: {len(styles)}개 스타일")

            generated = await self._call(
                "generation", self.synthesis_service.generate_grid, image_base64, mime_type, styles
            )
        except Exception as e:
            if attempt_id != self._attempt_id:
                return self._superseded()
            self._fail(e, status_at_attempt)
            return AttemptOutcome.ERROR

        if attempt_id != self._attempt_id:
            return self._superseded()

        self.result_image = to_data_uri(generated.image_base64, generated.mime_type)
        self._complete()
        return AttemptOutcome.COMPLETED

    async def _call(self, operation: str, func: Callable, *args):
        start = time.time()
        try:
            result = await run_in_threadpool(func, *args)
        except Exception:
            track_gemini_api_call(operation, (time.time() - start) * 1000, success=False)
            raise
        track_gemini_api_call(operation, (time.time() - start) * 1000, success=True)
        return result

    def _superseded(self) -> AttemptOutcome:
        # The attempt still counts as spent
        self.gate.consume()
        logger.warning("⚠️ 진행 중이던 분석이 초기화로 대체되었습니다")
        return AttemptOutcome.IGNORED

    def _complete(self) -> None:
        """Ordered success pipeline: snapshot, history, consume, COMPLETED"""
        self._best_effort("snapshot_save", lambda: self.snapshots.save_snapshot(SessionSnapshot(
            original_image=self.original_image,
            result_image=self.result_image,
            analysis_result=self.analysis_result,
            recommended_styles=self.recommended_styles,
            user_email=self.user_email,
        )))
        history_item = self._best_effort("history_append", lambda: self.store.add_history_item(NewHistoryItem(
            original_image=self.original_image,
            result_image=self.result_image,
            face_analysis=FaceAnalysisSummary.from_analysis(self.analysis_result),
            full_analysis_result=self.analysis_result,
            recommended_styles=self.recommended_styles,
        )))
        self.last_history_id = history_item.id if history_item else None

        self.gate.consume()
        self.state = AppState.COMPLETED

        logger.info("✅ 분석 및 그리드 생성 완료")
        log_structured("analysis_completed", {
            "face_shape": self.analysis_result.face_shape.value,
            "styles": self.recommended_styles,
            "history_saved": history_item is not None
        })

    def _best_effort(self, step: str, action: Callable):
        try:
            return action()
        except Exception as e:
            logger.error(f"❌ {step} 실패 (계속 진행): {str(e)}")
            capture_exception(e, tags={"component": "orchestrator", "step": step}, level="warning")
            return None

    def _fail(self, error: Exception, status_at_attempt: PremiumStatus) -> None:
        self.gate.consume()
        self.state = AppState.ERROR
        self.error = build_error_banner(error, refund_available(status_at_attempt))

        logger.error(f"❌ 분석 실패: {type(error).__name__}: {str(error)}")
        log_structured("analysis_failed", {
            "error_type": type(error).__name__,
            "credential_change": self.error.show_credential_change,
            "refund_offered": self.error.show_refund,
        })
        if not isinstance(error, GeminiAPIException):
            capture_exception(error, tags={"component": "orchestrator"})

    # ========== Retry / reset / resume ==========
    def retry(self) -> AppState:
        """ERROR -> PREVIEW while the photo is still held"""
        if self.state == AppState.ERROR and self.original_image:
            self.error = None
            self.state = AppState.PREVIEW
        return self.state

    def reset(self, confirmed: bool = False) -> AppState:
        """
        Any state -> IDLE; images and result are dropped

        The session snapshot is cleared only when the user confirmed.
        History is never touched.
        """
        if confirmed:
            self.snapshots.clear_snapshot()
        self._clear_result()
        self.original_image = None
        self.auto_start = None
        self.state = AppState.IDLE
        logger.info(f"🔄 세션 초기화 (confirmed={confirmed})")
        return self.state

    def resume_from_snapshot(self) -> bool:
        """Restore a resumable snapshot into COMPLETED (startup only)"""
        if self.state != AppState.IDLE:
            return False
        snapshot = self.snapshots.load_snapshot()
        if snapshot is None:
            return False

        self.original_image = snapshot.original_image
        self.result_image = snapshot.result_image
        self.analysis_result = snapshot.analysis_result
        self.recommended_styles = normalize_to_nine(
            snapshot.recommended_styles or snapshot.analysis_result.recommended_names
        )
        self.user_email = snapshot.user_email or self.user_email
        self.state = AppState.COMPLETED
        return True

    # ========== Payment ==========
    async def request_checkout(self, success_url: str, cancel_url: str, email: Optional[str] = None) -> CheckoutSession:
        """
        Back up the photo and create a hosted checkout

        Raises:
            PaymentServiceNotConfiguredException / CheckoutException
        """
        if self.original_image:
            self.snapshots.backup_pending_image(self.original_image)
        if email and is_valid_email(email):
            self.user_email = email
        return await run_in_threadpool(
            self.checkout_service.create_checkout_session, success_url, cancel_url, self.user_email
        )

    async def handle_payment_return(self, checkout: Optional[str], checkout_id: Optional[str] = None) -> Optional[PaymentCallback]:
        """
        Process `?checkout=success&checkout_id=...` once per checkout

        On success: grant the entitlement, backfill the purchaser email,
        restore the backed-up photo into PREVIEW and arm auto-start.
        On cancel: restore the photo without auto-start.

        Returns:
            The parsed callback, or None when absent or already processed
        """
        callback = parse_payment_callback(checkout, checkout_id)
        if callback is None:
            return None

        if callback.status == "cancel":
            logger.info("💳 결제 취소")
            self._restore_pending_image()
            return callback

        if self.snapshots.is_checkout_processed(callback.checkout_id):
            logger.info(f"⏭️ 이미 처리된 결제: {callback.checkout_id}")
            return None
        self.snapshots.mark_checkout_processed(callback.checkout_id)

        self.gate.grant(email=self.user_email, checkout_id=callback.checkout_id)
        logger.info(f"💳 결제 완료: {callback.checkout_id}")

        email = await self._lookup_purchaser_email(callback.checkout_id)
        if email:
            self.user_email = email
            self.gate.update_email(email)

        if self._restore_pending_image():
            self.auto_start = OneShotFlag.NOT_STARTED
        return callback

    async def _lookup_purchaser_email(self, checkout_id: str) -> Optional[str]:
        if self.checkout_service is None:
            return None
        try:
            details = await run_in_threadpool(self.checkout_service.get_checkout_details, checkout_id)
        except HairDirectorException as e:
            logger.warning(f"⚠️ 결제 이메일 조회 실패: {e.message}")
            return None
        return details.email if is_valid_email(details.email) else None

    def _restore_pending_image(self) -> bool:
        image = self.snapshots.take_pending_image()
        if not image:
            return False
        self.acquire_image(image)
        return True

    async def maybe_auto_start(self) -> AttemptOutcome:
        """Fire the post-payment analysis at most once per redirect"""
        if self.auto_start != OneShotFlag.NOT_STARTED:
            return AttemptOutcome.IGNORED
        if not (self.original_image and self.gate.is_granted()):
            return AttemptOutcome.IGNORED

        self.auto_start = OneShotFlag.IN_FLIGHT
        logger.info("🚀 결제 후 자동 분석 시작")
        try:
            return await self.start_analysis()
        finally:
            self.auto_start = OneShotFlag.DONE

    # ========== Email ==========
    async def send_report(self, email: Optional[str] = None) -> str:
        """
        Email the current result

        Raises:
            InvalidEmailException: Address fails local validation (nothing is sent)
            HairDirectorException: No result yet, or the email provider failed
        """
        address = email or self.user_email
        if not is_valid_email(address):
            raise InvalidEmailException()
        if self.analysis_result is None:
            raise HairDirectorException("전송할 분석 결과가 없습니다.")
        if self.email_service is None:
            raise EmailServiceNotConfiguredException()

        message_id = await run_in_threadpool(
            self.email_service.send_analysis_report, address, self.analysis_result, self.result_image
        )
        self.user_email = address
        return message_id

    async def maybe_auto_export(self) -> bool:
        """Send the report once per result when the purchaser email is known"""
        if self.state != AppState.COMPLETED or self.auto_export != OneShotFlag.NOT_STARTED:
            return False
        if not is_valid_email(self.user_email) or not self.result_image:
            return False
        if self.snapshots.is_auto_export_done(self.result_image):
            self.auto_export = OneShotFlag.DONE
            return False

        self.auto_export = OneShotFlag.IN_FLIGHT
        try:
            await self.send_report(self.user_email)
        except HairDirectorException as e:
            logger.warning(f"⚠️ 자동 리포트 전송 실패: {e.message}")
            return False
        finally:
            self.auto_export = OneShotFlag.DONE

        self.snapshots.mark_auto_export_done(self.result_image)
        logger.info(f"📧 자동 리포트 전송 완료: {self.user_email}")
        return True

    async def request_refund(self, reason: Optional[str] = None) -> RefundEmailResult:
        """
        Send the refund notice for the failed attempt shown in the banner

        Raises:
            HairDirectorException: No refundable failure is on screen
        """
        if self.state != AppState.ERROR or self.error is None or not self.error.show_refund:
            raise HairDirectorException("환불 가능한 요청이 없습니다.")
        if self.email_service is None:
            raise EmailServiceNotConfiguredException()

        result = await run_in_threadpool(
            self.email_service.send_refund_request,
            datetime.utcnow().isoformat(),
            self.user_email,
            reason,
            self.error.message,
        )
        if result.admin_message_id or result.user_message_id:
            self.error.show_refund = False
        else:
            logger.warning("⚠️ 환불 요청 메일이 전송되지 않았습니다 (재시도 가능)")
        return result

    # ========== View ==========
    def view(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "originalImage": self.original_image,
            "resultImage": self.result_image,
            "analysis": self.analysis_result.model_dump(mode="json", by_alias=True) if self.analysis_result else None,
            "recommendedStyles": list(self.recommended_styles),
            "userEmail": self.user_email,
            "error": self.error.to_dict() if self.error else None,
            "historyId": self.last_history_id,
            "autoStart": self.auto_start.value if self.auto_start else None,
        }
