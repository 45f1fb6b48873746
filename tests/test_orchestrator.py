"""Tests for the analysis/generation orchestrator state machine"""

import asyncio
import threading

import pytest

from core.exceptions import (
    AnalysisInProgressException,
    EmailSendException,
    GeminiPermissionException,
    GeminiRateLimitException,
    ImageGenerationException,
    InvalidEmailException,
    InvalidFileFormatException,
)
from services.orchestrator import (
    AnalysisOrchestrator,
    AppState,
    AttemptOutcome,
    GENERIC_ERROR_MESSAGE,
    OneShotFlag,
    build_error_banner,
)
from services.email_service import RefundEmailResult
from services.premium_gate import PremiumEntitlementGate
from storage.backend import InMemoryStorageBackend
from storage.local_store import LocalPersistenceStore
from storage.models import SessionSnapshot
from storage.session_snapshot import SessionSnapshotManager
from tests.conftest import (
    CLIENT_ID,
    FakeAnalysisService,
    FakeSynthesisService,
    create_mock_analysis_payload,
    make_data_uri,
)
from models.schemas import AnalysisResult


class BlockingAnalysisService(FakeAnalysisService):
    """Analysis that holds until released, to interleave calls with an attempt in flight"""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def analyze(self, image_base64: str, mime_type: str = "image/png") -> AnalysisResult:
        self.entered.set()
        self.release.wait(timeout=5)
        return super().analyze(image_base64, mime_type)


def build_orchestrator(analysis_service=None, synthesis_service=None, quota_bytes=None,
                       checkout_service=None, email_service=None):
    backend = InMemoryStorageBackend(quota_bytes=quota_bytes)
    durable = backend.durable(CLIENT_ID)
    return AnalysisOrchestrator(
        store=LocalPersistenceStore(durable),
        snapshots=SessionSnapshotManager(backend.ephemeral(CLIENT_ID)),
        gate=PremiumEntitlementGate(durable),
        analysis_service=analysis_service or FakeAnalysisService(),
        synthesis_service=synthesis_service or FakeSynthesisService(),
        checkout_service=checkout_service,
        email_service=email_service,
    )


class TestImageAcquisition:
    """acquire_image transitions"""

    def test_acquire_moves_idle_to_preview(self, orchestrator, sample_data_uri):
        """Test that a valid photo moves IDLE to PREVIEW"""
        orchestrator.acquire_image(sample_data_uri)

        assert orchestrator.state == AppState.PREVIEW
        assert orchestrator.original_image.startswith("data:image/jpeg;base64,")

    def test_non_image_rejected_state_untouched(self, orchestrator):
        """Test that a non-image file is rejected and the state stays IDLE"""
        with pytest.raises(InvalidFileFormatException):
            orchestrator.acquire_image("data:application/pdf;base64,JVBERi0xLjQ=")

        assert orchestrator.state == AppState.IDLE
        assert orchestrator.original_image is None

    def test_acquire_clears_existing_snapshot(self, orchestrator, snapshots, analysis_result, sample_data_uri):
        """Test that a new photo supersedes the saved session"""
        snapshots.save_snapshot(SessionSnapshot(
            original_image=sample_data_uri,
            result_image=sample_data_uri,
            analysis_result=analysis_result,
        ))

        orchestrator.acquire_image(sample_data_uri)

        assert snapshots.load_snapshot() is None

    def test_acquire_rejected_while_analyzing(self, orchestrator, sample_data_uri):
        """Test that the photo cannot change during an attempt"""
        orchestrator.acquire_image(sample_data_uri)
        orchestrator.state = AppState.ANALYZING

        with pytest.raises(AnalysisInProgressException):
            orchestrator.acquire_image(make_data_uri(color="red"))


class TestStartAnalysis:
    """start_analysis happy path and payment diversion"""

    @pytest.mark.asyncio
    async def test_ignored_outside_preview(self, orchestrator, gate):
        """Test that a call in IDLE does nothing"""
        gate.grant(email=None, checkout_id="chk_1")

        outcome = await orchestrator.start_analysis()

        assert outcome == AttemptOutcome.IGNORED
        assert orchestrator.state == AppState.IDLE
        assert gate.is_granted() is True

    @pytest.mark.asyncio
    async def test_scenario_a_no_entitlement_requires_payment(self, orchestrator, analysis_service, sample_data_uri):
        """Scenario A: no entitlement diverts to payment and keeps PREVIEW"""
        orchestrator.acquire_image(sample_data_uri)

        outcome = await orchestrator.start_analysis()

        assert outcome == AttemptOutcome.PAYMENT_REQUIRED
        assert orchestrator.state == AppState.PREVIEW
        assert analysis_service.calls == []

    @pytest.mark.asyncio
    async def test_success_pipeline(self, orchestrator, gate, local_store, snapshots, sample_data_uri):
        """Test the ordered success pipeline: snapshot, history, consume, COMPLETED"""
        gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)

        outcome = await orchestrator.start_analysis()

        assert outcome == AttemptOutcome.COMPLETED
        assert orchestrator.state == AppState.COMPLETED
        assert orchestrator.result_image.startswith("data:image/jpeg;base64,")
        assert len(orchestrator.recommended_styles) == 9
        assert gate.is_granted() is False

        history = local_store.get_history()
        assert len(history) == 1
        assert history[0].id == orchestrator.last_history_id
        assert history[0].full_analysis_result is not None

        snapshot = snapshots.load_snapshot()
        assert snapshot is not None
        assert snapshot.recommended_styles == orchestrator.recommended_styles

    @pytest.mark.asyncio
    async def test_scenario_b_five_recommendations_padded_to_nine(self, sample_data_uri):
        """Scenario B: five recommendations become nine, first five in collaborator order"""
        analysis = AnalysisResult.model_validate(create_mock_analysis_payload(recommendation_count=5))
        synthesis = FakeSynthesisService()
        orchestrator = build_orchestrator(FakeAnalysisService(result=analysis), synthesis)
        orchestrator.gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)

        await orchestrator.start_analysis()

        styles = orchestrator.recommended_styles
        assert len(styles) == 9
        assert len(set(styles)) == 9
        assert styles[:5] == analysis.recommended_names
        assert synthesis.calls[0][2] == styles

    @pytest.mark.asyncio
    async def test_scenario_b_grid_keeps_list_order_not_priority(self, sample_data_uri):
        """Test that grid styles follow the returned list even when priorities disagree"""
        payload = create_mock_analysis_payload(recommendation_count=5)
        for rec in payload["recommendations"]:
            rec["priority"] = 6 - rec["priority"]
        orchestrator = build_orchestrator(FakeAnalysisService(result=AnalysisResult.model_validate(payload)))
        orchestrator.gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)

        await orchestrator.start_analysis()

        assert orchestrator.recommended_styles[:5] == ["리프컷", "댄디컷", "쉐도우펌", "가르마펌", "애즈펌"]

    @pytest.mark.asyncio
    async def test_scenario_c_generation_failure(self, sample_data_uri):
        """Scenario C: generation failure -> ERROR, entitlement consumed, no history"""
        orchestrator = build_orchestrator(synthesis_service=FakeSynthesisService(error=ImageGenerationException()))
        orchestrator.gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)

        outcome = await orchestrator.start_analysis()

        assert outcome == AttemptOutcome.ERROR
        assert orchestrator.state == AppState.ERROR
        assert orchestrator.gate.is_granted() is False
        assert orchestrator.store.get_history() == []
        assert orchestrator.error.message == ImageGenerationException().message
        assert orchestrator.error.show_refund is True

    @pytest.mark.asyncio
    async def test_scenario_d_quota_exceeded_still_completes(self, sample_data_uri):
        """Scenario D: persistence at quota -> COMPLETED, no history, nothing raised"""
        orchestrator = build_orchestrator(quota_bytes=1500)
        orchestrator.gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)

        outcome = await orchestrator.start_analysis()

        assert outcome == AttemptOutcome.COMPLETED
        assert orchestrator.state == AppState.COMPLETED
        assert orchestrator.store.get_history() == []
        assert orchestrator.last_history_id is None
        assert orchestrator.gate.is_granted() is False

    @pytest.mark.asyncio
    async def test_analysis_failure_consumes_entitlement(self, sample_data_uri):
        """Test that a failed analysis also consumes the entitlement"""
        synthesis = FakeSynthesisService()
        orchestrator = build_orchestrator(
            FakeAnalysisService(error=GeminiRateLimitException(retry_after=42)), synthesis
        )
        orchestrator.gate.grant(email=None, checkout_id=None)
        orchestrator.acquire_image(sample_data_uri)

        outcome = await orchestrator.start_analysis()

        assert outcome == AttemptOutcome.ERROR
        assert orchestrator.gate.is_granted() is False
        assert orchestrator.error.retry_after == 42
        # No checkout id on record -> no refund offer
        assert orchestrator.error.show_refund is False
        assert synthesis.calls == []

    @pytest.mark.asyncio
    async def test_permission_error_offers_credential_change(self, sample_data_uri):
        """Test that a permission failure offers a credential change"""
        orchestrator = build_orchestrator(FakeAnalysisService(error=GeminiPermissionException()))
        orchestrator.gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)

        await orchestrator.start_analysis()

        assert orchestrator.error.show_credential_change is True

    @pytest.mark.asyncio
    async def test_unexpected_error_uses_generic_message(self, sample_data_uri):
        """Test that raw exception text never reaches the banner"""
        orchestrator = build_orchestrator(FakeAnalysisService(error=RuntimeError("secret stack detail")))
        orchestrator.gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)

        await orchestrator.start_analysis()

        assert orchestrator.error.message == GENERIC_ERROR_MESSAGE
        assert "secret" not in orchestrator.error.message


class TestRetryAndReset:
    """retry / reset / resume"""

    @pytest.mark.asyncio
    async def test_retry_returns_to_preview(self, sample_data_uri):
        """Test that retry moves ERROR back to PREVIEW with the same photo"""
        orchestrator = build_orchestrator(FakeAnalysisService(error=ImageGenerationException()))
        orchestrator.gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)
        await orchestrator.start_analysis()
        photo = orchestrator.original_image

        assert orchestrator.retry() == AppState.PREVIEW
        assert orchestrator.original_image == photo
        assert orchestrator.error is None

    def test_retry_noop_outside_error(self, orchestrator):
        """Test that retry does nothing in IDLE"""
        assert orchestrator.retry() == AppState.IDLE

    @pytest.mark.asyncio
    async def test_reset_during_attempt_does_not_allow_second_attempt(self, sample_data_uri):
        """Test that one entitlement never pays for two concurrent attempts"""
        analysis = BlockingAnalysisService()
        orchestrator = build_orchestrator(analysis)
        orchestrator.gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)

        first = asyncio.create_task(orchestrator.start_analysis())
        while not analysis.entered.is_set():
            await asyncio.sleep(0.01)

        orchestrator.reset(confirmed=True)
        with pytest.raises(AnalysisInProgressException):
            orchestrator.acquire_image(sample_data_uri)
        assert await orchestrator.start_analysis() == AttemptOutcome.IGNORED

        analysis.release.set()
        assert await first == AttemptOutcome.IGNORED
        assert len(analysis.calls) == 1
        assert orchestrator.gate.is_granted() is False
        assert orchestrator.store.get_history() == []

        # Once the superseded attempt is over, a new photo is accepted again
        orchestrator.acquire_image(sample_data_uri)
        assert await orchestrator.start_analysis() == AttemptOutcome.PAYMENT_REQUIRED

    @pytest.mark.asyncio
    async def test_scenario_e_confirmed_reset(self, orchestrator, gate, snapshots, local_store, sample_data_uri):
        """Scenario E: confirmed reset from COMPLETED clears snapshot and images, keeps history"""
        gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)
        await orchestrator.start_analysis()
        history_before = local_store.get_history()

        orchestrator.reset(confirmed=True)

        assert orchestrator.state == AppState.IDLE
        assert orchestrator.original_image is None
        assert orchestrator.result_image is None
        assert snapshots.load_snapshot() is None
        assert local_store.get_history() == history_before

    @pytest.mark.asyncio
    async def test_unconfirmed_reset_keeps_snapshot(self, orchestrator, gate, snapshots, sample_data_uri):
        """Test that an unconfirmed reset leaves the snapshot for reload recovery"""
        gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)
        await orchestrator.start_analysis()

        orchestrator.reset(confirmed=False)

        assert orchestrator.state == AppState.IDLE
        assert snapshots.load_snapshot() is not None

    @pytest.mark.asyncio
    async def test_resume_from_snapshot(self, orchestrator, gate, snapshots, local_store, analysis_service,
                                        synthesis_service, sample_data_uri):
        """Test that a fresh orchestrator resumes a saved session into COMPLETED"""
        gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)
        await orchestrator.start_analysis()

        reloaded = AnalysisOrchestrator(local_store, snapshots, gate, analysis_service, synthesis_service)

        assert reloaded.resume_from_snapshot() is True
        assert reloaded.state == AppState.COMPLETED
        assert reloaded.result_image == orchestrator.result_image
        assert reloaded.recommended_styles == orchestrator.recommended_styles

    def test_resume_without_snapshot(self, orchestrator):
        assert orchestrator.resume_from_snapshot() is False
        assert orchestrator.state == AppState.IDLE


class TestPaymentReturn:
    """Checkout redirect handling and auto-start"""

    @pytest.mark.asyncio
    async def test_request_checkout_backs_up_photo(self, orchestrator, snapshots, checkout_service, sample_data_uri):
        """Test that the photo is backed up before leaving for checkout"""
        orchestrator.acquire_image(sample_data_uri)

        session = await orchestrator.request_checkout("https://app/success", "https://app/cancel", "me@example.com")

        assert session.url == "https://checkout.polar.sh/chk_123"
        assert snapshots.peek_pending_image() == orchestrator.original_image
        checkout_service.create_checkout_session.assert_called_once_with(
            "https://app/success", "https://app/cancel", "me@example.com"
        )

    @pytest.mark.asyncio
    async def test_success_grants_restores_and_arms(self, orchestrator, snapshots, gate, sample_data_uri):
        """Test that a success callback grants, backfills email, restores the photo and arms auto-start"""
        snapshots.backup_pending_image(sample_data_uri)

        callback = await orchestrator.handle_payment_return("success", "chk_42")

        assert callback.checkout_id == "chk_42"
        assert gate.is_granted() is True
        assert gate.get_status().email == "buyer@example.com"
        assert orchestrator.user_email == "buyer@example.com"
        assert orchestrator.state == AppState.PREVIEW
        assert orchestrator.auto_start == OneShotFlag.NOT_STARTED
        assert snapshots.peek_pending_image() is None

    @pytest.mark.asyncio
    async def test_same_checkout_processed_once(self, orchestrator, gate):
        """Test that a reloaded success URL does not grant twice"""
        await orchestrator.handle_payment_return("success", "chk_42")
        gate.consume()

        assert await orchestrator.handle_payment_return("success", "chk_42") is None
        assert gate.is_granted() is False

    @pytest.mark.asyncio
    async def test_cancel_restores_photo_without_auto_start(self, orchestrator, snapshots, gate, sample_data_uri):
        snapshots.backup_pending_image(sample_data_uri)

        callback = await orchestrator.handle_payment_return("cancel")

        assert callback.status == "cancel"
        assert gate.is_granted() is False
        assert orchestrator.state == AppState.PREVIEW
        assert orchestrator.auto_start is None

    @pytest.mark.asyncio
    async def test_auto_start_fires_once(self, orchestrator, snapshots, analysis_service, email_service,
                                         sample_data_uri):
        """Test that the post-payment analysis runs exactly once"""
        snapshots.backup_pending_image(sample_data_uri)
        await orchestrator.handle_payment_return("success", "chk_42")

        first = await orchestrator.maybe_auto_start()
        second = await orchestrator.maybe_auto_start()

        assert first == AttemptOutcome.COMPLETED
        assert second == AttemptOutcome.IGNORED
        assert orchestrator.auto_start == OneShotFlag.DONE
        assert len(analysis_service.calls) == 1

    @pytest.mark.asyncio
    async def test_auto_start_not_armed_without_redirect(self, orchestrator, gate, analysis_service, sample_data_uri):
        gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)

        assert await orchestrator.maybe_auto_start() == AttemptOutcome.IGNORED
        assert analysis_service.calls == []

    @pytest.mark.asyncio
    async def test_auto_export_after_completion(self, orchestrator, snapshots, email_service, sample_data_uri):
        """Test that the purchaser gets the report once per result"""
        snapshots.backup_pending_image(sample_data_uri)
        await orchestrator.handle_payment_return("success", "chk_42")
        await orchestrator.maybe_auto_start()

        assert email_service.send_analysis_report.call_count == 1
        assert orchestrator.auto_export == OneShotFlag.DONE
        assert snapshots.is_auto_export_done(orchestrator.result_image) is True

        # A reload of the same result does not resend
        orchestrator.auto_export = OneShotFlag.NOT_STARTED
        assert await orchestrator.maybe_auto_export() is False
        assert email_service.send_analysis_report.call_count == 1

    @pytest.mark.asyncio
    async def test_auto_export_failure_keeps_completed(self, orchestrator, snapshots, email_service, sample_data_uri):
        """Test that a failed report send does not fail the finished attempt"""
        email_service.send_analysis_report.side_effect = EmailSendException()
        snapshots.backup_pending_image(sample_data_uri)
        await orchestrator.handle_payment_return("success", "chk_42")

        outcome = await orchestrator.maybe_auto_start()

        assert outcome == AttemptOutcome.COMPLETED
        assert orchestrator.state == AppState.COMPLETED
        assert orchestrator.auto_export == OneShotFlag.DONE
        assert snapshots.is_auto_export_done(orchestrator.result_image) is False


class TestEmailAndRefund:
    """Report email and refund request"""

    @pytest.mark.asyncio
    async def test_invalid_email_rejected_before_network(self, orchestrator, email_service):
        with pytest.raises(InvalidEmailException):
            await orchestrator.send_report("not-an-email")

        email_service.send_analysis_report.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_report_for_current_result(self, orchestrator, gate, email_service, sample_data_uri):
        gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)
        await orchestrator.start_analysis()

        message_id = await orchestrator.send_report("me@example.com")

        assert message_id == "msg_report_1"
        assert orchestrator.user_email == "me@example.com"

    @pytest.mark.asyncio
    async def test_refund_after_paid_failure(self, email_service, sample_data_uri):
        """Test that a refund is requested once for a paid failure"""
        orchestrator = build_orchestrator(
            synthesis_service=FakeSynthesisService(error=ImageGenerationException()),
            email_service=email_service,
        )
        orchestrator.gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)
        await orchestrator.start_analysis()

        result = await orchestrator.request_refund("생성 실패")

        assert result.user_notified is True
        assert orchestrator.error.show_refund is False
        email_service.send_refund_request.assert_called_once()

    @pytest.mark.asyncio
    async def test_refund_offer_kept_when_nothing_delivered(self, email_service, sample_data_uri):
        email_service.send_refund_request.return_value = RefundEmailResult(
            admin_message_id=None, user_message_id=None
        )
        orchestrator = build_orchestrator(
            synthesis_service=FakeSynthesisService(error=ImageGenerationException()),
            email_service=email_service,
        )
        orchestrator.gate.grant(email=None, checkout_id="chk_1")
        orchestrator.acquire_image(sample_data_uri)
        await orchestrator.start_analysis()

        result = await orchestrator.request_refund()

        assert result.user_notified is False
        assert orchestrator.error.show_refund is True


class TestErrorBanner:
    """build_error_banner taxonomy"""

    def test_credential_marker_in_plain_error(self):
        banner = build_error_banner(RuntimeError("Requested entity was not found."), refund_offered=False)

        assert banner.show_credential_change is True
        assert banner.message == GENERIC_ERROR_MESSAGE

    def test_rate_limit_carries_retry_after(self):
        banner = build_error_banner(GeminiRateLimitException(retry_after=30), refund_offered=True)

        assert banner.retry_after == 30
        assert banner.show_refund is True
        assert banner.to_dict()["retry_after"] == 30
