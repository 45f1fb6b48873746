"""Pytest configuration and fixtures for testing"""

import os

# Set environment variables BEFORE importing main
os.environ.setdefault("GEMINI_API_KEY", "test_api_key_123456")
os.environ.pop("REDIS_URL", None)
os.environ.pop("POLAR_ACCESS_TOKEN", None)
os.environ.pop("RESEND_API_KEY", None)
os.environ["TESTING"] = "true"  # Skip AWS metadata probing during tests

import base64
import io
from typing import List, Optional
from unittest.mock import Mock

import pytest
from PIL import Image
from fastapi.testclient import TestClient

from core.exceptions import GeminiAPIException
from models.schemas import AnalysisResult
from services.checkout_service import CheckoutDetails, CheckoutService, CheckoutSession
from services.circuit_breaker import reset_circuit_breakers
from services.email_service import EmailService, RefundEmailResult
from services.hairstyle_synthesis_service import GeneratedImage
from services.orchestrator import AnalysisOrchestrator
from services.premium_gate import PremiumEntitlementGate
from storage.backend import InMemoryStorageBackend
from storage.local_store import LocalPersistenceStore
from storage.session_snapshot import SessionSnapshotManager
from utils.image_utils import to_data_uri

CLIENT_ID = "test-client-0001"


# ========== Image helpers ==========
def make_image_base64(color: str = "white", size=(640, 480), fmt: str = "JPEG") -> str:
    img = Image.new("RGB", size, color=color)
    img_bytes = io.BytesIO()
    img.save(img_bytes, format=fmt)
    return base64.b64encode(img_bytes.getvalue()).decode("utf-8")


def make_data_uri(color: str = "white", size=(640, 480)) -> str:
    return to_data_uri(make_image_base64(color, size), "image/jpeg")


@pytest.fixture
def sample_image_bytes():
    """Create a sample image for testing"""
    img = Image.new('RGB', (640, 480), color='white')
    img_bytes = io.BytesIO()
    img.save(img_bytes, format='JPEG')
    img_bytes.seek(0)
    return img_bytes


@pytest.fixture
def sample_data_uri():
    return make_data_uri()


@pytest.fixture
def result_data_uri():
    return make_data_uri(color="blue", size=(900, 900))


# ========== Analysis fixtures ==========
def create_mock_analysis_payload(recommendation_count: int = 9) -> dict:
    """Gemini analysis JSON as the model returns it"""
    names = ["리프컷", "댄디컷", "쉐도우펌", "가르마펌", "애즈펌",
             "투블럭컷", "슬릭백", "리젠트컷", "아이비리그컷"]
    return {
        "faceShape": "oval",
        "faceShapeKo": "계란형",
        "skinTone": "medium",
        "skinToneKo": "중간 톤",
        "upperRatio": 33,
        "middleRatio": 34,
        "lowerRatio": 33,
        "overallImpression": "균형 잡힌 얼굴형입니다",
        "features": [
            {"name": "balanced", "nameKo": "균형 잡힌 비율", "impact": "positive"},
            {"name": "forehead", "nameKo": "넓은 이마", "impact": "neutral"}
        ],
        "stylingTips": ["앞머리로 이마를 살짝 가려주세요"],
        "recommendations": [
            {"id": f"style-{i}", "name": name, "nameKo": name,
             "reason": "얼굴형에 잘 어울립니다", "score": 95 - i, "priority": i + 1}
            for i, name in enumerate(names[:recommendation_count])
        ],
        "avoidStyles": [{"name": "바가지컷", "reason": "얼굴이 넓어 보입니다"}]
    }


@pytest.fixture
def analysis_payload():
    return create_mock_analysis_payload()


@pytest.fixture
def analysis_result():
    return AnalysisResult.model_validate(create_mock_analysis_payload())


class FakeAnalysisService:
    """In-process stand-in for the Gemini analysis collaborator"""

    def __init__(self, result: Optional[AnalysisResult] = None, error: Optional[Exception] = None):
        self.result = result or AnalysisResult.model_validate(create_mock_analysis_payload())
        self.error = error
        self.calls: List[tuple] = []

    def analyze(self, image_base64: str, mime_type: str = "image/png") -> AnalysisResult:
        self.calls.append((image_base64, mime_type))
        if self.error is not None:
            raise self.error
        return self.result


class FakeSynthesisService:
    """In-process stand-in for the Gemini image collaborator"""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.image_base64 = make_image_base64(color="blue", size=(900, 900))
        self.calls: List[tuple] = []

    def generate_grid(self, image_base64: str, mime_type: str = "image/png", styles=None) -> GeneratedImage:
        self.calls.append((image_base64, mime_type, list(styles or [])))
        if self.error is not None:
            raise self.error
        return GeneratedImage(image_base64=self.image_base64, mime_type="image/jpeg")


@pytest.fixture
def analysis_service():
    return FakeAnalysisService()


@pytest.fixture
def synthesis_service():
    return FakeSynthesisService()


@pytest.fixture
def checkout_service():
    service = Mock(spec=CheckoutService)
    service.create_checkout_session.return_value = CheckoutSession(
        id="chk_123", url="https://checkout.polar.sh/chk_123"
    )
    service.get_checkout_details.return_value = CheckoutDetails(email="buyer@example.com", status="succeeded")
    return service


@pytest.fixture
def email_service():
    service = Mock(spec=EmailService)
    service.send_analysis_report.return_value = "msg_report_1"
    service.send_refund_request.return_value = RefundEmailResult(
        admin_message_id="msg_admin_1", user_message_id="msg_user_1"
    )
    return service


# ========== Storage fixtures ==========
@pytest.fixture
def backend():
    return InMemoryStorageBackend()


@pytest.fixture
def durable_store(backend):
    return backend.durable(CLIENT_ID)


@pytest.fixture
def ephemeral_store(backend):
    return backend.ephemeral(CLIENT_ID)


@pytest.fixture
def local_store(durable_store):
    return LocalPersistenceStore(durable_store)


@pytest.fixture
def snapshots(ephemeral_store):
    return SessionSnapshotManager(ephemeral_store)


@pytest.fixture
def gate(durable_store):
    return PremiumEntitlementGate(durable_store)


@pytest.fixture
def orchestrator(local_store, snapshots, gate, analysis_service, synthesis_service,
                 checkout_service, email_service):
    return AnalysisOrchestrator(
        store=local_store,
        snapshots=snapshots,
        gate=gate,
        analysis_service=analysis_service,
        synthesis_service=synthesis_service,
        checkout_service=checkout_service,
        email_service=email_service,
    )


@pytest.fixture(autouse=True)
def reset_breakers():
    """Circuit breakers are module-level; keep tests independent"""
    reset_circuit_breakers()
    yield
    reset_circuit_breakers()


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """slowapi counters are module-level and keyed by client address"""
    from api.endpoints import analyze, checkout, email, generate, session

    for module in (analyze, checkout, email, generate, session):
        module.limiter.reset()
    yield


# ========== Test Client Setup ==========
@pytest.fixture
def client():
    """Create a test client for FastAPI app"""
    from core.dependencies import reset_services
    from main import app

    reset_services()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    reset_services()


@pytest.fixture
def api_client(orchestrator):
    """Test client whose session endpoints drive the fixture orchestrator"""
    from core.dependencies import get_orchestrator, reset_services
    from main import app

    reset_services()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app, headers={"X-Client-Id": CLIENT_ID}) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    reset_services()


@pytest.fixture
def failing_analysis_service():
    return FakeAnalysisService(error=GeminiAPIException())
