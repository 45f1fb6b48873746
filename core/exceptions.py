"""Custom exception classes for Hair Director Backend"""

from typing import Optional


class HairDirectorException(Exception):
    """Base exception for Hair Director application"""

    def __init__(self, message: str = "오류가 발생했습니다"):
        self.message = message
        super().__init__(self.message)


# ========== Image acquisition ==========
class ImageAcquisitionException(HairDirectorException):
    """Raised when an image cannot be acquired from file, drop or camera"""

    def __init__(self, message: str = "이미지를 불러올 수 없습니다"):
        super().__init__(message)


class InvalidFileFormatException(ImageAcquisitionException):
    """Raised when the selected file is not an image"""

    def __init__(self, message: str = "지원하지 않는 파일 형식입니다. (jpg, jpeg, png, webp만 가능)"):
        super().__init__(message)


class CameraPermissionDeniedException(ImageAcquisitionException):
    """Raised when the user denies camera access"""

    def __init__(self, message: str = "카메라 권한이 거부되었습니다. 브라우저 설정에서 카메라 접근을 허용해주세요."):
        super().__init__(message)


class CameraNotFoundException(ImageAcquisitionException):
    """Raised when no camera device is available"""

    def __init__(self, message: str = "카메라를 찾을 수 없습니다."):
        super().__init__(message)


class CameraBusyException(ImageAcquisitionException):
    """Raised when the camera is in use by another application"""

    def __init__(self, message: str = "카메라가 다른 앱에서 사용 중입니다."):
        super().__init__(message)


# ========== Gemini collaborators ==========
class GeminiAPIException(HairDirectorException):
    """Raised when Gemini API operations fail"""

    def __init__(self, message: str = "AI 분석 중 오류가 발생했습니다"):
        super().__init__(message)


class GeminiRateLimitException(GeminiAPIException):
    """Raised when Gemini API rate limit is exceeded"""

    def __init__(self, retry_after: int = 60, message: Optional[str] = None):
        if message is None:
            message = "API 요청 한도를 초과했습니다. 잠시 후 다시 시도해주세요."
        self.retry_after = retry_after
        super().__init__(message)


class GeminiInvalidResponseException(GeminiAPIException):
    """Raised when Gemini API returns invalid/unparseable response"""

    def __init__(self, message: str = "AI 응답을 파싱할 수 없습니다"):
        super().__init__(message)


class GeminiPermissionException(GeminiAPIException):
    """Raised on 403 / PERMISSION_DENIED / entity-not-found responses"""

    def __init__(self, message: str = "이 기능을 사용하려면 결제가 활성화된 프로젝트의 API 키가 필요합니다."):
        super().__init__(message)


class ImageGenerationException(GeminiAPIException):
    """Raised when the image model returns no image"""

    def __init__(self, message: str = "이미지 생성에 실패했습니다. 다시 시도해주세요."):
        super().__init__(message)


class CircuitBreakerOpenException(HairDirectorException):
    """Raised when circuit breaker is open (service unavailable)"""

    def __init__(self, service_name: str = "Service", message: Optional[str] = None):
        if message is None:
            message = f"{service_name} 일시적으로 사용할 수 없습니다. 잠시 후 다시 시도해주세요."
        self.service_name = service_name
        super().__init__(message)


# ========== Payment ==========
class PaymentServiceNotConfiguredException(HairDirectorException):
    """Raised when Polar.sh credentials are missing"""

    def __init__(self, message: str = "Payment service not configured"):
        super().__init__(message)


class CheckoutException(HairDirectorException):
    """Raised when the checkout provider rejects a request"""

    def __init__(self, message: str = "결제 세션 생성에 실패했습니다.", status_code: int = 502, details: str = ""):
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class InvalidWebhookSignatureException(HairDirectorException):
    """Raised when a payment webhook signature does not verify"""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


# ========== Email ==========
class InvalidEmailException(HairDirectorException):
    """Raised when an email address fails local validation"""

    def __init__(self, message: str = "올바른 이메일 주소를 입력해주세요."):
        super().__init__(message)


class EmailServiceNotConfiguredException(HairDirectorException):
    """Raised when RESEND_API_KEY is missing"""

    def __init__(self, message: str = "이메일 서버 설정 오류: RESEND_API_KEY가 없습니다."):
        super().__init__(message)


class EmailSendException(HairDirectorException):
    """Raised when the email provider rejects a send"""

    def __init__(self, message: str = "이메일 전송 중 오류가 발생했습니다."):
        super().__init__(message)


# ========== Storage ==========
class StorageException(HairDirectorException):
    """Raised when client storage operations fail"""

    def __init__(self, message: str = "저장소 오류가 발생했습니다"):
        super().__init__(message)


class StorageQuotaExceededException(StorageException):
    """Raised when a write would exceed the namespace byte quota"""

    def __init__(self, used: int = 0, quota: int = 0, message: Optional[str] = None):
        if message is None:
            message = f"저장 공간이 부족합니다 ({used}/{quota} bytes)"
        self.used = used
        self.quota = quota
        super().__init__(message)


class InvalidCategoryException(HairDirectorException):
    """Raised when a saved style category is outside cut/perm/color"""

    def __init__(self, category: str, message: Optional[str] = None):
        if message is None:
            message = f"지원하지 않는 카테고리입니다: {category}"
        self.category = category
        super().__init__(message)


# ========== Orchestration ==========
class AnalysisInProgressException(HairDirectorException):
    """Raised when the image is changed while an analysis attempt is in flight"""

    def __init__(self, message: str = "분석이 진행 중입니다. 잠시만 기다려주세요."):
        super().__init__(message)
