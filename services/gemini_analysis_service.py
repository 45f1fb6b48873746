"""Gemini AI analysis service for face shape, proportions and style recommendations"""

import base64
import binascii
import json
import re
from typing import Any, Dict, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from pydantic import ValidationError

from config.settings import settings
from core.exceptions import (
    GeminiAPIException,
    GeminiInvalidResponseException,
    GeminiPermissionException,
    GeminiRateLimitException,
    InvalidFileFormatException,
)
from core.logging import logger
from models.schemas import AnalysisResult
from services.circuit_breaker import gemini_breaker, with_circuit_breaker


# ========== Gemini Prompts ==========
ANALYSIS_PROMPT = """You are an expert AI hairstylist and face analyst with 20+ years of experience. Analyze the face in this image and provide PERSONALIZED styling recommendations.

IMPORTANT: Return ONLY valid JSON, no other text. The response must be parseable JSON.

🔍 ANALYSIS TASKS:
1. Face shape classification (oval, round, square, oblong, heart, diamond)
2. Skin tone analysis (fair, medium, tan, dark)
3. Face proportions measurement (upper/middle/lower thirds as percentages, must sum to 100)
4. Notable facial features detection (at least 3-5 features with impact assessment)
5. Overall impression analysis (professional assessment of the face's characteristics)
6. PERSONALIZED styling tips (3 specific tips tailored ONLY for THIS face - NOT generic advice)
7. Recommend exactly 9 Korean male hairstyles best suited for THIS specific face
8. List 2-3 styles to avoid for this face

⚠️ CRITICAL: "stylingTips" must be PERSONALIZED advice for THIS specific person.
- DO NOT use generic tips like "정수리에 볼륨을 주세요"
- Each tip should reference specific features visible in the photo

Return JSON in this exact format:
{
  "faceShape": "oval|round|square|oblong|heart|diamond",
  "faceShapeKo": "계란형|둥근형|사각형|긴형|하트형|다이아몬드형",
  "skinTone": "fair|medium|tan|dark",
  "skinToneKo": "밝은 톤|중간 톤|웜톤|어두운 톤",
  "upperRatio": 33,
  "middleRatio": 34,
  "lowerRatio": 33,
  "overallImpression": "이 얼굴의 전체적인 인상 분석 (한글, 2-3문장)",
  "features": [
    {"name": "feature_name", "nameKo": "특징 한글명", "impact": "positive|neutral|consideration"}
  ],
  "stylingTips": [
    "이 얼굴만을 위한 구체적인 스타일링 팁 1 (한글)",
    "이 얼굴만을 위한 구체적인 스타일링 팁 2 (한글)",
    "이 얼굴만을 위한 구체적인 스타일링 팁 3 (한글)"
  ],
  "recommendations": [
    {"id": "style_id", "name": "스타일명", "reason": "이 얼굴에 맞는 구체적인 추천 이유", "score": 95, "priority": 1}
  ],
  "avoidStyles": [
    {"name": "스타일명", "reason": "이 얼굴에서 피해야 할 구체적인 이유"}
  ]
}

📋 Korean male hairstyle IDs:
- pomade: 포마드컷 | leaf: 리프컷 | dandy: 댄디컷 | regent: 리젠트컷
- shadow: 쉐도우펌 | ivy: 아이비리그컷 | ez: 애즈펌 | slick: 슬릭백
- twoblock: 투블럭컷 | comma: 가르마펌 | layered: 레이어드컷 | crop: 크롭컷
- textured: 텍스쳐드펌 | mohican: 모히칸컷 | undercut: 언더컷

✅ Output requirements:
- Recommendations: top 9 most suitable styles with scores (0-100)
- Priority: 1 = best match, 9 = lowest among recommendations
- All text in "stylingTips", "overallImpression", "reason" fields must be in Korean"""

# Substrings that mean the API key lost access (billing, deleted project, revoked key)
CREDENTIAL_ERROR_MARKERS = ("Requested entity was not found", "PERMISSION_DENIED", "403")

DEFAULT_RETRY_AFTER = 60

_RETRY_DELAY_PATTERN = re.compile(r"retry[_ ]?delay\D*(\d+)", re.IGNORECASE)


def strip_code_fences(raw_text: str) -> str:
    """Remove a ```json ... ``` wrapper around model output"""
    text = raw_text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_retry_after(error_text: str, default: int = DEFAULT_RETRY_AFTER) -> int:
    """Seconds to wait, read from the RetryInfo.retryDelay of a 429 error body"""
    match = _RETRY_DELAY_PATTERN.search(error_text or "")
    if match:
        return int(match.group(1))
    return default


def is_credential_error(error_text: str) -> bool:
    return any(marker in (error_text or "") for marker in CREDENTIAL_ERROR_MARKERS)


def translate_api_error(e: Exception) -> GeminiAPIException:
    """
    Map a Gemini client error onto the service exception hierarchy

    Shared by the analysis and the image collaborators.
    """
    message = str(e)
    code = getattr(e, "code", None)

    if isinstance(e, google_exceptions.ResourceExhausted) or code == 429 or "RESOURCE_EXHAUSTED" in message:
        return GeminiRateLimitException(retry_after=parse_retry_after(message))
    if isinstance(e, (google_exceptions.PermissionDenied, google_exceptions.NotFound)) \
            or code in (403, 404) or is_credential_error(message):
        return GeminiPermissionException()
    return GeminiAPIException()


class GeminiAnalysisService:
    """
    Service for AI-powered face analysis using Gemini Vision API

    Features:
    - Face shape and skin tone detection
    - Face-thirds proportions
    - Nine personalized hairstyle recommendations
    """

    def __init__(self, max_retries: int = 2, model_name: Optional[str] = None):
        """
        Initialize Gemini analysis service

        Args:
            max_retries: Retries when the model returns unparseable JSON
            model_name: Override for settings.ANALYSIS_MODEL
        """
        self.max_retries = max_retries
        self.model_name = model_name or settings.ANALYSIS_MODEL

    def _generate(self, image_data: bytes, mime_type: str) -> str:
        model = genai.GenerativeModel(self.model_name)
        generation_config = genai.types.GenerationConfig(
            temperature=settings.ANALYSIS_TEMPERATURE,
            top_k=40,
            top_p=0.8,
            max_output_tokens=settings.ANALYSIS_MAX_OUTPUT_TOKENS,
        )
        try:
            response = model.generate_content(
                [{"mime_type": mime_type, "data": image_data}, ANALYSIS_PROMPT],
                generation_config=generation_config
            )
            return response.text
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"❌ Gemini API 오류: {str(e)}")
            raise translate_api_error(e)
        except ValueError as e:
            # response.text raises ValueError when no text part came back
            logger.error(f"❌ Gemini 응답에 텍스트가 없습니다: {str(e)}")
            raise GeminiInvalidResponseException("AI 응답이 비어 있습니다")

    def _parse(self, raw_text: str) -> AnalysisResult:
        try:
            payload: Dict[str, Any] = json.loads(strip_code_fences(raw_text))
        except json.JSONDecodeError as e:
            logger.error(f"JSON 파싱 실패: {str(e)}\n응답 내용: {raw_text[:200]}")
            raise GeminiInvalidResponseException()

        if not isinstance(payload, dict) or not payload.get("faceShape") or "recommendations" not in payload:
            raise GeminiInvalidResponseException("Invalid analysis result structure")

        try:
            return AnalysisResult.model_validate(payload)
        except ValidationError as e:
            logger.error(f"AI 응답 형식 오류: {e.error_count()} errors")
            raise GeminiInvalidResponseException("Invalid analysis result structure")

    def _analyze_internal(self, image_data: bytes, mime_type: str, retry_count: int = 0) -> AnalysisResult:
        """
        Call Gemini and parse the result, retrying on unparseable output

        Raises:
            GeminiRateLimitException: 429 from the API
            GeminiPermissionException: Key lost access
            GeminiInvalidResponseException: Output still invalid after retries
        """
        raw_text = self._generate(image_data, mime_type)
        try:
            result = self._parse(raw_text)
        except GeminiInvalidResponseException:
            if retry_count < self.max_retries:
                logger.warning(f"⚠️ JSON 파싱 실패, 재시도 {retry_count + 1}/{self.max_retries}")
                return self._analyze_internal(image_data, mime_type, retry_count + 1)
            raise

        logger.info(f"✅ Gemini 분석 성공: {result.face_shape.value} ({len(result.recommendations)}개 추천)")
        return result

    @with_circuit_breaker(gemini_breaker)
    def analyze(self, image_base64: str, mime_type: str = "image/png") -> AnalysisResult:
        """
        Analyze a face photo (with Circuit Breaker protection)

        Args:
            image_base64: Raw base64 image data (no data URI prefix)
            mime_type: Image MIME type

        Returns:
            AnalysisResult with ratios normalized to sum to 100
        """
        try:
            image_data = base64.b64decode(image_base64, validate=True)
        except (binascii.Error, ValueError):
            raise InvalidFileFormatException("이미지 데이터가 올바른 base64 형식이 아닙니다")
        return self._analyze_internal(image_data, mime_type or "image/png")


def init_gemini() -> bool:
    """Configure the google-generativeai client; True when an API key is present"""
    if not settings.GEMINI_API_KEY:
        logger.warning("⚠️ GEMINI_API_KEY가 설정되지 않았습니다")
        return False
    genai.configure(api_key=settings.GEMINI_API_KEY)
    logger.info("✅ Gemini API 초기화 완료")
    return True


# Singleton instance
_analysis_service: Optional[GeminiAnalysisService] = None


def get_analysis_service() -> GeminiAnalysisService:
    """Get or create the analysis service singleton"""
    global _analysis_service
    if _analysis_service is None:
        _analysis_service = GeminiAnalysisService()
    return _analysis_service
