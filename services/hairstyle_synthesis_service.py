"""3x3 hairstyle grid synthesis using the Gemini image model"""

import base64
import binascii
from typing import List, NamedTuple, Optional

from core.exceptions import ImageGenerationException, InvalidFileFormatException
from core.logging import logger
from services.circuit_breaker import image_breaker, with_circuit_breaker
from services.gemini_analysis_service import translate_api_error
from services.recommendations import FALLBACK_STYLES


class GeneratedImage(NamedTuple):
    image_base64: str
    mime_type: str


def build_grid_prompt(styles: List[str]) -> str:
    """Prompt asking for one clean 3x3 photo grid, one hairstyle per cell (row-major)"""
    return f"""SYSTEM ROLE: You are the world's most advanced AI for virtual hair styling.

MISSION: Apply 9 different Korean Trendy Hairstyles to the user's photo.

⛔️ STRICT PROHIBITION - FACE PRESERVATION ⛔️
- YOU MUST NOT CHANGE THE FACE.
- DO NOT TOUCH: Eyes, Nose, Mouth, Lips, Ears, Cheeks, Jawline, Skin Tone, Makeup.
- The face must match the original image (100% Identity Preservation).

✅ ACTION PLAN:
1. Identify the hair region accurately.
2. MASK OUT the face completely to protect it.
3. GENERATE only the new hairstyle in the hair region.
4. Blend the new hair naturally with the original forehead and ears.

TEXT-FREE OUTPUT (MANDATORY):
- Output ONLY a clean photograph
- DO NOT render any text, letters, labels, captions or watermarks
- DO NOT write hairstyle names on the image

GRID: 3 rows × 3 columns, each cell = 1 hairstyle variation

HAIRSTYLES:
Top row: {styles[0]}, {styles[1]}, {styles[2]}
Middle row: {styles[3]}, {styles[4]}, {styles[5]}
Bottom row: {styles[6]}, {styles[7]}, {styles[8]}

OUTPUT: Clean 3x3 photo grid with NO TEXT anywhere."""


def resolve_grid_styles(styles: Optional[List[str]]) -> List[str]:
    """Use the requested styles only when exactly nine were sent"""
    if styles and len(styles) == 9:
        return list(styles)
    return list(FALLBACK_STYLES)


def normalize_image_payload(image_bytes) -> str:
    """
    Convert inline image data from the SDK into a base64 string

    The SDK may hand back raw PNG/JPEG bytes, base64 text as bytes,
    or an already-decoded base64 string.
    """
    if isinstance(image_bytes, str):
        return image_bytes
    if isinstance(image_bytes, bytes):
        if image_bytes[:4] == b'\x89PNG' or image_bytes[:3] == b'\xff\xd8\xff':
            return base64.b64encode(image_bytes).decode('utf-8')
        try:
            decoded_str = image_bytes.decode('utf-8')
        except UnicodeDecodeError:
            return base64.b64encode(image_bytes).decode('utf-8')
        # iVBOR = PNG, /9j/ = JPEG
        if decoded_str.startswith('iVBOR') or decoded_str.startswith('/9j/'):
            return decoded_str
        return base64.b64encode(image_bytes).decode('utf-8')
    logger.warning(f"📦 예상치 못한 타입: {type(image_bytes)}")
    return base64.b64encode(bytes(image_bytes)).decode('utf-8')


class HairstyleSynthesisService:
    """
    Service rendering nine hairstyles on the user's photo as one grid image

    Features:
    - Face kept as-is, only the hair region changes
    - Row-major 3x3 layout matching the recommendation order
    - Text-free output
    """

    def __init__(self, model_name: Optional[str] = None):
        """Initialize the synthesis service"""
        self._client = None
        self._model_name = model_name

    @property
    def model_name(self) -> str:
        if self._model_name is None:
            from config.settings import settings
            self._model_name = settings.IMAGE_MODEL
        return self._model_name

    @property
    def client(self):
        """Lazy load the Gemini client"""
        if self._client is None:
            from google import genai
            from config.settings import settings
            self._client = genai.Client(api_key=settings.GEMINI_API_KEY)
        return self._client

    @with_circuit_breaker(image_breaker)
    def generate_grid(
        self,
        image_base64: str,
        mime_type: str = "image/png",
        styles: Optional[List[str]] = None
    ) -> GeneratedImage:
        """
        Render the 3x3 hairstyle grid

        Args:
            image_base64: Raw base64 photo (no data URI prefix)
            mime_type: Photo MIME type
            styles: Nine style names; any other count falls back to the default nine

        Returns:
            GeneratedImage with base64 data and its MIME type

        Raises:
            ImageGenerationException: Model returned no image
            GeminiRateLimitException / GeminiPermissionException: API errors
        """
        from google.genai import errors, types

        try:
            image_data = base64.b64decode(image_base64, validate=True)
        except (binascii.Error, ValueError):
            raise InvalidFileFormatException("이미지 데이터가 올바른 base64 형식이 아닙니다")

        grid_styles = resolve_grid_styles(styles)
        logger.info(f"🎨 3x3 그리드 합성 시작: {', '.join(grid_styles)}")

        try:
            response = self.client.models.generate_content(
                model=self.model_name,
                contents=[
                    types.Part.from_bytes(data=image_data, mime_type=mime_type or "image/png"),
                    build_grid_prompt(grid_styles),
                ],
                config=types.GenerateContentConfig(
                    response_modalities=["IMAGE", "TEXT"],
                )
            )
        except errors.APIError as e:
            logger.error(f"❌ 이미지 생성 API 오류: {str(e)}")
            raise translate_api_error(e)

        candidates = response.candidates or []
        parts = candidates[0].content.parts if candidates and candidates[0].content else None
        if not parts:
            raise ImageGenerationException("Invalid response format")

        for part in parts:
            if getattr(part, 'inline_data', None) and part.inline_data.data:
                logger.info("✅ 3x3 그리드 합성 성공")
                return GeneratedImage(
                    image_base64=normalize_image_payload(part.inline_data.data),
                    mime_type=part.inline_data.mime_type or "image/png"
                )

        logger.error("❌ Gemini가 이미지를 생성하지 않았습니다")
        raise ImageGenerationException()


# Singleton instance
_synthesis_service: Optional[HairstyleSynthesisService] = None


def get_synthesis_service() -> HairstyleSynthesisService:
    """Get or create the synthesis service singleton"""
    global _synthesis_service
    if _synthesis_service is None:
        _synthesis_service = HairstyleSynthesisService()
    return _synthesis_service
