"""Tests for the 3x3 hairstyle grid synthesis service"""

import base64

import pytest
from unittest.mock import MagicMock
from google.genai import errors

from core.exceptions import (
    GeminiPermissionException,
    GeminiRateLimitException,
    ImageGenerationException,
    InvalidFileFormatException,
)
from services.hairstyle_synthesis_service import (
    HairstyleSynthesisService,
    build_grid_prompt,
    normalize_image_payload,
    resolve_grid_styles,
)
from services.recommendations import FALLBACK_STYLES
from tests.conftest import make_image_base64

PNG_HEADER = b'\x89PNG\r\n\x1a\n'


def image_part(data, mime_type="image/png"):
    part = MagicMock()
    part.inline_data.data = data
    part.inline_data.mime_type = mime_type
    return part


def text_part(text):
    part = MagicMock()
    part.inline_data = None
    part.text = text
    return part


def response_with(parts):
    response = MagicMock()
    candidate = MagicMock()
    candidate.content.parts = parts
    response.candidates = [candidate]
    return response


@pytest.fixture
def service():
    service = HairstyleSynthesisService(model_name="test-image-model")
    service._client = MagicMock()
    return service


@pytest.fixture
def image_base64():
    return make_image_base64(size=(64, 64))


class TestPromptAndStyles:

    def test_prompt_is_row_major(self):
        styles = [f"스타일{i}" for i in range(9)]
        prompt = build_grid_prompt(styles)

        assert "Top row: 스타일0, 스타일1, 스타일2" in prompt
        assert "Middle row: 스타일3, 스타일4, 스타일5" in prompt
        assert "Bottom row: 스타일6, 스타일7, 스타일8" in prompt
        assert "NO TEXT" in prompt

    def test_exactly_nine_styles_used(self):
        styles = [f"스타일{i}" for i in range(9)]
        assert resolve_grid_styles(styles) == styles

    def test_other_counts_fall_back(self):
        assert resolve_grid_styles(None) == list(FALLBACK_STYLES)
        assert resolve_grid_styles(["리프컷"] * 8) == list(FALLBACK_STYLES)
        assert resolve_grid_styles(["리프컷"] * 10) == list(FALLBACK_STYLES)


class TestNormalizeImagePayload:

    def test_string_passthrough(self):
        assert normalize_image_payload("iVBORabc") == "iVBORabc"

    def test_raw_png_bytes_encoded(self):
        raw = PNG_HEADER + b"data"
        assert normalize_image_payload(raw) == base64.b64encode(raw).decode("utf-8")

    def test_base64_text_bytes_decoded(self):
        assert normalize_image_payload(b"/9j/4AAQ") == "/9j/4AAQ"

    def test_binary_non_utf8_encoded(self):
        raw = b"\xff\xfe\x00\x01"
        assert normalize_image_payload(raw) == base64.b64encode(raw).decode("utf-8")


class TestGenerateGrid:

    def test_returns_first_inline_image(self, service, image_base64):
        raw = PNG_HEADER + b"grid"
        service.client.models.generate_content.return_value = response_with(
            [text_part("here you go"), image_part(raw, "image/png")]
        )

        result = service.generate_grid(image_base64, "image/jpeg", styles=[f"s{i}" for i in range(9)])

        assert result.image_base64 == base64.b64encode(raw).decode("utf-8")
        assert result.mime_type == "image/png"

        kwargs = service.client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "test-image-model"
        assert "Top row: s0, s1, s2" in kwargs["contents"][1]

    def test_no_image_in_response(self, service, image_base64):
        service.client.models.generate_content.return_value = response_with([text_part("sorry")])

        with pytest.raises(ImageGenerationException):
            service.generate_grid(image_base64)

    def test_empty_candidates(self, service, image_base64):
        response = MagicMock()
        response.candidates = []
        service.client.models.generate_content.return_value = response

        with pytest.raises(ImageGenerationException):
            service.generate_grid(image_base64)

    def test_rate_limit_translated(self, service, image_base64):
        service.client.models.generate_content.side_effect = errors.ClientError(
            429, {"error": {"code": 429, "message": "Resource exhausted", "status": "RESOURCE_EXHAUSTED"}}
        )

        with pytest.raises(GeminiRateLimitException):
            service.generate_grid(image_base64)

    def test_permission_error_translated(self, service, image_base64):
        service.client.models.generate_content.side_effect = errors.ClientError(
            403, {"error": {"code": 403, "message": "denied", "status": "PERMISSION_DENIED"}}
        )

        with pytest.raises(GeminiPermissionException):
            service.generate_grid(image_base64)

    def test_invalid_base64(self, service):
        with pytest.raises(InvalidFileFormatException):
            service.generate_grid("%%%not-base64%%%")

        service.client.models.generate_content.assert_not_called()
