"""Tests for file validation and camera capture"""

import base64

import pytest
from unittest.mock import patch

from core.exceptions import (
    CameraBusyException,
    CameraNotFoundException,
    CameraPermissionDeniedException,
    ImageAcquisitionException,
    InvalidFileFormatException,
)
from services.image_acquisition import (
    CameraDevice,
    camera_error_from_name,
    camera_session,
    capture_photo,
    validate_image,
)
from tests.conftest import make_image_base64


class FakeCamera(CameraDevice):

    def __init__(self, open_error=None, capture_error=None):
        self.open_error = open_error
        self.capture_error = capture_error
        self.opened = False
        self.released = False

    def open(self):
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    def capture(self):
        if self.capture_error is not None:
            raise self.capture_error
        return base64.b64decode(make_image_base64(size=(32, 32)))

    def release(self):
        self.released = True


class TestValidateImage:

    def test_accepts_jpeg_data_uri(self, sample_data_uri):
        image = validate_image(sample_data_uri)

        assert image.mime_type == "image/jpeg"
        assert image.data_uri == sample_data_uri
        assert not image.base64_data.startswith("data:")

    def test_bare_base64_treated_as_png(self):
        payload = make_image_base64()
        image = validate_image(payload)

        assert image.mime_type == "image/png"
        assert image.data_uri.startswith("data:image/png;base64,")

    def test_rejects_non_image(self):
        with pytest.raises(InvalidFileFormatException):
            validate_image("data:application/pdf;base64,JVBERi0=")

    def test_rejects_empty(self):
        with pytest.raises(InvalidFileFormatException):
            validate_image("")

    def test_rejects_malformed_header(self):
        with pytest.raises(InvalidFileFormatException):
            validate_image("data:image/png,rawtext")

    def test_rejects_bad_base64(self):
        with pytest.raises(InvalidFileFormatException):
            validate_image("data:image/png;base64,@@@@")

    def test_rejects_oversized(self, sample_data_uri):
        with patch("services.image_acquisition.settings.MAX_UPLOAD_SIZE_MB", 0):
            with pytest.raises(ImageAcquisitionException) as exc_info:
                validate_image(sample_data_uri)

        assert not isinstance(exc_info.value, InvalidFileFormatException)


class TestCamera:

    def test_capture_releases_stream(self):
        camera = FakeCamera()

        image = capture_photo(camera)

        assert image.mime_type == "image/jpeg"
        assert camera.opened is True
        assert camera.released is True

    def test_release_on_capture_error(self):
        camera = FakeCamera(capture_error=RuntimeError("stream ended"))

        with pytest.raises(RuntimeError):
            capture_photo(camera)

        assert camera.released is True

    def test_release_when_block_exits_early(self):
        camera = FakeCamera()

        with pytest.raises(KeyboardInterrupt):
            with camera_session(camera):
                raise KeyboardInterrupt()

        assert camera.released is True

    @pytest.mark.parametrize("open_error, expected", [
        (PermissionError("denied"), CameraPermissionDeniedException),
        (FileNotFoundError("no device"), CameraNotFoundException),
        (OSError("busy"), CameraBusyException),
    ])
    def test_open_errors_mapped(self, open_error, expected):
        camera = FakeCamera(open_error=open_error)

        with pytest.raises(expected):
            capture_photo(camera)

        assert camera.released is True

    def test_browser_error_names(self):
        assert isinstance(camera_error_from_name("NotAllowedError"), CameraPermissionDeniedException)
        assert isinstance(camera_error_from_name("NotFoundError"), CameraNotFoundException)
        assert isinstance(camera_error_from_name("NotReadableError"), CameraBusyException)
        assert type(camera_error_from_name("AbortError")) is ImageAcquisitionException
