"""Image acquisition: uploaded/dropped files and camera capture"""

import base64
import binascii
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, NamedTuple

from config.settings import settings
from core.exceptions import (
    CameraBusyException,
    CameraNotFoundException,
    CameraPermissionDeniedException,
    ImageAcquisitionException,
    InvalidFileFormatException,
)
from core.logging import logger
from utils.image_utils import SUPPORTED_MIME_TYPES, parse_data_uri, to_data_uri


class AcquiredImage(NamedTuple):
    data_uri: str
    mime_type: str
    base64_data: str


def validate_image(data_uri: str) -> AcquiredImage:
    """
    Accept a picked or dropped file sent as a data URI

    Raises:
        InvalidFileFormatException: Not an image, unsupported type or undecodable
        ImageAcquisitionException: Larger than MAX_UPLOAD_SIZE_MB
    """
    if not data_uri:
        raise InvalidFileFormatException("이미지 데이터가 없습니다")

    try:
        mime_type, payload = parse_data_uri(data_uri)
    except ValueError:
        raise InvalidFileFormatException()

    if not mime_type.startswith("image/") or mime_type not in SUPPORTED_MIME_TYPES:
        logger.warning(f"⚠️ 이미지가 아닌 파일 거부: {mime_type}")
        raise InvalidFileFormatException()

    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidFileFormatException("이미지 데이터가 올바른 base64 형식이 아닙니다")

    if len(raw) > settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024:
        raise ImageAcquisitionException(f"파일 크기가 {settings.MAX_UPLOAD_SIZE_MB}MB를 초과합니다.")

    return AcquiredImage(data_uri=to_data_uri(payload, mime_type), mime_type=mime_type, base64_data=payload)


# Browser getUserMedia error names
_CAMERA_ERRORS = {
    "NotAllowedError": CameraPermissionDeniedException,
    "PermissionDeniedError": CameraPermissionDeniedException,
    "NotFoundError": CameraNotFoundException,
    "DevicesNotFoundError": CameraNotFoundException,
    "NotReadableError": CameraBusyException,
    "TrackStartError": CameraBusyException,
}


def camera_error_from_name(error_name: str) -> ImageAcquisitionException:
    """Map a getUserMedia error name onto the acquisition error it represents"""
    exc_class = _CAMERA_ERRORS.get(error_name)
    if exc_class is None:
        return ImageAcquisitionException(f"카메라를 사용할 수 없습니다: {error_name}")
    return exc_class()


class CameraDevice(ABC):
    """A capture device whose stream must be released after use"""

    @abstractmethod
    def open(self) -> None:
        pass

    @abstractmethod
    def capture(self) -> bytes:
        """One JPEG frame"""
        pass

    @abstractmethod
    def release(self) -> None:
        pass


@contextmanager
def camera_session(device: CameraDevice) -> Iterator[CameraDevice]:
    """
    Open the camera for the duration of the block

    The stream is released on every exit path: normal exit, cancellation
    and errors raised while opening or capturing.

    Raises:
        CameraPermissionDeniedException / CameraNotFoundException / CameraBusyException
    """
    try:
        try:
            device.open()
        except PermissionError:
            raise CameraPermissionDeniedException()
        except FileNotFoundError:
            raise CameraNotFoundException()
        except OSError:
            raise CameraBusyException()
        yield device
    finally:
        device.release()
        logger.info("📷 카메라 스트림 해제")


def capture_photo(device: CameraDevice) -> AcquiredImage:
    """Capture one frame as a JPEG data URI"""
    with camera_session(device) as camera:
        frame = camera.capture()
    return validate_image(to_data_uri(base64.b64encode(frame).decode("utf-8"), "image/jpeg"))
