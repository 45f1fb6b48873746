"""Tab-scoped snapshot of the in-progress session (sessionStorage analogue)"""

from typing import Optional

from pydantic import ValidationError

from core.exceptions import StorageQuotaExceededException
from core.kv_store import KeyValueStore, calculate_image_hash
from core.logging import logger
from storage.backend import (
    AUTO_EXPORT_PREFIX,
    PENDING_IMAGE_KEY,
    PROCESSED_CHECKOUT_PREFIX,
    SESSION_SNAPSHOT_KEY,
)
from storage.models import SessionSnapshot


class SessionSnapshotManager:
    """
    Saves, restores and clears the current session for reload recovery

    Also keeps the pre-payment image backup so the photo survives the
    checkout redirect.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    def save_snapshot(self, snapshot: SessionSnapshot) -> bool:
        """Overwrite the snapshot; quota failures are logged, never raised"""
        try:
            self.store.set_item(SESSION_SNAPSHOT_KEY, snapshot.model_dump_json(by_alias=True))
            logger.info("💾 세션 스냅샷 저장 완료")
            return True
        except StorageQuotaExceededException as e:
            logger.warning(f"⚠️ 세션 스냅샷 저장 실패 (용량 초과): {e.message}")
            return False

    def load_snapshot(self) -> Optional[SessionSnapshot]:
        """
        Read the snapshot once at startup

        Returns:
            The snapshot when original image, result image and analysis result
            are all present; otherwise None (and the stored entry is removed)
        """
        raw = self.store.get_item(SESSION_SNAPSHOT_KEY)
        if not raw:
            return None

        try:
            snapshot = SessionSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"⚠️ 손상된 세션 스냅샷 폐기: {e.error_count()} errors")
            self.clear_snapshot()
            return None

        if not snapshot.is_resumable:
            logger.warning("⚠️ 불완전한 세션 스냅샷 폐기")
            self.clear_snapshot()
            return None

        logger.info("🔄 세션 스냅샷 복원")
        return snapshot

    def clear_snapshot(self) -> None:
        self.store.remove_item(SESSION_SNAPSHOT_KEY)

    # ========== Pre-payment image backup ==========
    def backup_pending_image(self, image: str) -> bool:
        try:
            self.store.set_item(PENDING_IMAGE_KEY, image)
            return True
        except StorageQuotaExceededException as e:
            logger.warning(f"⚠️ 결제 전 이미지 백업 실패: {e.message}")
            return False

    def peek_pending_image(self) -> Optional[str]:
        return self.store.get_item(PENDING_IMAGE_KEY)

    def take_pending_image(self) -> Optional[str]:
        """Return the backed-up image and remove it"""
        image = self.store.get_item(PENDING_IMAGE_KEY)
        if image is not None:
            self.store.remove_item(PENDING_IMAGE_KEY)
        return image

    # ========== One-shot markers ==========
    def is_checkout_processed(self, checkout_id: str) -> bool:
        return self.store.get_item(f"{PROCESSED_CHECKOUT_PREFIX}{checkout_id}") is not None

    def mark_checkout_processed(self, checkout_id: str) -> None:
        try:
            self.store.set_item(f"{PROCESSED_CHECKOUT_PREFIX}{checkout_id}", "true")
        except StorageQuotaExceededException as e:
            logger.warning(f"⚠️ 결제 처리 마커 저장 실패: {e.message}")

    def is_auto_export_done(self, result_image: str) -> bool:
        return self.store.get_item(_auto_export_key(result_image)) is not None

    def mark_auto_export_done(self, result_image: str) -> None:
        try:
            self.store.set_item(_auto_export_key(result_image), "true")
        except StorageQuotaExceededException as e:
            logger.warning(f"⚠️ 자동 전송 마커 저장 실패: {e.message}")


def _auto_export_key(result_image: str) -> str:
    return f"{AUTO_EXPORT_PREFIX}{calculate_image_hash(result_image.encode('utf-8'))[:16]}"
