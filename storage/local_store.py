"""Durable history and saved-style collections (localStorage analogue)"""

import time
import uuid
from datetime import datetime
from typing import Callable, List, Optional, TypeVar, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from config.settings import settings
from core.exceptions import InvalidCategoryException, StorageQuotaExceededException
from core.kv_store import KeyValueStore
from core.logging import logger, log_structured
from storage.backend import HISTORY_KEY, SAVED_KEY
from storage.models import (
    ALL_CATEGORIES,
    HistoryItem,
    NewHistoryItem,
    NewSavedStyle,
    SavedStyle,
    StyleCategory,
)
from utils.image_utils import compress_image

T = TypeVar("T", bound=BaseModel)

_history_adapter = TypeAdapter(List[HistoryItem])
_saved_adapter = TypeAdapter(List[SavedStyle])


def generate_id() -> str:
    """Millisecond timestamp (base 16) followed by random hex, e.g. '18c2f3a9b1e4f0c2d1a7'"""
    return f"{int(time.time() * 1000):x}{uuid.uuid4().hex[:8]}"


class LocalPersistenceStore:
    """
    History and saved-style collections over one durable KeyValueStore

    Every mutation is a whole-collection read-modify-write. Writes that hit
    the storage quota are logged and dropped; they never raise to the caller.

    Args:
        store: Durable store of one client
        max_history: Retained history items (oldest evicted first)
        max_saved: Retained saved styles
        thumbnail_max_size: Longest side of stored history images, in pixels
    """

    def __init__(
        self,
        store: KeyValueStore,
        max_history: Optional[int] = None,
        max_saved: Optional[int] = None,
        thumbnail_max_size: Optional[int] = None
    ):
        self.store = store
        self.max_history = max_history or settings.MAX_HISTORY_ITEMS
        self.reduced_history = min(settings.REDUCED_HISTORY_ITEMS, self.max_history)
        self.max_saved = max_saved or settings.MAX_SAVED_ITEMS
        self.reduced_saved = min(settings.REDUCED_SAVED_ITEMS, self.max_saved)
        self.thumbnail_max_size = thumbnail_max_size or settings.THUMBNAIL_MAX_SIZE

    # ========== Internal helpers ==========
    def _read(self, key: str, adapter: TypeAdapter) -> list:
        raw = self.store.get_item(key)
        if not raw:
            return []
        try:
            return adapter.validate_json(raw)
        except ValidationError as e:
            logger.error(f"❌ 저장된 데이터를 읽을 수 없습니다 ({key}): {e.error_count()} errors")
            return []

    def _write(self, key: str, items: List[T], adapter: TypeAdapter) -> bool:
        try:
            self.store.set_item(key, adapter.dump_json(items, by_alias=True).decode("utf-8"))
            return True
        except StorageQuotaExceededException as e:
            logger.warning(f"⚠️ Storage quota exceeded ({key}): {e.message}")
            return False

    def _write_bounded(self, key: str, items: List[T], adapter: TypeAdapter, limit: int, reduced: int) -> bool:
        """Write the first `limit` items; on quota overflow retry with the first `reduced`"""
        if self._write(key, items[:limit], adapter):
            return True
        logger.warning(f"⚠️ Storage quota exceeded, reducing {key} to {reduced} items...")
        return self._write(key, items[:reduced], adapter)

    def _update(self, key: str, adapter: TypeAdapter, mutate: Callable[[list], list]) -> None:
        self._write(key, mutate(self._read(key, adapter)), adapter)

    # ========== History ==========
    def get_history(self) -> List[HistoryItem]:
        """All history items, most recent first"""
        return self._read(HISTORY_KEY, _history_adapter)

    def add_history_item(self, item: NewHistoryItem) -> Optional[HistoryItem]:
        """
        Compress images, assign id/date and prepend to history

        Returns:
            The stored HistoryItem, or None when the quota prevented persisting it
        """
        compressed = item.model_copy(update={
            "original_image": compress_image(item.original_image, self.thumbnail_max_size,
                                             settings.THUMBNAIL_JPEG_QUALITY),
            "result_image": compress_image(item.result_image, self.thumbnail_max_size,
                                           settings.THUMBNAIL_JPEG_QUALITY),
        })
        new_item = HistoryItem(**dict(compressed), id=generate_id(), date=datetime.utcnow())

        history = [new_item] + self.get_history()
        if not self._write_bounded(HISTORY_KEY, history, _history_adapter,
                                   self.max_history, self.reduced_history):
            logger.error("❌ 히스토리 저장 실패: 저장 공간 부족")
            log_structured("history_save_failed", {"reason": "quota_exceeded"})
            return None

        log_structured("history_saved", {
            "history_id": new_item.id,
            "face_shape": new_item.face_analysis.face_shape.value,
            "retained": min(len(history), self.max_history)
        })
        return new_item

    def get_history_item(self, item_id: str) -> Optional[HistoryItem]:
        return next((h for h in self.get_history() if h.id == item_id), None)

    def delete_history_item(self, item_id: str) -> None:
        self._update(HISTORY_KEY, _history_adapter,
                     lambda items: [h for h in items if h.id != item_id])

    def toggle_history_like(self, item_id: str) -> None:
        self._update(HISTORY_KEY, _history_adapter, lambda items: [
            h.model_copy(update={"liked": not h.liked}) if h.id == item_id else h
            for h in items
        ])

    def clear_history(self) -> None:
        self.store.remove_item(HISTORY_KEY)

    # ========== Saved styles ==========
    def get_saved_styles(self) -> List[SavedStyle]:
        return self._read(SAVED_KEY, _saved_adapter)

    def get_saved_styles_by_category(self, category: Union[StyleCategory, str]) -> List[SavedStyle]:
        """Saved styles of one category; "all" returns everything"""
        saved = self.get_saved_styles()
        if category == ALL_CATEGORIES:
            return saved
        wanted = _coerce_category(category)
        return [s for s in saved if s.category == wanted]

    def save_style(self, item: NewSavedStyle) -> Optional[SavedStyle]:
        """
        Bookmark a style (a video already saved by videoId returns the existing record)

        Returns:
            The saved record, or None when the quota prevented persisting it
        """
        saved = self.get_saved_styles()

        if item.video_id:
            existing = next((s for s in saved if s.video_id == item.video_id), None)
            if existing is not None:
                return existing

        new_item = SavedStyle(**dict(item), id=generate_id(), saved_date=datetime.utcnow())
        saved.insert(0, new_item)

        if not self._write_bounded(SAVED_KEY, saved, _saved_adapter, self.max_saved, self.reduced_saved):
            logger.error("❌ 스타일 저장 실패: 저장 공간 부족")
            return None
        return new_item

    def delete_saved_style(self, item_id: str) -> None:
        self._update(SAVED_KEY, _saved_adapter,
                     lambda items: [s for s in items if s.id != item_id])

    def update_saved_style_notes(self, item_id: str, notes: str) -> None:
        self._update(SAVED_KEY, _saved_adapter, lambda items: [
            s.model_copy(update={"notes": notes}) if s.id == item_id else s
            for s in items
        ])

    def update_saved_style_category(self, item_id: str, category: Union[StyleCategory, str]) -> None:
        """
        Raises:
            InvalidCategoryException: category is not cut/perm/color ("all" included)
        """
        new_category = _coerce_category(category)
        self._update(SAVED_KEY, _saved_adapter, lambda items: [
            s.model_copy(update={"category": new_category}) if s.id == item_id else s
            for s in items
        ])

    def clear_saved(self) -> None:
        self.store.remove_item(SAVED_KEY)

    # ========== Diagnostics ==========
    def get_storage_usage(self) -> dict:
        used = self.store.used_bytes()
        return {
            "used_bytes": used,
            "quota_bytes": self.store.quota_bytes,
            "used": f"{used / (1024 * 1024):.2f} MB",
            "available": f"{self.store.quota_bytes / (1024 * 1024):.2f} MB"
        }


def _coerce_category(category: Union[StyleCategory, str]) -> StyleCategory:
    try:
        return StyleCategory(category)
    except ValueError:
        raise InvalidCategoryException(str(category))
