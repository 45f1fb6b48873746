"""History and saved-style views on top of LocalPersistenceStore"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Union

from core.logging import logger
from models.schemas import AnalysisResult, FaceShape
from storage.local_store import LocalPersistenceStore
from storage.models import (
    HistoryItem,
    NewSavedStyle,
    SavedStyle,
    SavedStyleType,
    StyleCategory,
)
from utils.style_preprocessor import infer_category

_WEEKDAYS_KO = ("월", "화", "수", "목", "금", "토", "일")


def format_relative_date(date: datetime, now: Optional[datetime] = None) -> str:
    """오늘 / 어제 / N일 전 / N주 전 / N개월 전 / N년 전"""
    now = now or datetime.utcnow()
    diff_days = (now - date).days

    if diff_days <= 0:
        return "오늘"
    if diff_days == 1:
        return "어제"
    if diff_days < 7:
        return f"{diff_days}일 전"
    if diff_days < 30:
        return f"{diff_days // 7}주 전"
    if diff_days < 365:
        return f"{diff_days // 30}개월 전"
    return f"{diff_days // 365}년 전"


def format_full_date(date: datetime) -> str:
    """e.g. 2024년 3월 5일 (화)"""
    return f"{date.year}년 {date.month}월 {date.day}일 ({_WEEKDAYS_KO[date.weekday()]})"


@dataclass
class HistoryDetail:
    """
    What the history detail screen renders

    Items saved before full results were stored (legacy) carry only the
    denormalized face summary: `analysis` is then None and `is_legacy` True.
    """

    item: HistoryItem
    face_shape: FaceShape
    upper_ratio: int
    middle_ratio: int
    lower_ratio: int
    features: List[str]
    recommended_styles: List[str]
    analysis: Optional[AnalysisResult]
    date_label: str

    @property
    def is_legacy(self) -> bool:
        return self.analysis is None


class LibraryService:
    """History/saved lifecycle for one client"""

    def __init__(self, store: LocalPersistenceStore):
        self.store = store

    # ========== History ==========
    def list_history(self) -> List[HistoryItem]:
        # Likes never reorder the list
        return self.store.get_history()

    def history_detail(self, item_id: str) -> Optional[HistoryDetail]:
        item = self.store.get_history_item(item_id)
        if item is None:
            return None

        summary = item.face_analysis
        full = item.full_analysis_result
        if full is None:
            logger.info(f"📜 레거시 히스토리 항목 표시: {item_id}")

        return HistoryDetail(
            item=item,
            face_shape=summary.face_shape,
            upper_ratio=summary.upper_ratio,
            middle_ratio=summary.middle_ratio,
            lower_ratio=summary.lower_ratio,
            features=list(summary.features) if full is None else [f.label or f.name for f in full.features],
            recommended_styles=list(item.recommended_styles),
            analysis=full,
            date_label=format_full_date(item.date),
        )

    def toggle_like(self, item_id: str) -> Optional[HistoryItem]:
        self.store.toggle_history_like(item_id)
        return self.store.get_history_item(item_id)

    def delete_history(self, item_id: str) -> None:
        self.store.delete_history_item(item_id)

    def clear_history(self) -> None:
        self.store.clear_history()

    # ========== Saved ==========
    def list_saved(self, category: Union[StyleCategory, str] = "all") -> List[SavedStyle]:
        return self.store.get_saved_styles_by_category(category)

    def save(self, item: NewSavedStyle) -> Optional[SavedStyle]:
        return self.store.save_style(item)

    def bookmark_grid_cell(
        self,
        result_image: str,
        recommended_styles: List[str],
        index: int,
        is_pro: bool = True
    ) -> Optional[SavedStyle]:
        """
        Save one cell of the 3x3 result grid

        Raises:
            IndexError: index outside the recommended style list
        """
        if not 0 <= index < len(recommended_styles):
            raise IndexError(f"grid index out of range: {index}")
        title = recommended_styles[index]
        return self.store.save_style(NewSavedStyle(
            type=SavedStyleType.SIMULATION,
            category=StyleCategory(infer_category(title)),
            title=title,
            thumbnail=result_image,
            is_pro=is_pro,
        ))

    def bookmark_blueprint(self, title: str, thumbnail: str, notes: Optional[str] = None) -> Optional[SavedStyle]:
        """Save a style from the style detail panel"""
        return self.store.save_style(NewSavedStyle(
            type=SavedStyleType.BLUEPRINT,
            category=StyleCategory(infer_category(title)),
            title=title,
            thumbnail=thumbnail,
            notes=notes,
            is_pro=True,
        ))

    def bookmark_video(self, title: str, video_id: str, thumbnail: str) -> Optional[SavedStyle]:
        """Save a styling video; the same video_id is stored once"""
        return self.store.save_style(NewSavedStyle(
            type=SavedStyleType.VIDEO,
            category=StyleCategory(infer_category(title)),
            title=title,
            thumbnail=thumbnail,
            video_id=video_id,
            source_url=f"https://www.youtube.com/watch?v={video_id}",
        ))

    def update_category(self, item_id: str, category: Union[StyleCategory, str]) -> None:
        self.store.update_saved_style_category(item_id, category)

    def update_notes(self, item_id: str, notes: str) -> None:
        self.store.update_saved_style_notes(item_id, notes)

    def delete_saved(self, item_id: str) -> None:
        self.store.delete_saved_style(item_id)

    def clear_saved(self) -> None:
        self.store.clear_saved()
