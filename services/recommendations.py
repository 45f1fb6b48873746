"""Recommended style list shaping for the 3x3 grid"""

from typing import Iterable, List

from core.logging import logger
from utils.style_preprocessor import normalize_style_name

GRID_SIZE = 9

# Default grid, also the padding pool when the analysis returns fewer than nine styles
FALLBACK_STYLES = (
    "포마드컷", "리프컷", "댄디컷",
    "리젠트컷", "쉐도우펌", "아이비리그컷",
    "애즈펌", "슬릭백", "투블럭컷",
)

# Extra pool used only if both the analysis and FALLBACK_STYLES run out of unique names
_RESERVE_STYLES = (
    "가르마펌", "레이어드컷", "크롭컷", "텍스쳐드펌", "모히칸컷", "언더컷",
)


def normalize_to_nine(names: Iterable[str], fallback_pool: Iterable[str] = FALLBACK_STYLES) -> List[str]:
    """
    Exactly nine unique style names for the grid

    Keeps the order of `names`, drops blanks and duplicates (compared
    ignoring whitespace and case), truncates to nine and pads from
    `fallback_pool` without repeating a name already present.

    Examples:
        >>> normalize_to_nine(["리프 컷", "리프컷", "댄디컷"])[:3]
        ['리프 컷', '댄디컷', '포마드컷']
    """
    result: List[str] = []
    seen = set()

    def _take(candidates: Iterable[str]) -> None:
        for name in candidates:
            if len(result) >= GRID_SIZE:
                return
            if not name or not name.strip():
                continue
            key = normalize_style_name(name)
            if key in seen:
                continue
            seen.add(key)
            result.append(name.strip())

    _take(names)
    returned = len(result)
    _take(fallback_pool)
    _take(_RESERVE_STYLES)

    if returned < GRID_SIZE:
        logger.info(f"📋 추천 스타일 {returned}개 → 기본 스타일로 {GRID_SIZE - returned}개 보충")

    return result
