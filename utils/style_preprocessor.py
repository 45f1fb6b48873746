"""
헤어스타일명 전처리 유틸리티

띄어쓰기를 제거하여 일관성 있는 스타일명 비교
- "리프 컷" → "리프컷"
- "쉐도우 펌" → "쉐도우펌"

스타일명으로부터 스타일 ID와 저장 카테고리(cut/perm/color)를 추론합니다.
"""

from typing import Optional

# Gemini 분석 프롬프트와 동일한 스타일 ID 표
STYLE_ID_MAP = {
    "포마드컷": "pomade", "포마드": "pomade",
    "리프컷": "leaf", "리프": "leaf",
    "댄디컷": "dandy", "댄디": "dandy",
    "리젠트컷": "regent", "리젠트": "regent",
    "쉐도우펌": "shadow", "쉐도우": "shadow",
    "아이비리그컷": "ivy", "아이비리그": "ivy",
    "애즈펌": "ez", "애즈": "ez",
    "슬릭백": "slick",
    "투블럭컷": "twoblock", "투블럭": "twoblock",
    "가르마펌": "comma", "가르마": "comma",
    "레이어드컷": "layered", "레이어드": "layered",
    "크롭컷": "crop", "크롭": "crop",
    "텍스쳐드펌": "textured", "텍스쳐드": "textured",
    "모히칸컷": "mohican", "모히칸": "mohican",
    "언더컷": "undercut", "가일컷": "guile",
    "울프컷": "wolf", "히피펌": "hippie",
    "빌드펌": "build", "스왈로펌": "swallow",
}

PERM_KEYWORDS = ("펌", "perm", "웨이브", "wave")
COLOR_KEYWORDS = ("컬러", "염색", "탈색", "브릿지", "color", "dye")


def normalize_style_name(style_name: str) -> str:
    """
    헤어스타일명 정규화 (띄어쓰기 제거, 소문자)

    Examples:
        >>> normalize_style_name("리프 컷")
        "리프컷"

        >>> normalize_style_name("  Slick  Back ")
        "slickback"
    """
    if not style_name:
        return ""
    return "".join(style_name.split()).lower()


def style_id_for(style_name: str) -> Optional[str]:
    """스타일명에 대응하는 스타일 ID (없으면 None)"""
    return STYLE_ID_MAP.get(normalize_style_name(style_name))


def infer_category(style_name: str) -> str:
    """스타일명으로 저장 카테고리 추론: color > perm > cut"""
    normalized = normalize_style_name(style_name)
    if any(keyword in normalized for keyword in COLOR_KEYWORDS):
        return "color"
    if any(keyword in normalized for keyword in PERM_KEYWORDS):
        return "perm"
    return "cut"
