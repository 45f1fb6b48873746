"""History and saved-style endpoints"""

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import (
    BookmarkBlueprintRequest,
    BookmarkVideoRequest,
    CategoryUpdateRequest,
    NotesUpdateRequest,
    SaveStyleRequest,
)
from api.errors import error_response
from core.dependencies import get_library
from core.exceptions import InvalidCategoryException
from services.library_service import LibraryService, format_relative_date
from storage.models import NewSavedStyle


router = APIRouter()


def _history_entry(item) -> dict:
    entry = item.model_dump(mode="json", by_alias=True)
    entry["dateLabel"] = format_relative_date(item.date)
    return entry


# ========== History ==========
@router.get("/history")
async def list_history(library: LibraryService = Depends(get_library)):
    """히스토리 목록 (최신순, 최대 10개)"""
    items = library.list_history()
    return {"count": len(items), "items": [_history_entry(item) for item in items]}


@router.get("/history/{item_id}")
async def history_detail(item_id: str, library: LibraryService = Depends(get_library)):
    """
    히스토리 상세

    v1.0 항목(fullAnalysisResult 없음)은 저장된 요약 정보만으로 표시합니다 (legacy=true).
    """
    detail = library.history_detail(item_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="히스토리 항목을 찾을 수 없습니다")

    return {
        "item": _history_entry(detail.item),
        "faceShape": detail.face_shape.value,
        "upperRatio": detail.upper_ratio,
        "middleRatio": detail.middle_ratio,
        "lowerRatio": detail.lower_ratio,
        "features": detail.features,
        "recommendedStyles": detail.recommended_styles,
        "analysis": detail.analysis.model_dump(mode="json", by_alias=True) if detail.analysis else None,
        "legacy": detail.is_legacy,
        "dateLabel": detail.date_label
    }


@router.post("/history/{item_id}/like")
async def toggle_like(item_id: str, library: LibraryService = Depends(get_library)):
    item = library.toggle_like(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="히스토리 항목을 찾을 수 없습니다")
    return {"id": item.id, "liked": item.liked}


@router.delete("/history/{item_id}")
async def delete_history(item_id: str, library: LibraryService = Depends(get_library)):
    library.delete_history(item_id)
    return {"success": True}


@router.delete("/history")
async def clear_history(library: LibraryService = Depends(get_library)):
    library.clear_history()
    return {"success": True}


# ========== Saved styles ==========
@router.get("/saved")
async def list_saved(
    category: str = Query("all", description="all | cut | perm | color"),
    library: LibraryService = Depends(get_library)
):
    try:
        items = library.list_saved(category)
    except InvalidCategoryException as e:
        return error_response(e)
    return {
        "category": category,
        "count": len(items),
        "items": [s.model_dump(mode="json", by_alias=True) for s in items]
    }


@router.post("/saved")
async def save_style(body: SaveStyleRequest, library: LibraryService = Depends(get_library)):
    """스타일 저장 (같은 videoId의 영상은 기존 항목 반환)"""
    saved = library.save(NewSavedStyle(**body.model_dump()))
    return _saved_or_507(saved)


@router.post("/saved/video")
async def bookmark_video(body: BookmarkVideoRequest, library: LibraryService = Depends(get_library)):
    """스타일링 영상 저장 (같은 영상은 한 번만 저장)"""
    return _saved_or_507(library.bookmark_video(body.title, body.video_id, body.thumbnail))


@router.post("/saved/blueprint")
async def bookmark_blueprint(body: BookmarkBlueprintRequest, library: LibraryService = Depends(get_library)):
    """스타일 상세 패널에서 저장"""
    return _saved_or_507(library.bookmark_blueprint(body.title, body.thumbnail, body.notes))


def _saved_or_507(saved) -> dict:
    if saved is None:
        raise HTTPException(status_code=507, detail="저장 공간이 부족합니다")
    return saved.model_dump(mode="json", by_alias=True)


@router.patch("/saved/{item_id}/category")
async def update_category(
    item_id: str,
    body: CategoryUpdateRequest,
    library: LibraryService = Depends(get_library)
):
    try:
        library.update_category(item_id, body.category)
    except InvalidCategoryException as e:
        return error_response(e)
    return {"success": True}


@router.patch("/saved/{item_id}/notes")
async def update_notes(
    item_id: str,
    body: NotesUpdateRequest,
    library: LibraryService = Depends(get_library)
):
    library.update_notes(item_id, body.notes)
    return {"success": True}


@router.delete("/saved/{item_id}")
async def delete_saved(item_id: str, library: LibraryService = Depends(get_library)):
    library.delete_saved(item_id)
    return {"success": True}


@router.delete("/saved")
async def clear_saved(library: LibraryService = Depends(get_library)):
    library.clear_saved()
    return {"success": True}


@router.get("/storage")
async def storage_usage(library: LibraryService = Depends(get_library)):
    """저장 공간 사용량 (디버그용)"""
    return library.store.get_storage_usage()
