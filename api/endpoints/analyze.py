"""Face analysis proxy endpoint"""

import time

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from slowapi import Limiter
from slowapi.util import get_remote_address

from api.dependencies import ImageRequest
from api.errors import error_response, internal_error_response
from core.exceptions import HairDirectorException
from core.logging import logger, log_structured
from services.gemini_analysis_service import GeminiAnalysisService, get_analysis_service
from core.kv_store import calculate_image_hash

router = APIRouter()

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


@router.post("/analyze")
@limiter.limit("10/minute")  # 분당 10회 제한
async def analyze_face(
    request: Request,
    body: ImageRequest,
    analysis_service: GeminiAnalysisService = Depends(get_analysis_service)
):
    """
    얼굴형 분석 API

    Request:
        {"image": "<base64>", "mimeType": "image/jpeg"}

    Returns:
        {"success": true, "analysis": AnalysisResult, "processing_time": 2.1}

    Errors:
        429 {"error": "RATE_LIMIT_EXCEEDED", "message": ..., "retryAfter": 60}
    """
    start_time = time.time()
    image_hash = calculate_image_hash(body.image.encode())[:16]

    logger.info(f"🔍 분석 요청: {body.mime_type} (hash={image_hash})")

    try:
        analysis = await run_in_threadpool(analysis_service.analyze, body.image, body.mime_type)
    except HairDirectorException as e:
        log_structured("analysis_error", {
            "error_type": e.__class__.__name__,
            "image_hash": image_hash
        })
        return error_response(e)
    except Exception as e:
        return internal_error_response("분석", e)

    processing_time = round(time.time() - start_time, 2)
    log_structured("analysis_complete", {
        "image_hash": image_hash,
        "processing_time": processing_time,
        "face_shape": analysis.face_shape.value,
        "skin_tone": analysis.skin_tone.value
    })

    return {
        "success": True,
        "analysis": analysis.model_dump(mode="json", by_alias=True),
        "processing_time": processing_time
    }
