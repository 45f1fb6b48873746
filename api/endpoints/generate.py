"""3x3 hairstyle grid generation endpoint"""

import time

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from slowapi import Limiter
from slowapi.util import get_remote_address

from api.dependencies import GenerateRequest, GenerateResponse
from api.errors import error_response, internal_error_response
from core.exceptions import HairDirectorException
from core.logging import logger, log_structured
from services.hairstyle_synthesis_service import HairstyleSynthesisService, get_synthesis_service

router = APIRouter()

# Rate limiter - image generation is expensive, so limit more strictly
limiter = Limiter(key_func=get_remote_address)


@router.post("/generate")
@limiter.limit("5/minute")  # 분당 5회 제한 (이미지 생성은 비용이 높음)
async def generate_grid(
    request: Request,
    body: GenerateRequest,
    synthesis_service: HairstyleSynthesisService = Depends(get_synthesis_service)
):
    """
    3x3 헤어스타일 그리드 생성 API

    사용자 얼굴 사진에 9개 헤어스타일을 적용한 3x3 그리드 이미지를 생성합니다.
    styles가 정확히 9개가 아니면 기본 스타일 9개를 사용합니다.

    Returns:
        {"success": true, "image": "<base64>", "mimeType": "image/png"}
    """
    start_time = time.time()
    logger.info(f"🎨 그리드 생성 요청: styles={len(body.styles or [])}개")

    try:
        generated = await run_in_threadpool(
            synthesis_service.generate_grid, body.image, body.mime_type, body.styles
        )
    except HairDirectorException as e:
        log_structured("generation_error", {"error_type": e.__class__.__name__})
        return error_response(e)
    except Exception as e:
        return internal_error_response("그리드 생성", e)

    processing_time = round(time.time() - start_time, 2)
    logger.info(f"✅ 그리드 생성 완료 ({processing_time}초)")
    log_structured("generation_complete", {"processing_time": processing_time})

    return GenerateResponse(
        image=generated.image_base64,
        mime_type=generated.mime_type
    ).model_dump(by_alias=True)
