"""Polar.sh checkout proxy endpoints"""

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from slowapi import Limiter
from slowapi.util import get_remote_address

from api.dependencies import (
    CheckoutCreateRequest,
    CheckoutDetailsRequest,
    CheckoutDetailsResponse,
    CheckoutSessionResponse,
)
from api.errors import error_response, internal_error_response
from core.exceptions import HairDirectorException
from core.logging import logger
from services.checkout_service import CheckoutService, get_checkout_service

router = APIRouter()

limiter = Limiter(key_func=get_remote_address)


@router.post("/checkout/create")
@limiter.limit("10/minute")
async def create_checkout(
    request: Request,
    body: CheckoutCreateRequest,
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """
    결제 세션 생성

    Returns:
        {"id": "<checkout id>", "url": "<hosted checkout url>"}
    """
    try:
        session = await run_in_threadpool(
            checkout_service.create_checkout_session, body.success_url, body.cancel_url, body.email
        )
    except HairDirectorException as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response("결제 세션 생성", e)

    return CheckoutSessionResponse(id=session.id, url=session.url).model_dump(by_alias=True)


@router.post("/checkout/details")
@limiter.limit("20/minute")
async def checkout_details(
    request: Request,
    body: CheckoutDetailsRequest,
    checkout_service: CheckoutService = Depends(get_checkout_service)
):
    """
    결제 정보 조회 (구매자 이메일)

    Returns:
        {"email": "buyer@example.com", "status": "succeeded"}
    """
    try:
        details = await run_in_threadpool(checkout_service.get_checkout_details, body.checkout_id)
    except HairDirectorException as e:
        return error_response(e)
    except Exception as e:
        return internal_error_response("결제 정보 조회", e)

    logger.info(f"💳 결제 정보 조회: {body.checkout_id} (status={details.status})")
    return CheckoutDetailsResponse(email=details.email, status=details.status).model_dump(by_alias=True)
