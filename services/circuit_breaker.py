"""Circuit Breaker implementation for the Gemini collaborators"""

from functools import wraps
from typing import Any, Callable

from pybreaker import CircuitBreaker, CircuitBreakerError, CircuitBreakerListener

from core.exceptions import (
    CircuitBreakerOpenException,
    GeminiPermissionException,
    GeminiRateLimitException,
    ImageAcquisitionException,
)
from core.logging import logger


class LoggingListener(CircuitBreakerListener):
    """Logs circuit breaker state transitions"""

    def state_change(self, cb: CircuitBreaker, old_state, new_state) -> None:
        new_name = getattr(new_state, "name", str(new_state))
        if new_name == "open":
            logger.error(
                f"[CIRCUIT BREAKER OPEN] {cb.name}: "
                f"{cb.fail_max}회 연속 실패로 인해 Circuit이 Open 되었습니다."
            )
        elif new_name == "half-open":
            logger.warning(f"[CIRCUIT BREAKER HALF-OPEN] {cb.name}: 복구 테스트를 시작합니다.")
        else:
            logger.info(f"[CIRCUIT BREAKER CLOSED] {cb.name}: Circuit이 정상 복구되었습니다.")

    def failure(self, cb: CircuitBreaker, exc: BaseException) -> None:
        logger.warning(
            f"[CIRCUIT BREAKER FAILURE] {cb.name}: "
            f"실패 ({cb.fail_counter}/{cb.fail_max}): {str(exc)}"
        )


# ========== Circuit Breaker Configuration ==========
# Quota, credential and input errors do not count as outages
_EXCLUDED = [GeminiRateLimitException, GeminiPermissionException, ImageAcquisitionException]

# - fail_max=5: Open after 5 consecutive failures
# - reset_timeout=60: Wait 60 seconds before trying again
gemini_breaker = CircuitBreaker(
    fail_max=5,
    reset_timeout=60,
    exclude=_EXCLUDED,
    listeners=[LoggingListener()],
    name="GeminiAnalysis"
)

image_breaker = CircuitBreaker(
    fail_max=5,
    reset_timeout=60,
    exclude=_EXCLUDED,
    listeners=[LoggingListener()],
    name="GeminiImage"
)


def with_circuit_breaker(breaker: CircuitBreaker):
    """
    Decorator to apply circuit breaker to a function

    When the circuit is open the call is rejected with
    CircuitBreakerOpenException instead of reaching the API.

    Example:
        @with_circuit_breaker(gemini_breaker)
        def call_api():
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                return breaker.call(func, *args, **kwargs)
            except CircuitBreakerError:
                logger.error(f"[CIRCUIT OPEN] {breaker.name}: Circuit이 Open 상태입니다.")
                raise CircuitBreakerOpenException(service_name=breaker.name)

        return wrapper
    return decorator


def _breaker_status(breaker: CircuitBreaker) -> dict:
    state = breaker.current_state
    return {
        "state": str(state),
        "fail_counter": breaker.fail_counter,
        "fail_max": breaker.fail_max,
        "reset_timeout": breaker.reset_timeout,
        "is_open": state == "open",
        "is_closed": state == "closed",
        "is_half_open": state == "half-open"
    }


def get_circuit_breaker_status() -> dict:
    """
    Get current status of all circuit breakers

    Returns:
        Dictionary with circuit breaker statistics
    """
    return {
        "gemini_analysis": _breaker_status(gemini_breaker),
        "gemini_image": _breaker_status(image_breaker),
    }


def reset_circuit_breakers():
    """Reset all circuit breakers"""
    gemini_breaker.close()
    image_breaker.close()
    logger.info("All circuit breakers have been reset")
