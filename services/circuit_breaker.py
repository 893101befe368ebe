"""Circuit Breaker implementation for external API calls"""

from pybreaker import CircuitBreaker, CircuitBreakerError
from functools import wraps
from typing import Callable, Any, Optional
from core.logging import logger
from core.exceptions import UploadValidationException


# ========== Circuit Breaker Configuration ==========

# Gemini API Circuit Breaker
# - fail_max=5: Open after 5 consecutive failures
# - reset_timeout=60: Wait 60 seconds before trying again
# - exclude: bad input is not a Gemini outage
gemini_breaker = CircuitBreaker(
    fail_max=5,
    reset_timeout=60,
    exclude=[UploadValidationException],
    name='GeminiAPI'
)

# Payment backend Circuit Breaker (initiate + verify)
payment_breaker = CircuitBreaker(
    fail_max=5,
    reset_timeout=30,
    name='PaymentAPI'
)


def with_circuit_breaker(
    breaker: CircuitBreaker,
    fallback: Optional[Callable] = None
):
    """
    Decorator to apply circuit breaker to a function

    Args:
        breaker: CircuitBreaker instance to use
        fallback: Optional fallback function to call when circuit is open

    Example:
        @with_circuit_breaker(payment_breaker)
        def call_api():
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                return breaker.call(func, *args, **kwargs)

            except CircuitBreakerError:
                logger.error(
                    f"[CIRCUIT OPEN] {breaker.name}: circuit is open, "
                    f"skipping call to {func.__name__}"
                )

                if fallback:
                    logger.info(f"[FALLBACK] {breaker.name}: running fallback")
                    return fallback(*args, **kwargs)

                from core.exceptions import CircuitBreakerOpenException
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
        "gemini_api": _breaker_status(gemini_breaker),
        "payment_api": _breaker_status(payment_breaker)
    }


def reset_circuit_breakers():
    """Reset all circuit breakers (admin function)"""
    gemini_breaker.close()
    payment_breaker.close()
    logger.info("[ADMIN] All circuit breakers have been reset")
