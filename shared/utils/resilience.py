"""
shared/utils/resilience.py
Circuit breakers for downstream services and retry policies for
compensating datastore writes.
"""

import logging

from pybreaker import CircuitBreaker, CircuitBreakerListener
from sqlalchemy.exc import DBAPIError, OperationalError
from tenacity import (
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


class _LoggingListener(CircuitBreakerListener):
    def state_change(self, cb, old_state, new_state):
        logger.warning(
            f"Circuit breaker '{cb.name}' changed state: "
            f"{old_state.name if old_state else None} -> {new_state.name}"
        )


class CircuitBreakerManager:
    """Manages circuit breakers for each downstream service."""

    def __init__(self):
        self.breakers = {}

    def get_breaker(self, service_name: str, exclude=None) -> CircuitBreaker:
        """
        Get or create a circuit breaker for a service. Exceptions in
        ``exclude`` are client errors and do not count as failures.
        """
        if service_name not in self.breakers:
            self.breakers[service_name] = CircuitBreaker(
                fail_max=5,  # Open after 5 failures
                reset_timeout=60,  # Try again after 60 seconds
                name=service_name,
                listeners=[_LoggingListener()],
                exclude=exclude or [],
            )
        return self.breakers[service_name]


circuit_breaker_manager = CircuitBreakerManager()


# Retry policy for compensating writes (seat release after a failed insert).
COMPENSATION_RETRY = dict(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, max=2),
    retry=retry_if_exception_type((OperationalError, DBAPIError, TimeoutError)),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
