"""Bounded retry with exponential backoff for outbound HTTP calls."""

import logging
import random
import time
from typing import Callable, TypeVar

import requests

from sourcing.core.errors import FatalSourcingError, RetriableTransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_BASE_DELAY_SECONDS = 1.2
RETRY_MAX_DELAY_SECONDS = 20.0


def is_retriable(exc: BaseException) -> bool:
    """Network failures, timeouts and 5xx answers are worth another attempt."""
    if isinstance(exc, (RetriableTransportError, requests.Timeout, requests.ConnectionError)):
        return True
    if isinstance(exc, requests.HTTPError):
        response = exc.response
        return response is not None and response.status_code >= 500
    return False


def call_with_retries(
    func: Callable[[], T],
    *,
    max_retries: int,
    description: str,
    base_delay: float = RETRY_BASE_DELAY_SECONDS,
    max_delay: float = RETRY_MAX_DELAY_SECONDS,
) -> T:
    """Run ``func`` and retry transient failures at most ``max_retries`` times.

    Anything not classified by :func:`is_retriable` is raised immediately as a
    FatalSourcingError, as is the last transient error once retries are exhausted.
    """
    attempt = 0
    delay = base_delay
    while True:
        attempt += 1
        try:
            return func()
        except FatalSourcingError:
            raise
        except Exception as exc:
            if not is_retriable(exc):
                logger.error("%s failed with a non-retriable error: %s", description, exc)
                raise FatalSourcingError(f"{description} failed: {exc}") from exc
            logger.warning("%s failed (attempt %s/%s): %s", description, attempt, max_retries + 1, exc)
            if attempt > max_retries:
                logger.error("%s exhausted retries", description)
                raise FatalSourcingError(
                    f"{description} failed after {attempt} attempts: {exc}"
                ) from exc
            time.sleep(min(delay, max_delay) + random.uniform(0, 0.8))
            delay *= 2
