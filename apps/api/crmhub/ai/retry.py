from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from crmhub.metrics import observe_ai_call, observe_ai_retry


logger = logging.getLogger("crmhub.ai")

T = TypeVar("T")


class ProviderError(Exception):
    """An upstream AI provider call failed after all retry attempts."""

    def __init__(self, operation: str, attempts: int) -> None:
        super().__init__(f"{operation} failed after {attempts} attempts")
        self.operation = operation
        self.attempts = attempts


def backoff_delay_ms(attempt: int, initial_delay_ms: int) -> int:
    return initial_delay_ms * (2 ** (attempt - 1))


def with_retry(
    operation: Callable[[], T],
    name: str,
    *,
    max_attempts: int = 3,
    initial_delay_ms: int = 1000,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    attempts = max(1, max_attempts)
    last_error: Exception | None = None

    for attempt in range(1, attempts + 1):
        try:
            result = operation()
        except Exception as exc:
            last_error = exc
            if attempt == attempts:
                break
            delay_ms = backoff_delay_ms(attempt, initial_delay_ms)
            observe_ai_retry(name)
            logger.warning(
                "ai.retry",
                extra={
                    "operation": name,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "delay_ms": delay_ms,
                    "error": str(exc),
                },
            )
            sleep(delay_ms / 1000)
            continue

        observe_ai_call(name, "success")
        return result

    observe_ai_call(name, "failure")
    logger.error(
        "ai.provider_failed",
        extra={"operation": name, "attempt": attempts, "max_attempts": attempts, "error": str(last_error)},
    )
    raise ProviderError(name, attempts) from last_error
