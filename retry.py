import random
import time
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from app_logger import get_logger

log = get_logger("retry")

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """
    Exponential backoff for calls to an external dependency.

    The delay before retry ``n`` (1-based) is
    ``min(base_delay * multiplier ** (n - 1), max_delay) + uniform(0, jitter)``.
    Only errors accepted by the caller's ``is_retryable`` predicate are retried;
    anything else, and the last failure once attempts run out, propagates.
    """

    max_attempts: int = Field(default=3, ge=1, le=10, description="Total attempts, including the first")
    base_delay_seconds: float = Field(default=2.0, ge=0.0, description="Delay before the first retry")
    multiplier: float = Field(default=2.0, ge=1.0, description="Growth factor between retries")
    max_delay_seconds: float = Field(default=60.0, ge=0.0)
    jitter_seconds: float = Field(default=1.0, ge=0.0, description="Upper bound of random extra delay")

    model_config = ConfigDict(extra="forbid")

    def delay_for(self, retry_number: int) -> float:
        delay = min(self.base_delay_seconds * (self.multiplier ** (retry_number - 1)), self.max_delay_seconds)
        if self.jitter_seconds:
            delay += random.random() * self.jitter_seconds
        return delay

    def call(
        self,
        fn: Callable[[], T],
        is_retryable: Callable[[Exception], bool],
        sleep: Callable[[float], None] = time.sleep,
        name: Optional[str] = None,
    ) -> T:
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as e:
                if attempt >= self.max_attempts or not is_retryable(e):
                    raise
                delay = self.delay_for(attempt)
                log.warning(
                    "Retrying after failure",
                    extra={
                        "operation": name or getattr(fn, "__name__", "call"),
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "delay_seconds": round(delay, 2),
                        "error": str(e),
                    },
                )
                sleep(delay)
                attempt += 1
