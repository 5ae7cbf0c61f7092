"""
Bounded regeneration policy: a fixed attempt budget, a sampling temperature that rises with
each attempt, and an acceptance predicate applied to every result.

Only output problems (parse failures and rejected output) are retried. A failed call to the
service itself propagates on the first attempt; the caller falls back instead.
"""
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt

from .config import PipelineLimits
from .errors import GenerationParseError, RejectedOutputError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: Tuple[Type[Exception], ...] = (GenerationParseError, RejectedOutputError)


class RetryPolicy:
    def __init__(
        self,
        max_attempts: int = 3,
        base_temperature: float = 0.5,
        temperature_step: float = 0.2,
        accept: Optional[Callable[[T], bool]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_temperature = base_temperature
        self.temperature_step = temperature_step
        self.accept = accept

    @classmethod
    def from_limits(cls, limits: PipelineLimits, accept: Optional[Callable[[T], bool]] = None) -> "RetryPolicy":
        return cls(
            max_attempts=limits.max_generation_attempts,
            base_temperature=limits.base_temperature,
            temperature_step=limits.temperature_step,
            accept=accept,
        )

    def temperature_for(self, attempt: int) -> float:
        """Temperature for a 1-based attempt number."""
        return round(self.base_temperature + self.temperature_step * (attempt - 1), 3)

    async def run(self, call: Callable[[float], Awaitable[T]], label: str = "generation") -> T:
        """Call `call(temperature)` until a result is accepted or the budget is spent.

        The last GenerationParseError / RejectedOutputError is re-raised when every attempt fails.
        """
        result = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                number = attempt.retry_state.attempt_number
                temperature = self.temperature_for(number)
                logger.info("%s: attempt %d/%d (temperature %.2f)", label, number, self.max_attempts, temperature)
                result = await call(temperature)
                if self.accept is not None and not self.accept(result):
                    raise RejectedOutputError(f"{label}: output rejected on attempt {number}")
        return result
