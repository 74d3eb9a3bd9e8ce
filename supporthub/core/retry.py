"""Bounded retry with exponential backoff for store operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from supporthub.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget and backoff schedule.

    With the defaults an operation is tried three times, sleeping 100ms and
    then 200ms between attempts.
    """

    attempts: int = 3
    initial_delay: float = 0.1
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must not be negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            attempts=settings.retry_attempts,
            initial_delay=settings.retry_initial_delay,
            multiplier=settings.retry_multiplier,
        )

    def retrying(self, *, give_up_on: tuple[type[BaseException], ...] = ()) -> AsyncRetrying:
        """Build an explicit retry controller.

        Exceptions listed in ``give_up_on`` are raised on the first
        occurrence. After the last attempt the original exception propagates.
        """

        return AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.initial_delay, exp_base=self.multiplier),
            retry=retry_if_not_exception_type(give_up_on),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
