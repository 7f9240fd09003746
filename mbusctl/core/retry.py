"""Bounded retry helper for bus exchanges."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from mbusctl.core.model import RecvResult, RecvTimeout

LOGGER = logging.getLogger(__name__)


def _timeout_only(result: RecvResult) -> bool:
    return isinstance(result, RecvTimeout)


@dataclass(frozen=True)
class RetryOutcome:
    result: RecvResult
    attempts: int

    @property
    def exhausted(self) -> bool:
        return isinstance(self.result, RecvTimeout)


@dataclass(frozen=True)
class RetryPolicy:
    """Run an exchange up to `max_attempts` times.

    Each attempt returns a receive result. A result for which `retryable`
    is true triggers another attempt, any other result ends the loop.
    Exceptions raised by the exchange are fatal and propagate unchanged.
    """

    max_attempts: int
    retryable: Callable[[RecvResult], bool] = _timeout_only

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def run(self, exchange: Callable[[int], RecvResult]) -> RetryOutcome:
        result: RecvResult = RecvTimeout()
        for attempt in range(1, self.max_attempts + 1):
            result = exchange(attempt)
            if not self.retryable(result):
                return RetryOutcome(result=result, attempts=attempt)
            if attempt < self.max_attempts:
                LOGGER.debug("attempt %d/%d got %s, retrying", attempt, self.max_attempts, result)
        return RetryOutcome(result=result, attempts=self.max_attempts)
