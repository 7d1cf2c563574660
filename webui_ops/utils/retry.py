"""Bounded retry policy for container restarts and health polling."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed or backoff delays over a bounded number of attempts.

    Args:
        max_attempts: Maximum number of attempts (>= 1)
        base_delay: Delay in seconds attached to the first attempt
        backoff_factor: Multiplier applied to the delay for each further attempt
        max_delay: Cap for any single delay
        initial_delay: Wait before the first attempt as well, not only between
            attempts (used when a resource such as a port needs time to be released)
        sleep: Sleep function, replaced by a fake clock in tests

    Example:
        The Open WebUI restart waits 2s, tries, then waits 5s and tries again:

        RetryPolicy(max_attempts=2, base_delay=2.0, backoff_factor=2.5, initial_delay=True)
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    backoff_factor: float = 1.0
    max_delay: float = 60.0
    initial_delay: bool = False
    sleep: Callable[[float], Any] = field(default=time.sleep, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay cannot be negative")

    def delay_for(self, step: int) -> float:
        """Delay for the given 1-indexed step of the schedule."""
        return min(self.base_delay * (self.backoff_factor ** (step - 1)), self.max_delay)

    def delays(self) -> list[float]:
        """Every wait this policy performs when all attempts fail."""
        steps = self.max_attempts if self.initial_delay else self.max_attempts - 1
        return [self.delay_for(step) for step in range(1, steps + 1)]

    def call(
        self,
        func: Callable[[], T],
        exceptions: tuple[type[Exception], ...] = (Exception,),
        on_retry: Callable[[Exception, int], None] | None = None,
        description: str | None = None,
    ) -> T:
        """Call ``func`` until it returns or the attempts are used up.

        Exceptions outside ``exceptions`` propagate immediately. After the last
        failed attempt the exception it raised is re-raised.
        """
        name = description or getattr(func, "__name__", "operation")
        schedule = self.delays()

        for attempt in range(1, self.max_attempts + 1):
            if self.initial_delay:
                self.sleep(schedule[attempt - 1])
            try:
                return func()
            except exceptions as e:
                if attempt == self.max_attempts:
                    logger.error(f"{name} failed after {self.max_attempts} attempts: {str(e)}")
                    raise

                if on_retry:
                    on_retry(e, attempt)

                if not self.initial_delay:
                    wait = schedule[attempt - 1]
                    logger.warning(
                        f"{name} attempt {attempt}/{self.max_attempts} failed: {str(e)}. "
                        f"Retrying in {wait:.1f}s..."
                    )
                    self.sleep(wait)
                else:
                    logger.warning(
                        f"{name} attempt {attempt}/{self.max_attempts} failed: {str(e)}"
                    )

        # max_attempts >= 1 guarantees the loop either returned or raised
        raise AssertionError("unreachable")
