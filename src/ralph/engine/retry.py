"""Bounded exponential backoff around a single-attempt turn runner."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from ralph.engine.control import LoopControl
from ralph.engine.models import Interrupted, TransientError, TurnOutcome, retries_exhausted

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT")


@dataclass(slots=True)
class RetryPolicy:
    """Attempt ceiling counts every invocation, the first one included."""

    max_attempts: int = 5
    base_delay_seconds: float = 5.0
    poll_interval_seconds: float = 0.1

    def delay_before_retry(self, retry_number: int) -> float:
        """Delay before retry ``k`` (k >= 1) is ``base * 2 ** (k - 1)``."""

        return self.base_delay_seconds * (2 ** max(retry_number - 1, 0))


@dataclass(slots=True)
class RetryNotice:
    """Emitted before each backoff wait so the presenter can show progress."""

    retry_number: int
    max_retries: int
    delay_seconds: float
    reason: str


class RetryController:
    """Repeat transient failures; everything else is returned to the caller at once.

    Generic over payload type: the attempt callable decides what a
    successful payload looks like.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        policy: RetryPolicy,
        control: LoopControl,
        on_retry: Callable[[RetryNotice], None] | None = None,
        on_tick: Callable[[], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy
        self.control = control
        self.on_retry = on_retry
        self.on_tick = on_tick
        self._sleep = sleep
        self._clock = clock

    def run(self, attempt: Callable[[], TurnOutcome[PayloadT]]) -> TurnOutcome[PayloadT]:
        last_transient: TransientError | None = None
        for attempt_no in range(1, self.policy.max_attempts + 1):
            if attempt_no > 1 and last_transient is not None:
                retry_number = attempt_no - 1
                delay = self.policy.delay_before_retry(retry_number)
                logger.warning(
                    "Transient agent failure; retry %d/%d in %.1fs: %s",
                    retry_number,
                    self.policy.max_attempts - 1,
                    delay,
                    last_transient.reason,
                )
                if self.on_retry is not None:
                    self.on_retry(
                        RetryNotice(
                            retry_number=retry_number,
                            max_retries=self.policy.max_attempts - 1,
                            delay_seconds=delay,
                            reason=last_transient.reason,
                        ),
                    )
                if not self._wait(delay):
                    logger.info("Backoff wait interrupted by user")
                    return Interrupted()
            if self.control.kill_requested:
                return Interrupted()

            outcome = attempt()
            if not isinstance(outcome, TransientError):
                return outcome
            last_transient = outcome

        if last_transient is None:
            raise RuntimeError("RetryPolicy.max_attempts must be > 0.")
        logger.error(
            "Giving up after %d attempts: %s",
            self.policy.max_attempts,
            last_transient.reason,
        )
        return retries_exhausted(last_transient, attempts=self.policy.max_attempts)

    def _wait(self, seconds: float) -> bool:
        """Sleep in poll-sized slices; return False if a kill arrives first."""

        deadline = self._clock() + seconds
        while True:
            if self.control.kill_requested:
                return False
            remaining = deadline - self._clock()
            if remaining <= 0:
                return True
            if self.on_tick is not None:
                self.on_tick()
            self._sleep(min(self.policy.poll_interval_seconds, remaining))
