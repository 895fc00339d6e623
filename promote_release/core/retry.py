"""Bounded retry with exponential backoff and jitter.

Steps report their outcome as a tagged result instead of raising for flow
control:

- ``Ok(value)``          the step succeeded.
- ``Retryable(error)``   a transient failure; try again after a delay.
- ``Fatal(error)``       give up immediately.

``RetryPolicy.run`` drives a step until it returns ``Ok``, returns ``Fatal``,
or the attempt budget is spent.  Only ``StoreTransientError`` and
``SigningUnavailable`` are ever classified retryable (``attempt()`` uses each
error class's ``retryable`` flag), so checksum mismatches, rejections and
cutover conflicts cannot be masked as transient.

Retry timeline with the defaults (4 attempts, 500 ms, x2):

- Attempt 1: immediate
- Attempt 2: ~0.5s (±25% jitter)
- Attempt 3: ~1s
- Attempt 4: ~2s
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import Any, Union

from pydantic import BaseModel, ConfigDict

from promote_release.errors import PromotionError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tagged step results
# ---------------------------------------------------------------------------


class Ok(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    value: Any = None


class Retryable(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    error: PromotionError


class Fatal(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    error: PromotionError


StepResult = Union[Ok, Retryable, Fatal]


def attempt(fn: Callable[[], Any]) -> StepResult:
    """Run *fn* once and tag its outcome.

    ``PromotionError`` subclasses are tagged by their ``retryable`` flag.
    Any other exception propagates unchanged.
    """
    try:
        return Ok(value=fn())
    except PromotionError as exc:
        return Retryable(error=exc) if exc.retryable else Fatal(error=exc)


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class RetryPolicy:
    """Exponential backoff with optional ±25% jitter.

    Parameters
    ----------
    max_attempts:
        Total attempts including the first one.  Must be at least 1.
    initial_delay_ms:
        Delay before the second attempt.
    backoff_multiplier:
        Growth factor applied per attempt.
    max_delay_ms:
        Ceiling on any single delay.
    jitter:
        Randomize each delay by ±25% to avoid synchronized retries.
    sleep:
        Injected for tests; defaults to ``time.sleep``.
    """

    def __init__(
        self,
        max_attempts: int = 4,
        initial_delay_ms: int = 500,
        backoff_multiplier: float = 2.0,
        max_delay_ms: int = 8000,
        jitter: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_attempts = max(1, max_attempts)
        self.initial_delay_ms = initial_delay_ms
        self.backoff_multiplier = backoff_multiplier
        self.max_delay_ms = max_delay_ms
        self.jitter = jitter
        self._sleep = sleep

    @classmethod
    def from_config(cls, cfg: Any) -> RetryPolicy:
        return cls(
            max_attempts=cfg.retry_max_attempts,
            initial_delay_ms=cfg.retry_initial_delay_ms,
            backoff_multiplier=cfg.retry_backoff_multiplier,
            max_delay_ms=cfg.retry_max_delay_ms,
            jitter=cfg.retry_jitter,
        )

    def calculate_delay(self, attempt_index: int) -> float:
        """Delay in seconds after the 0-indexed *attempt_index* failed."""
        base_ms = min(
            self.initial_delay_ms * (self.backoff_multiplier**attempt_index),
            self.max_delay_ms,
        )
        if self.jitter:
            spread = base_ms * 0.25
            base_ms += random.uniform(-spread, spread)
        return max(0.0, base_ms / 1000.0)

    def run(self, step: Callable[[], StepResult], *, op: str = "operation") -> Any:
        """Drive *step* until it succeeds, fails fatally, or attempts run out.

        Returns the ``Ok`` value.  Raises the carried error for ``Fatal``
        results and for the last ``Retryable`` once the budget is spent.
        """
        for index in range(self.max_attempts):
            result = step()
            if isinstance(result, Ok):
                if index:
                    logger.info("%s succeeded on attempt %d", op, index + 1)
                return result.value
            if isinstance(result, Fatal):
                raise result.error

            remaining = self.max_attempts - index - 1
            if remaining == 0:
                logger.warning(
                    "%s: retries exhausted after %d attempts: %s",
                    op,
                    self.max_attempts,
                    result.error,
                )
                raise result.error

            delay = self.calculate_delay(index)
            logger.debug(
                "%s: attempt %d/%d failed (%s); retrying in %.2fs",
                op,
                index + 1,
                self.max_attempts,
                result.error,
                delay,
            )
            self._sleep(delay)

        raise AssertionError("unreachable")  # pragma: no cover

    def call(self, fn: Callable[[], Any], *, op: str = "operation") -> Any:
        """Shorthand for ``run(lambda: attempt(fn))``."""
        return self.run(lambda: attempt(fn), op=op)
