# policy.py
# Error classification and retry decisions.

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, TypeVar

from react_harness.config import AgentConfig
from react_harness.errors import (
    ModelError,
    ParseError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Disposition(str, Enum):
    OBSERVE = "observe"  # becomes an observation; the loop continues
    RETRY = "retry"  # repeat the same operation
    FATAL = "fatal"  # terminate the run


@dataclass(frozen=True)
class RetryPolicy:
    max_model_retries: int = 3
    max_parse_retries: int = 2
    backoff_seconds: float = 1.0
    backoff_max_seconds: float = 30.0

    @classmethod
    def from_config(cls, config: AgentConfig) -> "RetryPolicy":
        return cls(
            max_model_retries=config.max_model_retries,
            max_parse_retries=config.max_parse_retries,
            backoff_seconds=config.retry_backoff_seconds,
            backoff_max_seconds=config.retry_backoff_max_seconds,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based), capped."""
        return min(self.backoff_seconds * (2**attempt), self.backoff_max_seconds)

    def disposition(self, exc: BaseException, attempt: int = 0) -> Disposition:
        if isinstance(exc, (ToolNotFoundError, ToolValidationError, ToolExecutionError)):
            return Disposition.OBSERVE
        if isinstance(exc, ParseError):
            return Disposition.FATAL if self.parse_budget_exhausted(attempt) else Disposition.OBSERVE
        if isinstance(exc, ModelError) and exc.retryable and attempt < self.max_model_retries:
            return Disposition.RETRY
        return Disposition.FATAL

    def parse_budget_exhausted(self, consecutive_failures: int) -> bool:
        return consecutive_failures > self.max_parse_retries

    def call_model(self, fn: Callable[[], T], sleep: Callable[[float], None] = time.sleep) -> T:
        """
        Run a model call, retrying retryable ModelErrors with bounded backoff.
        The last ModelError propagates once retries are exhausted.
        """
        attempt = 0
        while True:
            try:
                return fn()
            except ModelError as exc:
                if self.disposition(exc, attempt) is not Disposition.RETRY:
                    raise
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "Model call failed (attempt %d/%d): %s. Retrying in %.1fs.",
                    attempt + 1,
                    self.max_model_retries + 1,
                    exc,
                    delay,
                )
                sleep(delay)
                attempt += 1
