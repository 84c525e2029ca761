"""Exponential backoff for outbound A2A calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

import requests
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from a2a_workflows.errors import AgentUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    AgentUnavailableError,
    requests.ConnectionError,
    requests.Timeout,
)


class RetryManager:
    """Retries transient failures with exponential backoff.

    ``max_retries`` counts retries after the first attempt. The delay before
    retry ``n`` is ``base_delay * backoff_factor ** (n - 1)``, capped at
    ``max_delay``.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 32.0,
        backoff_factor: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self._sleep = sleep

    def _log_retry(self, state: RetryCallState) -> None:
        delay = state.next_action.sleep if state.next_action else 0.0
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            f"A2A retry attempt {state.attempt_number}/{self.max_retries} "
            f"after {delay}s delay: {error}"
        )

    def retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(
                multiplier=self.base_delay, exp_base=self.backoff_factor, max=self.max_delay
            ),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

    def call(self, fn: Callable[[], T]) -> T:
        return self.retrying()(fn)
