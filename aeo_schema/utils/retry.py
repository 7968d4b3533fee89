"""
Reusable retry policy for transient infrastructure errors.

Each call site supplies its own retryable-error predicate; attempts and
exponential backoff (initial_delay, 2x, 4x, ...) come from the policy.
"""
import asyncio
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from aeo_schema.config import config
from aeo_schema.utils.logger import LayerLogger

TRANSIENT_MESSAGE_MARKERS = (
    "network error",
    "connection",
    "timeout",
    "timed out",
    "503",
    "502",
    "429",
)
TRANSIENT_STATUS_CODES = {429, 500, 502, 503}


def is_transient_error(error: BaseException) -> bool:
    """Default predicate: network failures, timeouts and 5xx/429 statuses."""
    if isinstance(error, (ConnectionError, asyncio.TimeoutError, TimeoutError)):
        return True

    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    if isinstance(status, int) and status in TRANSIENT_STATUS_CODES:
        return True

    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)


class RetryPolicy:
    """
    Retry an async operation with exponential backoff.

    Non-retryable errors and the error of the final attempt propagate
    unchanged to the caller.
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        initial_delay: Optional[float] = None,
        max_delay: float = 30.0,
        retryable: Callable[[BaseException], bool] = is_transient_error,
        name: str = "operation",
    ):
        self.max_attempts = max_attempts if max_attempts is not None else config.RETRY_MAX_ATTEMPTS
        self.initial_delay = initial_delay if initial_delay is not None else config.RETRY_INITIAL_DELAY
        self.max_delay = max_delay
        self.retryable = retryable
        self.name = name
        self.logger = LayerLogger("retry")

    def with_predicate(self, retryable: Callable[[BaseException], bool], name: str) -> "RetryPolicy":
        """Same timing, different retryable-error predicate."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            retryable=retryable,
            name=name,
        )

    def _before_sleep(self, retry_state) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        self.logger.log_action(
            self.name,
            "retrying",
            attempt=retry_state.attempt_number,
            max_attempts=self.max_attempts,
            next_delay=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(error) if error else None,
        )

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await ``func(*args, **kwargs)``, retrying transient failures."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential(multiplier=self.initial_delay, max=self.max_delay),
            retry=retry_if_exception(self.retryable),
            before_sleep=self._before_sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await func(*args, **kwargs)
