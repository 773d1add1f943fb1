import logging
from typing import Callable, TypeVar

from relayer_exporter.context import Context
from relayer_exporter.errors import CancellationError, ExhaustedRetryError, TransientRPCError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 5
DEFAULT_DELAY = 0.4  # seconds


class RetryPolicy:
    """Fixed attempt budget with a fixed pause between attempts.

    Only ``TransientRPCError`` is retried. Anything else propagates from the
    attempt that raised it.
    """

    def __init__(self, attempts: int = DEFAULT_ATTEMPTS, delay: float = DEFAULT_DELAY):
        if attempts < 1:
            raise ValueError("retry attempts must be >= 1")
        self.attempts = attempts
        self.delay = delay

    def call(self, ctx: Context, fn: Callable[..., T], *args, **kwargs) -> T:
        description = getattr(fn, "__name__", repr(fn))
        chain_id = getattr(getattr(fn, "__self__", None), "chain_id", None)
        if chain_id:
            description = f"{chain_id} {description}"
        last_error = None
        for attempt in range(1, self.attempts + 1):
            ctx.check(description)
            try:
                return fn(*args, **kwargs)
            except TransientRPCError as e:
                last_error = e
                logger.debug("%s failed (attempt %d/%d): %s", description, attempt, self.attempts, e)
            if attempt < self.attempts and ctx.wait(self.delay):
                raise CancellationError(f"{description} cancelled after {attempt} attempt(s)")
        raise ExhaustedRetryError(description, self.attempts, last_error) from last_error
