"""
Per-user rate limits for the notification actions.

Each action gets its own fixed window per user, counted in process memory by
the ``limits`` library.
"""

import logging

from limits import parse
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter

from helparo.errors import RateLimited

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, storage: Storage | None = None) -> None:
        self.storage = storage if storage is not None else MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self.storage)

    def check(self, action: str, user_id: str, limit: str) -> None:
        """
        Count one call of ``action`` by ``user_id``.

        ``limit`` is a rate string such as ``"30/minute"``. Raises
        ``RateLimited`` once the caller is over it for the current window.
        """
        if not self._strategy.hit(parse(limit), action, user_id):
            logger.warning(f"Rate limit {limit} hit for {action} by user {user_id}")
            raise RateLimited()

    def reset(self) -> None:
        self.storage.reset()


_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter
