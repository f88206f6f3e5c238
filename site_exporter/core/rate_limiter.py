import time
from typing import Callable

from ..colored_logger import get_colored_logger
from .state_store import StateStore

logger = get_colored_logger(__name__)

DOWNLOAD_WINDOW_SECONDS = 60


class DownloadRateLimiter:
    """
    Fixed-window limiter allowing one successful download per user per window.

    The mark is a timestamp stored with a TTL equal to the window, so a
    request exactly ``window_seconds`` after the last success passes.
    """

    KEY_PREFIX = "sse_download_rate_limit_"

    def __init__(
        self,
        store: StateStore,
        window_seconds: int = DOWNLOAD_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.window_seconds = window_seconds if isinstance(window_seconds, int) else 60
        self._clock = clock

    def _key(self, user_id: int) -> str:
        return f"{self.KEY_PREFIX}{user_id}"

    def is_allowed(self, user_id: int) -> bool:
        """Check the window for ``user_id`` and consume it when the request passes."""
        now = self._clock()
        last_download = self.store.get(self._key(user_id))

        if isinstance(last_download, (int, float)) and (
            now - last_download
        ) < self.window_seconds:
            logger.debug("Download rate limit hit for user %s", user_id)
            return False

        self.store.set(self._key(user_id), now, ttl=self.window_seconds)
        return True

    def wait_time(self, user_id: int) -> float:
        last_download = self.store.get(self._key(user_id))
        if not isinstance(last_download, (int, float)):
            return 0
        return max(0, self.window_seconds - (self._clock() - last_download))

    def reset(self, user_id: int) -> None:
        self.store.delete(self._key(user_id))
