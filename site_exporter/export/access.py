"""
Request authentication helpers: action tokens, capability and referer checks.

Action tokens are HMAC-SHA256 digests over (tick, action, user id). A tick
covers half the token lifetime, so a token stays valid for between one half
and one full lifetime after it was issued.
"""

import hashlib
import hmac
import math
import time
from typing import Callable

from ..core.context import Requester

MANAGE_CAPABILITY = "manage_options"
TOKEN_LIFETIME_SECONDS = 24 * 60 * 60

DOWNLOAD_ACTION = "sse_secure_download"
DELETE_ACTION = "sse_delete_export"
EXPORT_ACTION = "sse_export_action"


class ActionTokenService:
    """Issues and verifies action-scoped request tokens."""

    def __init__(
        self,
        secret: str,
        lifetime: int = TOKEN_LIFETIME_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("Token secret cannot be empty")
        self._secret = secret.encode("utf-8")
        self.lifetime = lifetime
        self._clock = clock

    def _tick(self) -> int:
        return int(math.ceil(self._clock() / (self.lifetime / 2)))

    def _digest(self, tick: int, action: str, user_id: int) -> str:
        message = f"{tick}|{action}|{user_id}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()[:20]

    def issue(self, action: str, user_id: int) -> str:
        return self._digest(self._tick(), action, user_id)

    def verify(self, token: str, action: str, user_id: int) -> bool:
        if not token or not isinstance(token, str):
            return False

        tick = self._tick()
        for candidate_tick in (tick, tick - 1):
            expected = self._digest(candidate_tick, action, user_id)
            if hmac.compare_digest(expected, token):
                return True
        return False


class AccessPolicy:
    """Capability and request-origin checks for privileged operations."""

    def __init__(self, admin_url: str, capability: str = MANAGE_CAPABILITY):
        self.admin_url = admin_url
        self.capability = capability

    def is_privileged(self, requester: Requester) -> bool:
        return requester.can(self.capability)

    def has_valid_referer(self, requester: Requester) -> bool:
        """The request must originate from the admin area."""
        return bool(self.admin_url) and requester.referer.startswith(self.admin_url)
