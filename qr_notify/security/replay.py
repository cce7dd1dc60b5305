"""Single-use enforcement for auth token ids."""

import logging
from typing import Callable

from qr_notify.security.tokens import now_ms

logger = logging.getLogger(__name__)

MAX_TRACKED_TOKEN_IDS = 10_000


class ReplayGuard:
    """
    In-memory set of consumed token ids, each kept until its token expires.

    Once ``remember`` has been called for a token id, ``seen`` returns True
    for it until the token's expiry.
    """

    def __init__(
        self,
        max_entries: int = MAX_TRACKED_TOKEN_IDS,
        clock: Callable[[], int] = now_ms,
    ):
        self.max_entries = max_entries
        self.clock = clock
        self._used: dict[str, int] = {}

    def seen(self, token_id: str) -> bool:
        expires_at_ms = self._used.get(token_id)
        if expires_at_ms is None:
            return False
        if expires_at_ms <= self.clock():
            del self._used[token_id]
            return False
        return True

    def remember(self, token_id: str, expires_at_ms: int) -> None:
        now = self.clock()
        if expires_at_ms <= now:
            return

        self._used[token_id] = expires_at_ms

        if len(self._used) > self.max_entries:
            self.sweep(now)

    def sweep(self, now: int) -> int:
        """Drop expired ids; returns how many were removed."""
        expired = [tid for tid, exp in self._used.items() if exp <= now]
        for tid in expired:
            del self._used[tid]
        if expired:
            logger.debug(f"Replay guard swept {len(expired)} expired token ids")
        return len(expired)

    def __len__(self) -> int:
        return len(self._used)
