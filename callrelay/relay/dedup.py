"""In-memory record of recently relayed pairs.

Both halves of a pair raise their own filesystem event, and each event
resolves to the same complete pair. The first one to claim a pair's key
uploads it; later claims inside the retention window are refused.

Nothing is persisted: a restart forgets every claim.
"""

import time
from collections.abc import Callable

DEFAULT_RETENTION_SECONDS = 300.0


class RecentUploads:
    """Pair keys claimed within the last ``retention_seconds``.

    Usage::

        recent = RecentUploads(retention_seconds=300)
        if recent.claim(pair.key):
            ...  # upload
        else:
            ...  # already handled
    """

    def __init__(
        self,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._retention = retention_seconds
        self._clock = clock
        self._claimed: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._claimed)

    def __contains__(self, key: str) -> bool:
        self.forget_expired()
        return key in self._claimed

    def claim(self, key: str) -> bool:
        """Record ``key`` as in flight. Returns False if it was already claimed."""
        self.forget_expired()
        if key in self._claimed:
            return False
        self._claimed[key] = self._clock()
        return True

    def release(self, key: str) -> bool:
        """Drop a claim so a later event can retry. Returns True if it existed."""
        return self._claimed.pop(key, None) is not None

    def forget_expired(self) -> int:
        """Drop claims older than the retention window. Returns how many went."""
        cutoff = self._clock() - self._retention
        expired = [k for k, claimed_at in self._claimed.items() if claimed_at <= cutoff]
        for key in expired:
            del self._claimed[key]
        return len(expired)
