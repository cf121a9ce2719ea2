"""
Bridgekeeper - One-Time Code Replay Guard
===========================================
Remembers every OTP code that has already been accepted, per user, for a
short TTL. A code captured from a successful login cannot be replayed
while it would still verify.

The guard is in-memory and process-local. Losing it on restart is harmless:
a login is handled entirely within one process lifetime.
"""

import threading
import time
from typing import Callable

DEFAULT_TTL_SECONDS = 90


class OtpReplayGuard:
    """
    TTL set of consumed (identity, code) pairs.

    Attributes:
        ttl:    Seconds a consumed code stays blocked.
        _clock: Monotonic time source (injectable for tests).
        _used:  Key -> expiry timestamp.
    """

    def __init__(self, ttl: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._used: dict[str, float] = {}
        self._lock = threading.Lock()

    def seen(self, identity_key: str, code: str) -> bool:
        """True if this code was already consumed for this identity."""
        key = self._key(identity_key, code)
        with self._lock:
            self._evict()
            return key in self._used

    def consume(self, identity_key: str, code: str) -> bool:
        """
        Record a code as used.

        Returns:
            True the first time the pair is presented, False on a replay.
        """
        key = self._key(identity_key, code)
        with self._lock:
            self._evict()
            if key in self._used:
                return False
            self._used[key] = self._clock() + self.ttl
            return True

    def clear(self) -> None:
        with self._lock:
            self._used.clear()

    def __len__(self) -> int:
        with self._lock:
            self._evict()
            return len(self._used)

    # -- Internal helpers ------------------------------------------------------

    @staticmethod
    def _key(identity_key: str, code: str) -> str:
        return f"{identity_key}{code}"

    def _evict(self) -> None:
        now = self._clock()
        expired = [k for k, expiry in self._used.items() if expiry <= now]
        for k in expired:
            del self._used[k]
