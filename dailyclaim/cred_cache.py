from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from .config import CRED_CACHE_TTL_MINUTES
from .models import SigningCredential

CacheKey = Tuple[str, str, str]  # (game account id, server, token fingerprint)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialCache:
    """In-memory SKPORT credential store with a fixed TTL.

    Entries are keyed by ``(account_id, server, owner)``, where owner is a
    fingerprint of the account token that produced the credential. Only plain
    dict operations are used between awaits, so concurrent claims for
    different keys never block each other; two refreshes racing on one key
    just last-write-win.
    """

    def __init__(self, ttl: timedelta = timedelta(minutes=CRED_CACHE_TTL_MINUTES),
                 clock: Callable[[], datetime] = _utcnow):
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[CacheKey, Tuple[SigningCredential, datetime]] = {}

    def get(self, key: CacheKey, now: Optional[datetime] = None) -> Optional[SigningCredential]:
        entry = self._entries.get(key)
        if not entry:
            return None
        cred, obtained_at = entry
        now = now or self.clock()
        if now - obtained_at >= self.ttl:
            # expired: drop it so the next caller re-exchanges
            self._entries.pop(key, None)
            return None
        return cred

    def put(self, key: CacheKey, cred: SigningCredential, now: Optional[datetime] = None):
        self._entries[key] = (cred, now or self.clock())

    def invalidate(self, key: CacheKey):
        self._entries.pop(key, None)

    def invalidate_account(self, account_id: str, owner: Optional[str] = None) -> int:
        keys = [k for k in self._entries
                if k[0] == str(account_id) and (owner is None or k[2] == owner)]
        for k in keys:
            self._entries.pop(k, None)
        return len(keys)

    def invalidate_all(self):
        self._entries.clear()

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        return self.get(key) is not None
