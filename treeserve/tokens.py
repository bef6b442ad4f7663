"""
Session token storage for treeserve

Tokens live in memory only and do not survive a restart. Expired tokens
are dropped lazily, the first time a lookup finds them stale.
"""

import hashlib
import logging
import secrets
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional

from .models import TokenInfo

logger = logging.getLogger(__name__)

# Session lifetimes offered at login
DEFAULT_TOKEN_TTL = 24 * 3600
REMEMBER_TOKEN_TTL = 30 * 24 * 3600

TOKEN_ENTROPY_BYTES = 32


def generate_token() -> str:
    """Random bytes from the OS CSPRNG, handed out as their SHA-256 hex digest"""
    raw = secrets.token_bytes(TOKEN_ENTROPY_BYTES)
    return hashlib.sha256(raw).hexdigest()


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class TokenStore(ABC):
    """Interface for session token storage"""

    @abstractmethod
    def issue(self, duration: float) -> TokenInfo:
        """Create a token valid for ``duration`` seconds"""

    @abstractmethod
    def validate(self, token: str) -> bool:
        """True if the token exists and has not expired"""

    @abstractmethod
    def revoke(self, token: str) -> None:
        """Forget the token; unknown tokens are ignored"""


class MemoryTokenStore(TokenStore):
    """In-process token map guarded by a reader/writer lock"""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        token_factory: Callable[[], str] = generate_token,
    ):
        self._clock = clock
        self._token_factory = token_factory
        self._tokens: Dict[str, float] = {}
        self._lock = ReadWriteLock()

    def issue(self, duration: float) -> TokenInfo:
        token = self._token_factory()
        expires_at = self._clock() + duration
        with self._lock.write_locked():
            self._tokens[token] = expires_at
        logger.debug("Issued session token, expires at %s", expires_at)
        return TokenInfo(token=token, expires_at=expires_at)

    def validate(self, token: str) -> bool:
        if not token:
            return False

        with self._lock.read_locked():
            expires_at = self._tokens.get(token)

        if expires_at is None:
            return False

        if self._clock() < expires_at:
            return True

        self._evict(token, expires_at)
        return False

    def _evict(self, token: str, expires_at: float) -> None:
        with self._lock.write_locked():
            # Only drop the record we saw expire
            if self._tokens.get(token) == expires_at:
                del self._tokens[token]
                logger.debug("Evicted expired session token")

    def revoke(self, token: str) -> None:
        with self._lock.write_locked():
            self._tokens.pop(token, None)

    def expires_at(self, token: str) -> Optional[float]:
        with self._lock.read_locked():
            return self._tokens.get(token)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._tokens)

    def __contains__(self, token: str) -> bool:
        with self._lock.read_locked():
            return token in self._tokens
