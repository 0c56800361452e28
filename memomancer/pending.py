"""
Short-lived storage for pass requests, for clients that can't consume a
binary response directly: the request is stored behind a token, and the
client fetches the pass with a plain navigation afterwards.

Tokens go through two possible transitions: created to consumed (on the
first successful retrieval) or created to expired (once the TTL lapses).
"""

import logging
import secrets
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, NamedTuple

import tzlocal

from .errors import ExpiredError, NotFoundError
from .template import PassRequest

__all__ = ['PendingPassStore', 'DEFAULT_TTL']

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(minutes=5)


def _now():
    return datetime.now(tz=tzlocal.get_localzone())


def _random_suffix():
    return secrets.token_urlsafe(16)


class _Entry(NamedTuple):
    request: PassRequest
    created: datetime


class PendingPassStore:
    """
    Hold pass requests behind opaque, single-use, time-limited tokens.
    All operations are serialised by an internal lock.

    :param ttl:
        How long a token remains valid.
    :param clock:
        Callable returning the current (timezone-aware) time.
    :param token_suffix:
        Callable producing the unguessable part of a token.
    """

    def __init__(self, ttl: timedelta = DEFAULT_TTL,
                 clock: Callable[[], datetime] = _now,
                 token_suffix: Callable[[], str] = _random_suffix):
        self.ttl = ttl
        self._clock = clock
        self._token_suffix = token_suffix
        self._lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}
        # tokens swept away recently, so late retrievals can be told apart
        # from unknown tokens
        self._expired: Dict[str, datetime] = {}

    def put(self, request: PassRequest) -> str:
        now = self._clock()
        token = f'{int(now.timestamp() * 1000):x}-{self._token_suffix()}'
        with self._lock:
            self._sweep(now)
            if token in self._entries:
                raise ValueError("Token collision")
            self._entries[token] = _Entry(request, now)
        return token

    def get_and_consume(self, token: str) -> PassRequest:
        """
        Remove and return the request stored under a token.

        :raises ExpiredError:
            if the token's time-to-live has elapsed.
        :raises NotFoundError:
            if the token is unknown or was consumed already.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.pop(token, None)
            if entry is None:
                if token in self._expired:
                    raise ExpiredError("This pass link has expired.")
                raise NotFoundError("Unknown or already used pass link.")
            if now - entry.created > self.ttl:
                self._expired[token] = entry.created
                raise ExpiredError("This pass link has expired.")
        return entry.request

    def sweep(self) -> int:
        """
        Drop expired entries.

        :return:
            The number of entries dropped.
        """
        with self._lock:
            return self._sweep(self._clock())

    def _sweep(self, now: datetime) -> int:
        stale = [
            token for token, entry in self._entries.items()
            if now - entry.created > self.ttl
        ]
        for token in stale:
            self._expired[token] = self._entries.pop(token).created
        # forget about tombstones once they're twice as old as the TTL
        for token, created in list(self._expired.items()):
            if now - created > 2 * self.ttl:
                del self._expired[token]
        if stale:
            logger.info(f"Swept {len(stale)} expired pending pass(es)")
        return len(stale)

    def __len__(self):
        with self._lock:
            return len(self._entries)
