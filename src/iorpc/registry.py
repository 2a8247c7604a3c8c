"""Pending registry: live call-IDs and what to do when they are addressed.

Every entry is either an awaited return value (``reject`` is set) or a local
callable exposed to the peer (``reject`` is None). When the registry grows past
its bound the least recently acknowledged entries are dropped without being
settled; later traffic for them is answered with "callback unavailable".
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Iterator

from iorpc.config import DEFAULT_MAX_PENDING_RESPONSES
from iorpc.error import RpcError

logger = logging.getLogger(__name__)

MAX_CALL_ID = 2**53 - 1
DEFAULT_MAX_ID_ATTEMPTS = 1_000_000


def random_call_id() -> int:
    return random.randint(0, MAX_CALL_ID)


class PendingCall:
    """Entry in the pending registry."""
    __slots__ = ('call_id', 'resolve', 'reject', 'last_ack')

    def __init__(
        self,
        call_id: int,
        resolve: Callable[..., Any],
        reject: Callable[[BaseException], Any] | None = None,
        last_ack: float = 0.0,
    ) -> None:
        self.call_id = call_id
        self.resolve = resolve
        self.reject = reject
        self.last_ack = last_ack

    @property
    def awaits_return(self) -> bool:
        return self.reject is not None

    def __repr__(self) -> str:
        kind = "return" if self.awaits_return else "callback"
        return f"PendingCall({self.call_id}, {kind}, last_ack={self.last_ack})"


class PendingRegistry:
    """Mapping of call-ID to :class:`PendingCall` with LRU eviction.

    Owned by exactly one session; never share an instance between channels.

    Args:
        max_size: Live entry count above which eviction runs.
        id_factory: Source of candidate call-IDs. Collisions are retried.
        clock: Source of ``last_ack`` readings.
        max_id_attempts: Draws before giving up on finding a free ID.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_PENDING_RESPONSES,
        *,
        id_factory: Callable[[], int] = random_call_id,
        clock: Callable[[], float] = time.monotonic,
        max_id_attempts: int = DEFAULT_MAX_ID_ATTEMPTS,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._id_factory = id_factory
        self._clock = clock
        self._max_id_attempts = max_id_attempts
        self._entries: dict[int, PendingCall] = {}
        self._size = 0
        self._eviction_warned = False
        self.evicted_count = 0

    def __len__(self) -> int:
        return self._size

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._entries

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._entries))

    def get(self, call_id: int) -> PendingCall | None:
        return self._entries.get(call_id)

    def allocate_id(self) -> int:
        """Draw a call-ID not held by any live entry."""
        for _ in range(self._max_id_attempts):
            call_id = self._id_factory()
            if call_id not in self._entries:
                return call_id
        raise RpcError.exhausted(self._max_id_attempts)

    def add_callback(self, fn: Callable[..., Any]) -> int:
        """Expose a local callable to the peer and return its call-ID."""
        call_id = self.allocate_id()
        self._insert(PendingCall(call_id, fn, None, self._clock()))
        return call_id

    def add_awaiting(
        self,
        call_id: int,
        resolve: Callable[..., Any],
        reject: Callable[[BaseException], Any],
    ) -> PendingCall:
        """Register an entry waiting for a return value under ``call_id``."""
        if call_id in self._entries:
            raise RpcError.internal(f"Call id {call_id} is already live")
        entry = PendingCall(call_id, resolve, reject, self._clock())
        self._insert(entry)
        return entry

    def touch(self, call_id: int) -> PendingCall | None:
        """Refresh ``last_ack`` of an entry that is being invoked."""
        entry = self._entries.get(call_id)
        if entry is not None:
            entry.last_ack = self._clock()
        return entry

    def pop(self, call_id: int) -> PendingCall | None:
        entry = self._entries.pop(call_id, None)
        if entry is not None:
            self._size -= 1
        return entry

    def clear(self) -> list[PendingCall]:
        entries = list(self._entries.values())
        self._entries.clear()
        self._size = 0
        return entries

    def _insert(self, entry: PendingCall) -> None:
        self._entries[entry.call_id] = entry
        self._size += 1
        if self._size > self.max_size:
            self.evict()

    def evict(self) -> list[int]:
        """Drop the least recently acknowledged entries down to ``max_size``.

        Returns:
            The evicted call-IDs, oldest first.
        """
        excess = self._size - self.max_size
        if excess <= 0:
            return []

        if not self._eviction_warned:
            logger.warning(
                "maxPendingResponses > %d. Check if callback bindings are being "
                "released after use. The oldest ones have been removed and may "
                "no longer work.",
                self.max_size,
            )
            self._eviction_warned = True

        # sorted() is stable, so ties keep insertion order
        oldest = sorted(self._entries.values(), key=lambda e: e.last_ack)[:excess]
        evicted = [entry.call_id for entry in oldest]
        for call_id in evicted:
            del self._entries[call_id]
            self._size -= 1
        self.evicted_count += len(evicted)
        logger.debug("Evicted %d pending entries", len(evicted))
        return evicted
