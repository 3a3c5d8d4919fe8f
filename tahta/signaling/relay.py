"""
Relay Abstraction

Design Decision: Relay Model
============================

Options Considered:
1. Message bus (send offer/answer/candidate events to a peer id)
   - Needs both peers online at the same moment
   - Lost messages need acks and retries

2. Shared key-value tree with value subscriptions
   - Peers publish state, late joiners just read it
   - Redelivers full values, consumers must dedup
   - Matches hosted realtime databases and is trivial to self-host

Decision: Key-value tree with subscriptions
- set / push (append with generated, time-ordered key) / remove / get
- watch(path) delivers the full current value at `path`, once right after
  subscribing and again after every change at, above or below `path`
- Deliveries are always asynchronous (scheduled on the event loop), never
  re-entrant from inside a write

InMemoryRelay is the reference back-end: used in tests, by a board and phone
running in one process, and as the store behind the bundled relay server.
"""

import asyncio
import copy
import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from ..errors import RelayReadError, RelayWriteError

logger = logging.getLogger(__name__)

# Callback types
ValueCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]


def split_path(path: str) -> List[str]:
    """Split a relay path into its non-empty segments."""
    return [segment for segment in path.strip('/').split('/') if segment]


def paths_overlap(a: str, b: str) -> bool:
    """True when one path equals, contains or is contained by the other."""
    sa, sb = split_path(a), split_path(b)
    shortest = min(len(sa), len(sb))
    return sa[:shortest] == sb[:shortest]


class Subscription:
    """Handle returned by Relay.watch(); cancel() stops deliveries."""

    def __init__(self, path: str, callback: ValueCallback,
                 on_error: Optional[ErrorCallback] = None,
                 canceller: Optional[Callable[['Subscription'], None]] = None):
        self.path = path
        self.callback = callback
        self.on_error = on_error
        self._canceller = canceller
        self.active = True

    def deliver(self, value: Any):
        """Invoke the callback unless cancelled in the meantime."""
        if not self.active:
            return
        try:
            self.callback(value)
        except Exception:
            logger.exception(f"Subscriber for {self.path} raised")

    def fail(self, error: Exception):
        if not self.active:
            return
        if self.on_error:
            self.on_error(error)
        else:
            logger.error(f"Subscription to {self.path} failed: {error}")

    def cancel(self):
        if not self.active:
            return
        self.active = False
        if self._canceller:
            self._canceller(self)


class Relay(ABC):
    """Key-value publish/subscribe store used to bootstrap a connection."""

    @abstractmethod
    async def get(self, path: str) -> Any:
        """Return the value at `path`, or None if nothing is stored there."""

    @abstractmethod
    async def set(self, path: str, value: Any):
        """Overwrite the value at `path`."""

    @abstractmethod
    async def push(self, path: str, value: Any) -> str:
        """Append `value` under `path` with a new time-ordered key; returns the key."""

    @abstractmethod
    async def remove(self, path: str):
        """Delete `path` and everything below it. Removing a missing path is a no-op."""

    @abstractmethod
    def watch(self, path: str, callback: ValueCallback,
              on_error: Optional[ErrorCallback] = None) -> Subscription:
        """Subscribe to the full value at `path`."""

    async def close(self):
        """Release connections held by the relay."""


class InMemoryRelay(Relay):
    """
    Process-local relay.

    Features:
    - Nested dict tree, values deep-copied in and out
    - Push keys sort in insertion order
    - fail_writes / fail_reads switches to simulate an unreachable service
    """

    def __init__(self):
        self._tree: Dict[str, Any] = {}
        self._subscriptions: List[Subscription] = []
        self._counter = itertools.count()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        # Failure injection
        self.fail_writes = False
        self.fail_reads = False

        # Statistics
        self.writes = 0
        self.removals = 0

    # === Tree helpers ===

    def _lookup(self, path: str) -> Any:
        node: Any = self._tree
        for segment in split_path(path):
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        return node

    def _store(self, path: str, value: Any):
        segments = split_path(path)
        if not segments:
            raise ValueError("Cannot overwrite the relay root")

        node = self._tree
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                child = {}
                node[segment] = child
            node = child
        node[segments[-1]] = copy.deepcopy(value)

    def _delete(self, path: str) -> bool:
        segments = split_path(path)
        if not segments:
            existed = bool(self._tree)
            self._tree.clear()
            return existed

        # Walk down remembering parents so empty branches can be pruned
        trail = []
        node = self._tree
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                return False
            trail.append((node, segment))
            node = child

        if segments[-1] not in node:
            return False
        del node[segments[-1]]

        while trail and not node:
            parent, segment = trail.pop()
            del parent[segment]
            node = parent
        return True

    def snapshot(self, path: str = '') -> Any:
        """Synchronous deep copy of the value at `path`."""
        return copy.deepcopy(self._lookup(path))

    def _next_key(self) -> str:
        return f"{int(time.time() * 1000):013d}{next(self._counter):06d}"

    # === Notification ===

    def _schedule(self, subscription: Subscription, value: Any):
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon(subscription.deliver, value)

    def _notify(self, path: str):
        for subscription in list(self._subscriptions):
            if paths_overlap(subscription.path, path):
                self._schedule(subscription, self.snapshot(subscription.path))

    # === Relay interface ===

    async def get(self, path: str) -> Any:
        if self.fail_reads:
            raise RelayReadError(f"Relay unavailable while reading {path}")
        return self.snapshot(path)

    async def set(self, path: str, value: Any):
        if self.fail_writes:
            raise RelayWriteError(f"Relay unavailable while writing {path}")
        if value is None:
            await self.remove(path)
            return
        self._store(path, value)
        self.writes += 1
        self._notify(path)

    async def push(self, path: str, value: Any) -> str:
        if self.fail_writes:
            raise RelayWriteError(f"Relay unavailable while appending to {path}")
        key = self._next_key()
        self._store(f"{path}/{key}", value)
        self.writes += 1
        self._notify(path)
        return key

    async def remove(self, path: str):
        if self.fail_writes:
            raise RelayWriteError(f"Relay unavailable while removing {path}")
        if self._delete(path):
            self.removals += 1
            self._notify(path)

    def watch(self, path: str, callback: ValueCallback,
              on_error: Optional[ErrorCallback] = None) -> Subscription:
        self._loop = asyncio.get_running_loop()
        subscription = Subscription(path, callback, on_error, self._unsubscribe)

        if self.fail_reads:
            self._loop.call_soon(
                subscription.fail, RelayReadError(f"Relay unavailable while watching {path}")
            )
            return subscription

        self._subscriptions.append(subscription)
        self._schedule(subscription, self.snapshot(path))
        return subscription

    def _unsubscribe(self, subscription: Subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)
