"""
Signaling Channel

Room-scoped view of a Relay for one peer. The peer writes only into its own
namespace and reads only the other side's.
"""

import logging
from typing import Any, Callable, List, Set

from .models import IceCandidate, Role, RoomPaths, SessionDescription
from .relay import ErrorCallback, Relay, Subscription
from ..errors import RelayReadError, RelayWriteError

logger = logging.getLogger(__name__)

DescriptionCallback = Callable[[SessionDescription], None]
CandidateCallback = Callable[[IceCandidate], None]
StatusCallback = Callable[[Any], None]


class SignalingChannel:
    """
    Publish/subscribe access to one room for one role.

    Subscriptions are cancelled and the local namespace is erased by
    teardown(), which only touches the relay the first time it is called.
    """

    def __init__(self, relay: Relay, room_id: str, role: Role = Role.INITIATOR,
                 root: str = 'session'):
        self.relay = relay
        self.role = role
        self.paths = RoomPaths(room_id, root)

        self._subscriptions: List[Subscription] = []
        self._error_callbacks: List[ErrorCallback] = []
        self._torn_down = False

    @property
    def room_id(self) -> str:
        return self.paths.room_id

    @property
    def is_torn_down(self) -> bool:
        return self._torn_down

    def on_error(self, callback: ErrorCallback):
        """Register a callback for subscription failures (RelayReadError)."""
        self._error_callbacks.append(callback)

    def _report_error(self, error: Exception):
        if not isinstance(error, RelayReadError):
            error = RelayReadError(str(error))
        logger.error(f"Signaling error in room {self.room_id}: {error}")
        for callback in list(self._error_callbacks):
            callback(error)

    def _watch(self, path: str, handler: Callable[[Any], None]) -> Subscription:
        subscription = self.relay.watch(path, handler, on_error=self._report_error)
        self._subscriptions.append(subscription)
        return subscription

    # === Publishing ===

    async def publish_local_description(self, description: SessionDescription):
        """Write (or overwrite) this peer's offer/answer."""
        await self.relay.set(self.paths.description(self.role), description.to_dict())
        logger.debug(f"Published {description.kind} to room {self.room_id}")

    async def publish_candidate(self, candidate: IceCandidate) -> str:
        """Append a local candidate. Returns the relay entry key."""
        key = await self.relay.push(self.paths.candidates(self.role), candidate.to_dict())
        logger.debug(f"Published candidate {key} to room {self.room_id}")
        return key

    async def publish_status(self, value: Any):
        await self.relay.set(self.paths.status, value)

    async def clear_local(self):
        """
        Erase this role's namespace before publishing into it.

        Raises:
            RelayWriteError: The relay rejected the removal
        """
        await self.relay.remove(self.paths.namespace(self.role))

    # === Subscriptions ===

    def subscribe_remote_description(self, callback: DescriptionCallback) -> Subscription:
        """
        Invoke `callback` whenever the remote peer's description is present.

        May fire more than once for the same description.
        """
        def handle(value: Any):
            description = SessionDescription.from_dict(value)
            if description is not None:
                callback(description)

        return self._watch(self.paths.description(self.role.remote), handle)

    def subscribe_remote_candidates(self, callback: CandidateCallback) -> Subscription:
        """
        Invoke `callback` exactly once per distinct remote candidate entry.

        The relay redelivers the whole candidate list on every change, so
        entries are deduplicated by their relay key and replayed in key order.
        """
        processed: Set[str] = set()

        def handle(value: Any):
            if not isinstance(value, dict):
                return
            for key in sorted(value):
                if key in processed:
                    continue
                processed.add(key)
                entry = value[key]
                if not isinstance(entry, dict):
                    logger.warning(f"Ignoring malformed candidate entry {key}")
                    continue
                callback(IceCandidate.from_dict(entry))

        return self._watch(self.paths.candidates(self.role.remote), handle)

    def subscribe_status(self, callback: StatusCallback) -> Subscription:
        def handle(value: Any):
            if value:
                callback(value)

        return self._watch(self.paths.status, handle)

    # === Lifecycle ===

    async def session_exists(self) -> bool:
        """Single-shot check that something was ever published under the room."""
        value = await self.relay.get(self.paths.room)
        return value is not None

    async def teardown(self):
        """
        Cancel subscriptions and erase this peer's namespace.

        The remote namespace and the room status are left untouched.
        """
        if self._torn_down:
            return
        self._torn_down = True

        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()

        try:
            await self.relay.remove(self.paths.namespace(self.role))
            logger.info(f"Removed {self.role.value} data from room {self.room_id}")
        except RelayWriteError as e:
            logger.warning(f"Cleanup of room {self.room_id} failed: {e}")
