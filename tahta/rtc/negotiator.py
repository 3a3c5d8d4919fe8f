"""
Connection Negotiator

Brings a PeerConnection from nothing to an open data channel by exchanging
descriptions and candidates through a SignalingChannel.

State Machine
=============

```
new --connect()--> offer_sent --answer applied--> negotiating --link up--> connected
new --accept()---> negotiating (offer applied, answer published) --link up--> connected
offer_sent/negotiating --timeout--> failed
negotiating --different offer (responder)--> failed
connected --channel closed / link failed--> disconnected
any --disconnect()--> disconnected
```

"Link up" is whichever comes first of: connection state `connected`, ICE
state `connected`/`completed`, or the data channel opening. Platforms do not
all report through the same source.

Ordering
========

Remote descriptions and candidates are applied by a single worker task in
the order they arrive from the relay. Candidates that arrive before the
remote description has been applied are held back and replayed right after
it. Local candidates are published by a second worker, one at a time, in the
order the peer connection produced them.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional

from .peer import PeerConnection, PeerConnectionFactory, aiortc_factory
from .transport import DataChannelTransport
from ..config import DEFAULT_ICE_SERVERS
from ..errors import NegotiationTimeoutError, RelayError, TahtaError
from ..signaling.channel import SignalingChannel
from ..signaling.models import IceCandidate, Role, SessionDescription

logger = logging.getLogger(__name__)

CHANNEL_LABEL = 'media'

LINK_UP_STATES = ('connected', 'completed')
LINK_DOWN_STATES = ('failed', 'disconnected', 'closed')


class ConnectionState(Enum):
    NEW = 'new'
    OFFER_SENT = 'offer_sent'
    NEGOTIATING = 'negotiating'
    CONNECTED = 'connected'
    DISCONNECTED = 'disconnected'
    FAILED = 'failed'


# Callback types
StateChangeCallback = Callable[[ConnectionState], None]
EventCallback = Callable[[], None]
ErrorCallback = Callable[[TahtaError], None]
TransportCallback = Callable[[DataChannelTransport], None]


class ConnectionNegotiator:
    """
    Owns one connection attempt.

    A negotiator is single-use: after `failed` or `disconnected`, create a
    new one to try again.
    """

    def __init__(self, signaling: SignalingChannel,
                 peer_factory: Optional[PeerConnectionFactory] = None,
                 ice_servers: Optional[List[str]] = None,
                 timeout: float = 30.0,
                 stale_offer: Optional[SessionDescription] = None):
        self.signaling = signaling
        self.role = signaling.role
        self.peer_factory = peer_factory or aiortc_factory
        self.ice_servers = list(ice_servers) if ice_servers is not None else list(DEFAULT_ICE_SERVERS)
        self.timeout = timeout

        # An offer a previous attempt already answered; never answered again
        self.stale_offer = stale_offer

        self._state = ConnectionState.NEW
        self.pc: Optional[PeerConnection] = None
        self.transport: Optional[DataChannelTransport] = None

        # Remote side
        self._remote_ops: asyncio.Queue = asyncio.Queue()
        self._remote_description: Optional[SessionDescription] = None
        self._pending_candidates: List[IceCandidate] = []

        # Local side
        self._local_candidates: asyncio.Queue = asyncio.Queue()

        self._workers: List[asyncio.Task] = []
        self._timeout_handle: Optional[asyncio.TimerHandle] = None
        self._timed_out = False
        self._closed = False
        self._ready = asyncio.Event()

        # Observers
        self._state_callbacks: List[StateChangeCallback] = []
        self._connected_callbacks: List[EventCallback] = []
        self._disconnected_callbacks: List[EventCallback] = []
        self._transport_callbacks: List[TransportCallback] = []
        self._error_callbacks: List[ErrorCallback] = []

        signaling.on_error(self._report_error)

    # === Observers ===

    def on_state_change(self, callback: StateChangeCallback):
        self._state_callbacks.append(callback)

    def on_connected(self, callback: EventCallback):
        self._connected_callbacks.append(callback)

    def on_disconnected(self, callback: EventCallback):
        self._disconnected_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback):
        self._error_callbacks.append(callback)

    def on_transport(self, callback: TransportCallback):
        """Called once, as soon as the data channel object exists (before it opens)."""
        self._transport_callbacks.append(callback)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def remote_description(self) -> Optional[SessionDescription]:
        """The remote offer or answer this attempt applied, if any."""
        return self._remote_description

    def _set_state(self, state: ConnectionState):
        if state == self._state:
            return
        logger.info(f"[{self.role.value}] {self._state.value} -> {state.value}")
        self._state = state
        for callback in list(self._state_callbacks):
            callback(state)

        if state == ConnectionState.CONNECTED:
            for callback in list(self._connected_callbacks):
                callback()
        elif state == ConnectionState.DISCONNECTED:
            for callback in list(self._disconnected_callbacks):
                callback()

        if state in (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED,
                     ConnectionState.FAILED):
            self._ready.set()

    def _report_error(self, error: TahtaError):
        for callback in list(self._error_callbacks):
            callback(error)

    # === Setup ===

    def _create_peer(self):
        if self._state != ConnectionState.NEW or self.pc is not None:
            raise RuntimeError(f"Negotiator already used (state: {self._state.value})")

        pc = self.peer_factory(self.ice_servers)
        self.pc = pc

        # Hooks go in before any description exists
        pc.on_ice_candidate(self._local_candidates.put_nowait)
        pc.on_connection_state(self._on_link_state)
        pc.on_ice_connection_state(self._on_link_state)
        pc.on_data_channel(self._attach_transport)

        loop = asyncio.get_running_loop()
        self._workers.append(loop.create_task(self._forward_local_candidates()))
        self._workers.append(loop.create_task(self._apply_remote_ops()))

        self.signaling.subscribe_remote_description(
            lambda description: self._remote_ops.put_nowait(('description', description))
        )
        self.signaling.subscribe_remote_candidates(
            lambda candidate: self._remote_ops.put_nowait(('candidate', candidate))
        )

    def _attach_transport(self, transport: DataChannelTransport):
        if self.transport is not None:
            logger.warning(f"Ignoring extra data channel '{transport.label}'")
            return
        self.transport = transport
        transport.on_open(self._on_link_up)
        transport.on_close(self._on_transport_closed)
        for callback in list(self._transport_callbacks):
            callback(transport)
        if transport.is_open:
            self._on_link_up()

    def _arm_timeout(self):
        loop = asyncio.get_running_loop()
        self._timeout_handle = loop.call_later(self.timeout, self._on_timeout)

    async def connect(self):
        """
        Start an attempt as initiator: create the channel, publish an offer
        and arm the negotiation timeout.

        Raises:
            RelayWriteError: Old data could not be cleared or the offer could not be published
        """
        self._create_peer()
        self._attach_transport(self.pc.create_data_channel(CHANNEL_LABEL, ordered=True))

        # A phone that vanished without teardown may have left its offer behind
        await self.signaling.clear_local()

        offer = await self.pc.create_offer()
        await self.signaling.publish_local_description(offer)
        logger.info(f"Offer published to room {self.signaling.room_id}")
        self._set_state(ConnectionState.OFFER_SENT)

        self._arm_timeout()

    async def accept(self):
        """
        Start an attempt as responder: wait for the initiator's offer and
        answer it. The negotiation timeout is armed when the offer arrives,
        so a board can wait for a phone indefinitely.
        """
        if self.role != Role.RESPONDER:
            raise RuntimeError("accept() is only valid for the responder role")
        self._create_peer()

    async def wait_connected(self, timeout: Optional[float] = None):
        """
        Wait until the attempt settles.

        Raises:
            NegotiationTimeoutError: The attempt failed or timed out
        """
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            raise NegotiationTimeoutError("Connection not established in time") from None

        if self._state != ConnectionState.CONNECTED:
            raise NegotiationTimeoutError(f"Connection attempt ended in state {self._state.value}")

    # === Workers ===

    async def _forward_local_candidates(self):
        while True:
            candidate = await self._local_candidates.get()
            if candidate.is_end_of_candidates:
                continue
            try:
                await self.signaling.publish_candidate(candidate)
            except RelayError as e:
                self._report_error(e)

    async def _apply_remote_ops(self):
        while True:
            kind, item = await self._remote_ops.get()
            try:
                if kind == 'description':
                    await self._apply_remote_description(item)
                else:
                    await self._apply_remote_candidate(item)
            except TahtaError as e:
                self._report_error(e)
            except Exception:
                logger.exception(f"Failed to apply remote {kind}")

    async def _apply_remote_description(self, description: SessionDescription):
        expected = 'answer' if self.role == Role.INITIATOR else 'offer'
        if description.kind != expected:
            logger.debug(f"Ignoring remote {description.kind}, waiting for {expected}")
            return
        if self._state in (ConnectionState.DISCONNECTED, ConnectionState.FAILED):
            return
        if description == self.stale_offer:
            logger.debug("Ignoring offer left over from a previous attempt")
            return
        if self._remote_description is not None:
            if description == self._remote_description:
                return
            if self.role == Role.RESPONDER and self._state != ConnectionState.CONNECTED:
                # The offer being answered was abandoned by its phone
                logger.warning("Initiator published a new offer; abandoning this attempt")
                self._abandon()
            else:
                logger.warning("Remote published a new description mid-attempt; ignoring it")
            return

        await self.pc.set_remote_description(description)
        self._remote_description = description
        logger.info(f"Applied remote {description.kind}")

        if self.role == Role.RESPONDER:
            self._arm_timeout()
            answer = await self.pc.create_answer()
            await self.signaling.publish_local_description(answer)
            logger.info(f"Answer published to room {self.signaling.room_id}")

        if self._state in (ConnectionState.NEW, ConnectionState.OFFER_SENT):
            self._set_state(ConnectionState.NEGOTIATING)

        # Replay candidates that raced ahead of the description
        pending, self._pending_candidates = self._pending_candidates, []
        if pending:
            logger.debug(f"Replaying {len(pending)} early candidates")
        for candidate in pending:
            await self.pc.add_ice_candidate(candidate)

    async def _apply_remote_candidate(self, candidate: IceCandidate):
        if candidate.is_end_of_candidates:
            return
        if self._remote_description is None:
            self._pending_candidates.append(candidate)
            return
        await self.pc.add_ice_candidate(candidate)
        logger.debug("Applied remote candidate")

    # === Link state ===

    def _on_link_state(self, state: str):
        if state in LINK_UP_STATES:
            self._on_link_up()
        elif state in LINK_DOWN_STATES and self._state == ConnectionState.CONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)

    def _on_link_up(self):
        if self._state not in (ConnectionState.OFFER_SENT, ConnectionState.NEGOTIATING,
                               ConnectionState.NEW):
            return
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
        self._set_state(ConnectionState.CONNECTED)
        asyncio.get_running_loop().create_task(self._publish_connected())

    async def _publish_connected(self):
        try:
            await self.signaling.publish_status('connected')
        except RelayError as e:
            logger.warning(f"Could not publish status: {e}")

    def _on_transport_closed(self):
        if self._state == ConnectionState.CONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)

    def _on_timeout(self):
        if self._timed_out or self._state not in (ConnectionState.NEW, ConnectionState.OFFER_SENT,
                                                  ConnectionState.NEGOTIATING):
            return
        self._timed_out = True
        logger.error(f"No connection after {self.timeout}s in room {self.signaling.room_id}")
        self._set_state(ConnectionState.FAILED)
        self._report_error(NegotiationTimeoutError(
            f"No direct connection within {self.timeout} seconds"
        ))

    def _abandon(self):
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
        self._set_state(ConnectionState.FAILED)

    # === Teardown ===

    async def disconnect(self):
        """
        Close the data channel, the peer connection, then erase this peer's
        relay data. Safe to call any number of times in any state.
        """
        if self._closed:
            return
        self._closed = True

        if self._timeout_handle is not None:
            self._timeout_handle.cancel()

        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        if self.transport is not None:
            self.transport.close()

        if self.pc is not None:
            try:
                await self.pc.close()
            except Exception as e:
                logger.warning(f"Error closing peer connection: {e}")

        await self.signaling.teardown()

        self._set_state(ConnectionState.DISCONNECTED)
