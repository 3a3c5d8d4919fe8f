"""
Tahta Sessions - Phone and Board Controllers

Orchestrates all components for one side of a room:
- Relay client (HTTP by default, or any Relay handed in)
- SignalingChannel scoped to the room and role
- ConnectionNegotiator for the direct connection
- TransferProtocol once the data channel exists

The phone (initiator) joins a room the board created, sends photos and
recordings, and can pull the board's document. The board (responder) waits
for offers, stores whatever it receives, and starts a fresh attempt every
time a phone goes away.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional, Set, Union

from .config import Config
from .errors import (
    NegotiationTimeoutError, RelayError, RoomNotFoundError, TahtaError,
    TransferError, TransportNotOpenError,
)
from .rtc import ConnectionNegotiator, ConnectionState, DataChannelTransport, PeerConnectionFactory
from .signaling import HttpRelay, Relay, Role, RoomPaths, SessionDescription, SignalingChannel
from .transfer import ReceivedFile, TransferHeader, TransferKind, TransferProtocol, read_payload, write_payload
from .transfer.messages import PDF_REQUEST

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]
ErrorCallback = Callable[[TahtaError], None]
SavedCallback = Callable[[ReceivedFile, Path], None]


def unique_path(directory: Path, filename: str) -> Path:
    """
    Pick a path in `directory` for `filename` that does not exist yet.

    Only the final path component of the sender's name is used.
    """
    name = Path(filename).name or 'received.bin'
    candidate = directory / name
    counter = 1
    while candidate.exists():
        candidate = directory / f"{Path(name).stem}-{counter}{Path(name).suffix}"
        counter += 1
    return candidate


class _Session:
    """Relay ownership and protocol wiring shared by both sides."""

    def __init__(self, room_id: str, config: Optional[Config] = None,
                 relay: Optional[Relay] = None,
                 peer_factory: Optional[PeerConnectionFactory] = None):
        self.config = config or Config()
        self.room_id = room_id
        self.peer_factory = peer_factory

        self._owns_relay = relay is None
        self.relay = relay if relay is not None else HttpRelay(self.config.relay_url)

        self.paths = RoomPaths(room_id, self.config.relay_root)
        self.protocol: Optional[TransferProtocol] = None

        self._progress_callbacks: List[ProgressCallback] = []
        self._error_callbacks: List[ErrorCallback] = []

    # === Observers ===

    def on_progress(self, callback: ProgressCallback):
        """Progress (0.0 to 1.0) of whichever transfer is running."""
        self._progress_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback):
        self._error_callbacks.append(callback)

    def _emit_progress(self, progress: float):
        for callback in list(self._progress_callbacks):
            callback(progress)

    def _report_error(self, error: TahtaError):
        for callback in list(self._error_callbacks):
            callback(error)

    # === Helpers ===

    def _make_signaling(self, role: Role) -> SignalingChannel:
        return SignalingChannel(self.relay, self.room_id, role, root=self.config.relay_root)

    def _make_negotiator(self, signaling: SignalingChannel,
                         stale_offer: Optional[SessionDescription] = None) -> ConnectionNegotiator:
        negotiator = ConnectionNegotiator(
            signaling,
            peer_factory=self.peer_factory,
            ice_servers=self.config.ice_servers,
            timeout=self.config.negotiation_timeout,
            stale_offer=stale_offer,
        )
        negotiator.on_error(self._report_error)
        return negotiator

    def _make_protocol(self, transport: DataChannelTransport) -> TransferProtocol:
        protocol = TransferProtocol(
            transport,
            max_buffered_chunks=self.config.max_buffered_chunks,
            poll_interval=self.config.poll_interval,
        )
        protocol.on_send_progress(self._emit_progress)
        protocol.on_receive_progress(self._emit_progress)
        protocol.on_error(self._report_error)
        return protocol

    def _require_protocol(self) -> TransferProtocol:
        if self.protocol is None or not self.protocol.is_open:
            raise TransportNotOpenError("Not connected to the board")
        return self.protocol

    async def _close_relay(self):
        if self._owns_relay:
            await self.relay.close()


class PhoneSession(_Session):
    """
    The initiating side of a room.

    Usage:
        session = PhoneSession('abc123', config)
        await session.open()
        await session.send_path('image', Path('photo.jpg'))
        await session.close()
    """

    def __init__(self, room_id: str, config: Optional[Config] = None,
                 relay: Optional[Relay] = None,
                 peer_factory: Optional[PeerConnectionFactory] = None):
        super().__init__(room_id, config, relay, peer_factory)

        self.signaling = self._make_signaling(Role.INITIATOR)
        self.negotiator = self._make_negotiator(self.signaling)
        self.negotiator.on_transport(self._on_transport)

        self._channel_open = asyncio.Event()
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return self.protocol is not None and self.protocol.is_open

    @property
    def state(self) -> ConnectionState:
        return self.negotiator.state

    def on_disconnected(self, callback: Callable[[], None]):
        self.negotiator.on_disconnected(callback)

    def _on_transport(self, transport: DataChannelTransport):
        self.protocol = self._make_protocol(transport)
        self.protocol.start()
        transport.on_open(self._channel_open.set)
        if transport.is_open:
            self._channel_open.set()

    async def open(self):
        """
        Join the room and bring the data channel up.

        Raises:
            RoomNotFoundError: Nothing was ever published under the room
            RelayWriteError: The offer could not be published
            NegotiationTimeoutError: No open channel within the timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.negotiation_timeout

        if not await self.signaling.session_exists():
            raise RoomNotFoundError(f"Room {self.room_id} does not exist")

        logger.info(f"Joining room {self.room_id}")
        await self.negotiator.connect()
        await self.negotiator.wait_connected()

        # Link up can be reported before the channel itself opens
        try:
            await asyncio.wait_for(self._channel_open.wait(), max(0.0, deadline - loop.time()))
        except asyncio.TimeoutError:
            raise NegotiationTimeoutError("Data channel did not open in time") from None

        logger.info(f"Connected to room {self.room_id}")

    # === Transfers ===

    async def send_file(self, kind: Union[TransferKind, str], filename: str,
                        payload: bytes) -> TransferHeader:
        return await self._require_protocol().send_file(kind, filename, payload)

    async def send_image(self, payload: bytes, filename: str = 'photo.jpg') -> TransferHeader:
        return await self._require_protocol().send_image(payload, filename)

    async def send_audio(self, payload: bytes, filename: str = 'recording.webm') -> TransferHeader:
        return await self._require_protocol().send_audio(payload, filename)

    async def send_path(self, kind: Union[TransferKind, str], file_path: Path) -> TransferHeader:
        return await self._require_protocol().send_path(kind, file_path)

    async def request_document(self, timeout: Optional[float] = None) -> ReceivedFile:
        """
        Ask the board for its document and wait for it.

        A board without a document never answers, so the wait is always
        bounded: `timeout` defaults to config.request_timeout.

        Raises:
            TransportNotOpenError: Not connected
            TransferError: The document transfer failed
            asyncio.TimeoutError: Nothing arrived within `timeout`
        """
        if timeout is None:
            timeout = self.config.request_timeout
        return await self._require_protocol().fetch_document(timeout)

    async def close(self):
        """Disconnect and erase this phone's relay data. Safe to call twice."""
        if self._closed:
            return
        self._closed = True

        if self.protocol is not None:
            await self.protocol.stop()
        await self.negotiator.disconnect()
        await self._close_relay()
        logger.info(f"Left room {self.room_id}")

    def get_stats(self) -> dict:
        return {
            'room_id': self.room_id,
            'state': self.negotiator.state.value,
            'transfer': self.protocol.get_stats() if self.protocol else None,
        }


class BoardSession(_Session):
    """
    The responding side of a room.

    Each connection attempt gets its own negotiator; when one ends (phone
    left, link failed, timeout) it is torn down and a new one starts
    waiting for the next offer.
    """

    def __init__(self, room_id: str, config: Optional[Config] = None,
                 relay: Optional[Relay] = None,
                 peer_factory: Optional[PeerConnectionFactory] = None):
        super().__init__(room_id, config, relay, peer_factory)

        self.received_dir = Path(self.config.received_dir)
        self.document_path = Path(self.config.document_path) if self.config.document_path else None

        self.negotiator: Optional[ConnectionNegotiator] = None
        self.attempts = 0
        self.saved: List[Path] = []

        self._running = False
        self._tasks: Set[asyncio.Task] = set()
        self._live: List[ConnectionNegotiator] = []
        self._saved_callbacks: List[SavedCallback] = []
        self._state_callbacks: List[Callable[[ConnectionState], None]] = []

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        return self.negotiator is not None and self.negotiator.is_connected

    def on_file_saved(self, callback: SavedCallback):
        self._saved_callbacks.append(callback)

    def on_state_change(self, callback: Callable[[ConnectionState], None]):
        self._state_callbacks.append(callback)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # === Lifecycle ===

    async def start(self):
        """
        Create the room and wait for a phone.

        Raises:
            RelayWriteError: The room could not be created
        """
        if self._running:
            return
        self._running = True

        self.received_dir.mkdir(parents=True, exist_ok=True)

        # Whatever an earlier board run left in the room is void
        await self.relay.remove(self.paths.room)
        await self._new_attempt()
        logger.info(f"Board waiting in room {self.room_id}")

    async def _new_attempt(self, stale_offer: Optional[SessionDescription] = None):
        signaling = self._make_signaling(Role.RESPONDER)
        await signaling.publish_status('waiting')

        negotiator = self._make_negotiator(signaling, stale_offer)
        negotiator.on_transport(self._on_transport)
        negotiator.on_state_change(lambda state: self._on_state(negotiator, state))
        self.negotiator = negotiator
        self._live.append(negotiator)
        self.attempts += 1

        await negotiator.accept()

    def _on_state(self, negotiator: ConnectionNegotiator, state: ConnectionState):
        for callback in list(self._state_callbacks):
            callback(state)

        if state not in (ConnectionState.DISCONNECTED, ConnectionState.FAILED):
            return
        if not self._running or negotiator is not self.negotiator:
            return

        # Detach first so the old negotiator's own teardown does not restart twice
        self.negotiator = None
        logger.info(f"Attempt {self.attempts} ended ({state.value}), waiting for a new phone")
        self._spawn(self._restart(negotiator))

    async def _restart(self, old: ConnectionNegotiator):
        protocol, self.protocol = self.protocol, None
        if protocol is not None:
            await protocol.stop()
        await old.disconnect()
        if old in self._live:
            self._live.remove(old)

        # The departed phone's offer may still sit in the room
        stale_offer = old.remote_description or old.stale_offer

        if self._running:
            try:
                await self._new_attempt(stale_offer)
            except RelayError as e:
                logger.error(f"Could not restart listening in room {self.room_id}: {e}")
                self._report_error(e)

    def _on_transport(self, transport: DataChannelTransport):
        protocol = self._make_protocol(transport)
        protocol.on_file_received(lambda received: self._spawn(self._save(received)))
        protocol.on_request(lambda request: self._spawn(self._serve_request(request)))
        protocol.start()
        self.protocol = protocol

    async def stop(self):
        """Stop listening, disconnect the current phone and close the room."""
        if not self._running:
            return
        self._running = False

        # Restarts and saves already under way finish first; a restart may add one more attempt
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

        self.negotiator = None
        if self.protocol is not None:
            await self.protocol.stop()
            self.protocol = None

        for negotiator in list(self._live):
            await negotiator.disconnect()
        self._live.clear()

        try:
            await self.relay.set(self.paths.status, 'closed')
        except RelayError as e:
            logger.warning(f"Could not mark room {self.room_id} closed: {e}")

        await self._close_relay()
        logger.info(f"Board stopped ({len(self.saved)} files received)")

    # === Inbound files ===

    async def _save(self, received: ReceivedFile) -> Path:
        path = unique_path(self.received_dir, received.filename)
        await write_payload(path, received.payload)
        self.saved.append(path)
        logger.info(f"Saved {received.kind.value} to {path}")

        for callback in list(self._saved_callbacks):
            callback(received, path)
        return path

    async def _serve_request(self, request: str):
        if request != PDF_REQUEST:
            logger.warning(f"Ignoring unknown request: {request}")
            return
        if self.document_path is None or not self.document_path.exists():
            logger.warning("Document requested but none is configured")
            return

        protocol = self.protocol
        if protocol is None:
            return

        payload = await read_payload(self.document_path)
        try:
            await protocol.send_file(TransferKind.PDF, self.document_path.name, payload)
        except TransferError as e:
            logger.error(f"Could not send document: {e}")
            self._report_error(e)

    def get_stats(self) -> dict:
        return {
            'room_id': self.room_id,
            'running': self._running,
            'attempts': self.attempts,
            'state': self.negotiator.state.value if self.negotiator else None,
            'saved': [str(path) for path in self.saved],
            'transfer': self.protocol.get_stats() if self.protocol else None,
        }
