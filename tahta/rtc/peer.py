"""
Peer Connection Seam

ConnectionNegotiator drives a PeerConnection, never aiortc directly, so the
state machine can be exercised without a network. AiortcPeerConnection is the
production implementation.

Design Decision: Candidate Trickling With aiortc
================================================

aiortc gathers every local candidate inside setLocalDescription() and embeds
them in the SDP instead of raising per-candidate events. To keep the relay
format identical to a browser peer (which trickles), the candidates are
extracted from the local SDP after gathering and emitted one by one, in SDP
order, through the same on_ice_candidate hook a trickling implementation
would use.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterator, List, Union

from .transport import DataChannelTransport, frame_from_message
from ..errors import TransportNotOpenError
from ..signaling.models import IceCandidate, SessionDescription

logger = logging.getLogger(__name__)

# Callback types
CandidateCallback = Callable[[IceCandidate], None]
StateCallback = Callable[[str], None]
ChannelCallback = Callable[[DataChannelTransport], None]


class PeerConnection(ABC):
    """Minimal peer connection surface the negotiator needs."""

    def __init__(self):
        self._candidate_callbacks: List[CandidateCallback] = []
        self._connection_state_callbacks: List[StateCallback] = []
        self._ice_state_callbacks: List[StateCallback] = []
        self._channel_callbacks: List[ChannelCallback] = []

    # === Hooks ===

    def on_ice_candidate(self, callback: CandidateCallback):
        self._candidate_callbacks.append(callback)

    def on_connection_state(self, callback: StateCallback):
        self._connection_state_callbacks.append(callback)

    def on_ice_connection_state(self, callback: StateCallback):
        self._ice_state_callbacks.append(callback)

    def on_data_channel(self, callback: ChannelCallback):
        """Called when the remote side opens a channel (responder)."""
        self._channel_callbacks.append(callback)

    def _emit_ice_candidate(self, candidate: IceCandidate):
        for callback in list(self._candidate_callbacks):
            callback(candidate)

    def _emit_connection_state(self, state: str):
        for callback in list(self._connection_state_callbacks):
            callback(state)

    def _emit_ice_connection_state(self, state: str):
        for callback in list(self._ice_state_callbacks):
            callback(state)

    def _emit_data_channel(self, channel: DataChannelTransport):
        for callback in list(self._channel_callbacks):
            callback(channel)

    # === Operations ===

    @abstractmethod
    def create_data_channel(self, label: str, ordered: bool = True) -> DataChannelTransport:
        """Create a channel on this connection (initiator)."""

    @abstractmethod
    async def create_offer(self) -> SessionDescription:
        """Generate an offer and install it as the local description."""

    @abstractmethod
    async def create_answer(self) -> SessionDescription:
        """Generate an answer and install it as the local description."""

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription):
        """Apply the other side's offer/answer."""

    @abstractmethod
    async def add_ice_candidate(self, candidate: IceCandidate):
        """Apply one remote candidate. Only valid after set_remote_description."""

    @abstractmethod
    async def close(self):
        """Close the connection."""


# Factory signature: ice server URLs -> peer connection
PeerConnectionFactory = Callable[[List[str]], PeerConnection]


def iter_sdp_candidates(sdp: str) -> Iterator[IceCandidate]:
    """
    Yield the a=candidate lines of an SDP blob as IceCandidate records.

    sdp_mline_index counts m= sections from 0; sdp_mid comes from the
    section's a=mid line wherever it appears in that section.
    """
    sections: List[List[str]] = []
    for line in sdp.splitlines():
        line = line.strip()
        if line.startswith('m='):
            sections.append([])
        elif sections:
            sections[-1].append(line)

    for index, lines in enumerate(sections):
        mid = next((l[len('a=mid:'):] for l in lines if l.startswith('a=mid:')), None)
        for line in lines:
            if line.startswith('a=candidate:'):
                yield IceCandidate(candidate=line[2:], sdp_mid=mid, sdp_mline_index=index)


class AiortcDataChannel(DataChannelTransport):
    """DataChannelTransport over an aiortc RTCDataChannel."""

    def __init__(self, channel):
        super().__init__(channel.label)
        self._channel = channel

        channel.on('open', self._emit_open)
        channel.on('close', self._emit_close)
        channel.on('bufferedamountlow', self._emit_buffered_low)

        @channel.on('message')
        def _on_message(message):
            self._emit_message(frame_from_message(message))

    @property
    def is_open(self) -> bool:
        return self._channel.readyState == 'open'

    @property
    def buffered_amount(self) -> int:
        return self._channel.bufferedAmount

    def _set_low_threshold(self, threshold: int):
        self._channel.bufferedAmountLowThreshold = threshold

    def send(self, data: Union[str, bytes]):
        if not self.is_open:
            raise TransportNotOpenError(f"Channel '{self.label}' is {self._channel.readyState}")
        self._channel.send(data)

    def close(self):
        self._channel.close()


class AiortcPeerConnection(PeerConnection):
    """PeerConnection backed by aiortc.RTCPeerConnection."""

    def __init__(self, ice_servers: List[str]):
        super().__init__()
        from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection

        configuration = RTCConfiguration(
            iceServers=[RTCIceServer(urls=url) for url in ice_servers]
        )
        self._pc = RTCPeerConnection(configuration=configuration)

        @self._pc.on('connectionstatechange')
        def _on_connection_state():
            logger.info(f"Connection state: {self._pc.connectionState}")
            self._emit_connection_state(self._pc.connectionState)

        @self._pc.on('iceconnectionstatechange')
        def _on_ice_state():
            logger.info(f"ICE connection state: {self._pc.iceConnectionState}")
            self._emit_ice_connection_state(self._pc.iceConnectionState)

        @self._pc.on('datachannel')
        def _on_datachannel(channel):
            logger.info(f"Remote opened data channel '{channel.label}'")
            self._emit_data_channel(AiortcDataChannel(channel))

    def create_data_channel(self, label: str, ordered: bool = True) -> DataChannelTransport:
        return AiortcDataChannel(self._pc.createDataChannel(label, ordered=ordered))

    async def _install_local(self, description) -> SessionDescription:
        await self._pc.setLocalDescription(description)
        local = self._pc.localDescription

        # Gathering is complete once setLocalDescription returns
        for candidate in iter_sdp_candidates(local.sdp):
            self._emit_ice_candidate(candidate)

        return SessionDescription(kind=local.type, body=local.sdp)

    async def create_offer(self) -> SessionDescription:
        return await self._install_local(await self._pc.createOffer())

    async def create_answer(self) -> SessionDescription:
        return await self._install_local(await self._pc.createAnswer())

    async def set_remote_description(self, description: SessionDescription):
        from aiortc import RTCSessionDescription

        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=description.body, type=description.kind)
        )

    async def add_ice_candidate(self, candidate: IceCandidate):
        from aiortc.sdp import candidate_from_sdp

        if candidate.is_end_of_candidates:
            return

        sdp = candidate.candidate
        if sdp.startswith('candidate:'):
            sdp = sdp[len('candidate:'):]

        parsed = candidate_from_sdp(sdp)
        parsed.sdpMid = candidate.sdp_mid
        parsed.sdpMLineIndex = candidate.sdp_mline_index
        await self._pc.addIceCandidate(parsed)

    async def close(self):
        await self._pc.close()


def aiortc_factory(ice_servers: List[str]) -> PeerConnection:
    """Default PeerConnectionFactory."""
    return AiortcPeerConnection(ice_servers)
