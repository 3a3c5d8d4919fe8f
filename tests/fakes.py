"""Scripted peer connections linked through an in-process 'network'."""

import asyncio
import itertools
from typing import List, Optional

from tahta.rtc import MemoryDataChannel, PeerConnection
from tahta.signaling import IceCandidate, SessionDescription

_ids = itertools.count(1)


class FakeNetwork:
    """
    Links an offerer and an answerer once each holds the other's description
    and at least one remote candidate.

    report: 'connection' (connection state), 'ice' (ICE state only) or
            'channel' (only the data channel opening)
    link:   False to never connect
    delay:  seconds between deliveries on the data channel (0 for next tick)
    """

    def __init__(self, report: str = 'connection', link: bool = True,
                 open_channel: bool = True, candidates_per_peer: int = 2,
                 delay: float = 0.0):
        self.report = report
        self.link = link
        self.open_channel = open_channel
        self.candidates_per_peer = candidates_per_peer
        self.delay = delay
        self.peers: List["FakePeerConnection"] = []
        self.links = 0

    def factory(self, ice_servers):
        peer = FakePeerConnection(self, ice_servers)
        self.peers.append(peer)
        return peer

    def maybe_link(self):
        if not self.link:
            return
        for offerer in self.peers:
            if offerer.closed or offerer.linked or offerer.remote_end is None:
                continue
            if offerer.local is None or offerer.remote is None:
                continue
            # Only the answer to this very offer completes the link
            answerer = next((p for p in self.peers
                             if p is not offerer and not p.closed and not p.linked
                             and p.remote == offerer.local and p.local == offerer.remote), None)
            if answerer is None:
                continue
            if not (offerer.remote_candidates and answerer.remote_candidates):
                continue
            self._link(offerer, answerer)
            return

    def _link(self, offerer: "FakePeerConnection", answerer: "FakePeerConnection"):
        self.links += 1
        offerer.linked = answerer.linked = True
        answerer.channel = offerer.remote_end
        answerer._emit_data_channel(offerer.remote_end)

        for peer in (offerer, answerer):
            if self.report == 'connection':
                peer._emit_connection_state('connected')
            elif self.report == 'ice':
                peer._emit_ice_connection_state('completed')

        if self.open_channel:
            offerer.channel.open()


class FakePeerConnection(PeerConnection):
    def __init__(self, network: FakeNetwork, ice_servers):
        super().__init__()
        self.network = network
        self.ice_servers = ice_servers
        self.id = next(_ids)

        self.local: Optional[SessionDescription] = None
        self.remote: Optional[SessionDescription] = None
        self.remote_candidates: List[IceCandidate] = []
        self.log: List[tuple] = []

        self.channel: Optional[MemoryDataChannel] = None
        self.remote_end: Optional[MemoryDataChannel] = None
        self.closed = False
        self.linked = False

    def create_data_channel(self, label: str, ordered: bool = True):
        self.channel, self.remote_end = MemoryDataChannel.pair(label, delay=self.network.delay)
        return self.channel

    def _gather(self):
        loop = asyncio.get_running_loop()
        for n in range(self.network.candidates_per_peer):
            candidate = IceCandidate(
                f'candidate:{n} 1 udp {2122260223 - n} 10.0.{self.id}.{n} {5000 + n} typ host',
                '0', 0,
            )
            loop.call_soon(self._emit_ice_candidate, candidate)
        loop.call_soon(self._emit_ice_candidate, IceCandidate(''))

    async def create_offer(self) -> SessionDescription:
        self.local = SessionDescription('offer', f'v=0 peer{self.id} offer')
        self._gather()
        return self.local

    async def create_answer(self) -> SessionDescription:
        self.local = SessionDescription('answer', f'v=0 peer{self.id} answer')
        self._gather()
        return self.local

    async def set_remote_description(self, description: SessionDescription):
        self.remote = description
        self.log.append(('description', description.kind))
        self.network.maybe_link()

    async def add_ice_candidate(self, candidate: IceCandidate):
        if self.remote is None:
            raise AssertionError('candidate applied before remote description')
        self.remote_candidates.append(candidate)
        self.log.append(('candidate', candidate.candidate))
        self.network.maybe_link()

    async def close(self):
        self.closed = True
        self._emit_connection_state('closed')


async def settle(seconds: float = 0.05):
    """Let scheduled callbacks and worker tasks run."""
    await asyncio.sleep(seconds)


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError('condition not reached in time')
        await asyncio.sleep(interval)
