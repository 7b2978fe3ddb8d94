"""
In-process loopback transport
Routes signed envelopes between transports sharing one LoopbackHub, for
single-host rehearsals and tests
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel

from ..errors import TransportIOFailed
from ..federation.crypto import NodeKeyPair
from ..federation.messages import Envelope
from .base import EnvelopeCodec, PeerEvent, PeerEventKind, ReceivedMessage, Transport

logger = logging.getLogger(__name__)

# Returns True for envelopes that should be lost in transit
DropFilter = Callable[[Envelope], bool]


class LoopbackHub:
    """Shared routing table for loopback transports"""

    def __init__(self, ceremony: str = "Example"):
        self.ceremony = ceremony
        self._transports: Dict[int, "LoopbackTransport"] = {}
        self._announced: List[int] = []
        self._drop_filter: Optional[DropFilter] = None
        self.delivered: List[Envelope] = []

    def transport(
        self,
        position: int,
        key_pair: Optional[NodeKeyPair] = None,
        peer_public_keys: Optional[Dict[int, str]] = None
    ) -> "LoopbackTransport":
        """Create a transport for the given ordinal"""
        if position in self._transports:
            raise ValueError(f"Position {position} already has a transport")
        transport = LoopbackTransport(self, position, key_pair or NodeKeyPair(), peer_public_keys)
        self._transports[position] = transport
        return transport

    def set_drop_filter(self, drop_filter: Optional[DropFilter]) -> None:
        """Install a filter deciding which envelopes are lost"""
        self._drop_filter = drop_filter

    def fail(self, detail: str = "connection lost") -> None:
        """Report an unrecoverable error to every connected transport"""
        for transport in self._transports.values():
            if transport.connected:
                transport._push_event(PeerEvent(PeerEventKind.ERROR, detail=detail))

    def _on_announce(self, position: int) -> None:
        if position in self._announced:
            return
        for other in self._announced:
            self._transports[other]._push_event(PeerEvent(PeerEventKind.CONNECTED, peer=position))
            self._transports[position]._push_event(PeerEvent(PeerEventKind.CONNECTED, peer=other))
        self._announced.append(position)

    def _on_close(self, position: int) -> None:
        if position in self._announced:
            self._announced.remove(position)
            for other in self._announced:
                self._transports[other]._push_event(PeerEvent(PeerEventKind.DISCONNECTED, peer=position))

    def _route(self, sender: int, recipient: Optional[int], data: bytes) -> None:
        envelope = Envelope.from_wire(data)
        if self._drop_filter is not None and self._drop_filter(envelope):
            logger.debug(f"Dropping envelope from #{sender} in transit")
            return

        self.delivered.append(envelope)
        for position, transport in self._transports.items():
            if position == sender or not transport.connected:
                continue
            if recipient is None or recipient == position:
                transport._inbound.put_nowait(data)


class LoopbackTransport(Transport):
    """Transport endpoint attached to a LoopbackHub"""

    def __init__(
        self,
        hub: LoopbackHub,
        position: int,
        key_pair: NodeKeyPair,
        peer_public_keys: Optional[Dict[int, str]] = None
    ):
        self.hub = hub
        self.position = position
        self.key_pair = key_pair
        self.codec = EnvelopeCodec(hub.ceremony, position, key_pair, peer_public_keys)
        self.connected = False
        self._closed = False
        self._inbound: asyncio.Queue = asyncio.Queue()
        self._events: asyncio.Queue = asyncio.Queue()

    def _push_event(self, event: PeerEvent) -> None:
        self._events.put_nowait(event)

    async def connect(self, bootstrap_addresses: Sequence[str] = ()) -> None:
        if self._closed:
            raise TransportIOFailed(f"Transport #{self.position} is closed")
        self.connected = True
        logger.debug(f"Loopback transport #{self.position} connected")

    async def peer_events(self) -> AsyncIterator[PeerEvent]:
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    async def announce(self, self_id: int) -> None:
        if not self.connected:
            raise TransportIOFailed(f"Transport #{self.position} is not connected")
        self.hub._on_announce(self_id)

    async def send(self, recipient: Optional[int], message: BaseModel) -> None:
        if not self.connected or self._closed:
            raise TransportIOFailed(f"Transport #{self.position} is not connected")
        self.hub._route(self.position, recipient, self.codec.seal(recipient, message))

    async def receive(self) -> Optional[ReceivedMessage]:
        while True:
            data = await self._inbound.get()
            if data is None:
                return None
            received = self.codec.open(data)
            if received is not None:
                return received

    async def inject(self, data: bytes) -> None:
        """Deliver raw bytes to this endpoint as if received from the wire"""
        self._inbound.put_nowait(data)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.connected = False
        self.hub._on_close(self.position)
        self._inbound.put_nowait(None)
        self._events.put_nowait(None)
