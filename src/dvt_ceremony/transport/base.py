"""
Transport adapter interface
Signed message delivery between ceremony participants, plus peer presence events
"""

import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Dict, Optional, Sequence

from pydantic import BaseModel, ValidationError

from ..federation.crypto import NodeKeyPair, sign_envelope, verify_envelope
from ..federation.messages import (
    CoordinationMessage,
    Envelope,
    MessageDecodeError,
    create_envelope,
)

logger = logging.getLogger(__name__)

# Recipient value for messages addressed to every participant
BROADCAST = None


class PeerEventKind(str, Enum):
    """Peer connection event kinds"""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class PeerEvent:
    """Peer connection event observed on the transport"""
    kind: PeerEventKind
    peer: Optional[int] = None
    detail: str = ""


@dataclass(frozen=True)
class ReceivedMessage:
    """A verified, decoded inbound coordination message"""
    sender: int
    message: CoordinationMessage
    envelope: Envelope


class EnvelopeCodec:
    """
    Wraps outbound messages in signed envelopes and opens inbound ones

    Inbound envelopes that fail to parse, fail verification, come from this
    node, or are addressed to another node are dropped (None).
    """

    def __init__(
        self,
        ceremony: str,
        position: int,
        key_pair: NodeKeyPair,
        peer_public_keys: Optional[Dict[int, str]] = None
    ):
        self.ceremony = ceremony
        self.position = position
        self.key_pair = key_pair
        self.peer_public_keys = dict(peer_public_keys or {})

    def seal(self, recipient: Optional[int], message: BaseModel) -> bytes:
        """Build, sign and serialize an envelope"""
        envelope = create_envelope(
            ceremony=self.ceremony,
            sender=self.position,
            recipient=recipient,
            sender_public_key=self.key_pair.public_key_b64,
            message=message,
            nonce=secrets.token_hex(16)
        )
        return sign_envelope(envelope, self.key_pair).to_wire()

    def open(self, data: bytes) -> Optional[ReceivedMessage]:
        """Parse, verify and decode an inbound envelope"""
        try:
            envelope = Envelope.from_wire(data)
        except ValidationError as e:
            logger.warning(f"Dropping malformed envelope: {e.error_count()} validation errors")
            return None

        if envelope.sender == self.position:
            return None

        if envelope.recipient is not None and envelope.recipient != self.position:
            logger.debug(f"Dropping envelope from #{envelope.sender} addressed to #{envelope.recipient}")
            return None

        result = verify_envelope(
            envelope,
            expected_public_key=self.peer_public_keys.get(envelope.sender),
            ceremony=self.ceremony
        )
        if not result:
            logger.warning(f"Dropping envelope from #{envelope.sender}: {result.failure_reason}")
            return None

        try:
            message = envelope.message()
        except MessageDecodeError as e:
            logger.warning(f"Dropping envelope from #{envelope.sender}: {e}")
            return None

        return ReceivedMessage(sender=envelope.sender, message=message, envelope=envelope)


class Transport(ABC):
    """
    Transport adapter consumed by the readiness monitor and coordination engine

    Implementations deliver signed envelopes between participants identified
    by ordinal position. receive() returns None once the transport is closed.
    """

    position: int

    @abstractmethod
    async def connect(self, bootstrap_addresses: Sequence[str]) -> None:
        """Establish the live connection set"""

    @abstractmethod
    def peer_events(self) -> AsyncIterator[PeerEvent]:
        """Stream of peer connection events; ends when the transport closes"""

    @abstractmethod
    async def announce(self, self_id: int) -> None:
        """Advertise this node's presence to its peers"""

    @abstractmethod
    async def send(self, recipient: Optional[int], message: BaseModel) -> None:
        """Send a message to one ordinal, or to everyone when recipient is BROADCAST"""

    @abstractmethod
    async def receive(self) -> Optional[ReceivedMessage]:
        """Wait for the next inbound message; None when the stream has ended"""

    @abstractmethod
    async def close(self) -> None:
        """Release the transport"""
