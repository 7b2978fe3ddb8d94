"""
Transport adapters for the coordination protocol
"""

from .base import (
    BROADCAST,
    EnvelopeCodec,
    PeerEvent,
    PeerEventKind,
    ReceivedMessage,
    Transport
)
from .loopback import LoopbackHub, LoopbackTransport
from .nats_transport import NatsTransport, PresenceBeacon

__all__ = [
    'BROADCAST',
    'EnvelopeCodec',
    'PeerEvent',
    'PeerEventKind',
    'ReceivedMessage',
    'Transport',
    'LoopbackHub',
    'LoopbackTransport',
    'NatsTransport',
    'PresenceBeacon'
]
