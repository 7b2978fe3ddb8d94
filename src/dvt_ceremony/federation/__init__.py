"""
Ceremony federation: participants, coordination messages and envelope signing

The readiness monitor and coordination engine live in
dvt_ceremony.federation.peer_readiness and dvt_ceremony.federation.coordination.
"""

from .crypto import (
    NodeKeyPair,
    VerificationFailureReason,
    VerificationResult,
    sign_envelope,
    verify_envelope,
)
from .messages import (
    Announce,
    ConfigAck,
    ConfigGenerated,
    CoordinationMessage,
    Envelope,
    ExchangeEnd,
    IdentityAck,
    MessageDecodeError,
    MessageType,
    RequestIdentity,
    SendIdentity,
    create_envelope,
    decode_message,
    encode_message,
)
from .models import CeremonyConfig, CeremonyParams, Participant

__all__ = [
    "Announce",
    "CeremonyConfig",
    "CeremonyParams",
    "ConfigAck",
    "ConfigGenerated",
    "CoordinationMessage",
    "Envelope",
    "ExchangeEnd",
    "IdentityAck",
    "MessageDecodeError",
    "MessageType",
    "NodeKeyPair",
    "Participant",
    "RequestIdentity",
    "SendIdentity",
    "VerificationFailureReason",
    "VerificationResult",
    "create_envelope",
    "decode_message",
    "encode_message",
    "sign_envelope",
    "verify_envelope",
]
