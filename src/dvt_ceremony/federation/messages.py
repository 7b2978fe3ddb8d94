"""
Coordination protocol messages and signed envelopes
Seven message variants exchanged between the leader and its followers
"""

import base64
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_serializer, field_validator

from ..canonical_utils import canonical_bytes, stable_hash

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    """Coordination message types"""
    ANNOUNCE = "announce"
    REQUEST_IDENTITY = "request_identity"
    SEND_IDENTITY = "send_identity"
    IDENTITY_ACK = "identity_ack"
    CONFIG_GENERATED = "config_generated"
    CONFIG_ACK = "config_ack"
    EXCHANGE_END = "exchange_end"


class EnvelopeVersion:
    """Envelope version constants"""
    CURRENT = 1


# Embedded strings are carried verbatim, so no whitespace stripping here
_MESSAGE_CONFIG = ConfigDict(extra="forbid", frozen=True)


class Announce(BaseModel):
    """Follower announces itself to the leader"""
    model_config = _MESSAGE_CONFIG
    msg_type: Literal["announce"] = "announce"


class RequestIdentity(BaseModel):
    """Leader asks every follower for its identity"""
    model_config = _MESSAGE_CONFIG
    msg_type: Literal["request_identity"] = "request_identity"


class SendIdentity(BaseModel):
    """Follower replies with its identity string"""
    model_config = _MESSAGE_CONFIG
    msg_type: Literal["send_identity"] = "send_identity"
    identity: str = Field(description="Participant identity (ENR)")


class IdentityAck(BaseModel):
    """Leader acknowledges a received identity"""
    model_config = _MESSAGE_CONFIG
    msg_type: Literal["identity_ack"] = "identity_ack"


class ConfigGenerated(BaseModel):
    """Leader distributes the serialized ceremony configuration"""
    model_config = _MESSAGE_CONFIG
    msg_type: Literal["config_generated"] = "config_generated"
    config: str = Field(description="Opaque serialized configuration")


class ConfigAck(BaseModel):
    """Follower acknowledges the configuration"""
    model_config = _MESSAGE_CONFIG
    msg_type: Literal["config_ack"] = "config_ack"


class ExchangeEnd(BaseModel):
    """Leader terminates the exchange"""
    model_config = _MESSAGE_CONFIG
    msg_type: Literal["exchange_end"] = "exchange_end"


CoordinationMessage = Annotated[
    Union[Announce, RequestIdentity, SendIdentity, IdentityAck, ConfigGenerated, ConfigAck, ExchangeEnd],
    Field(discriminator="msg_type")
]

_message_adapter = TypeAdapter(CoordinationMessage)


class MessageDecodeError(ValueError):
    """Raised when payload bytes are not a valid coordination message"""
    pass


def encode_message(message: BaseModel) -> bytes:
    """Serialize a coordination message to payload bytes"""
    return canonical_bytes(message.model_dump(mode="json"))


def decode_message(payload: bytes) -> CoordinationMessage:
    """
    Deserialize payload bytes into a coordination message
    
    Raises:
        MessageDecodeError: If the payload is not a known message variant
    """
    try:
        return _message_adapter.validate_json(payload)
    except ValidationError as e:
        raise MessageDecodeError(f"Invalid coordination payload: {e.error_count()} errors") from e


class Envelope(BaseModel):
    """
    Wire envelope for a coordination message
    
    Carries the sender ordinal, optional recipient ordinal (None is broadcast),
    and the sender's public key; the signature covers canonical_bytes().
    """
    model_config = ConfigDict(extra="forbid")
    
    version: int = Field(default=EnvelopeVersion.CURRENT, description="Envelope version")
    ceremony: str = Field(min_length=1, description="Ceremony name scoping the exchange")
    sender: int = Field(ge=0, description="Sender ordinal")
    recipient: Optional[int] = Field(default=None, ge=0, description="Recipient ordinal, None for broadcast")
    sender_public_key: str = Field(min_length=1, description="Base64 encoded Ed25519 public key")
    nonce: str = Field(min_length=1, description="Random nonce")
    timestamp_utc: datetime = Field(description="Send time in UTC")
    payload_b64: str = Field(description="Base64 encoded message payload")
    signature_b64: str = Field(default="", description="Base64 encoded Ed25519 signature")
    
    @field_validator('timestamp_utc')
    @classmethod
    def validate_utc_timestamp(cls, v):
        """Ensure timestamp is in UTC"""
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        elif v.tzinfo != timezone.utc:
            v = v.astimezone(timezone.utc)
        return v
    
    @field_serializer('timestamp_utc')
    def serialize_timestamp_utc(self, value: datetime) -> str:
        return value.isoformat().replace('+00:00', 'Z')
    
    @property
    def is_broadcast(self) -> bool:
        return self.recipient is None
    
    @property
    def payload(self) -> bytes:
        return base64.b64decode(self.payload_b64)
    
    def message(self) -> CoordinationMessage:
        try:
            payload = self.payload
        except ValueError as e:
            raise MessageDecodeError(f"Invalid payload encoding: {e}") from e
        return decode_message(payload)
    
    def signed_payload_dict(self) -> Dict[str, Any]:
        """Return the exact structure to be canonicalized and signed"""
        return {
            'version': self.version,
            'ceremony': self.ceremony,
            'sender': self.sender,
            'recipient': self.recipient,
            'sender_public_key': self.sender_public_key,
            'nonce': self.nonce,
            'timestamp_utc': self.timestamp_utc.isoformat().replace('+00:00', 'Z'),
            'payload_b64': self.payload_b64,
        }
    
    def canonical_bytes(self) -> bytes:
        """Produce deterministic bytes for signing"""
        return canonical_bytes(self.signed_payload_dict())
    
    def payload_hash(self) -> str:
        return stable_hash(self.canonical_bytes())
    
    def to_wire(self) -> bytes:
        return self.model_dump_json().encode('utf-8')
    
    @classmethod
    def from_wire(cls, data: bytes) -> "Envelope":
        return cls.model_validate_json(data)


def create_envelope(
    ceremony: str,
    sender: int,
    recipient: Optional[int],
    sender_public_key: str,
    message: BaseModel,
    nonce: str,
    timestamp: Optional[datetime] = None
) -> Envelope:
    """Factory function to create an unsigned envelope around a message"""
    if timestamp is None:
        timestamp = datetime.now(timezone.utc)
    
    return Envelope(
        ceremony=ceremony,
        sender=sender,
        recipient=recipient,
        sender_public_key=sender_public_key,
        nonce=nonce,
        timestamp_utc=timestamp,
        payload_b64=base64.b64encode(encode_message(message)).decode('ascii')
    )
