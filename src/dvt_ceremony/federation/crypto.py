"""
Envelope signing for the coordination protocol
Ed25519 signing and verification of coordination envelopes
"""

import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from ..canonical_utils import stable_hash
from .messages import Envelope

logger = logging.getLogger(__name__)


class VerificationFailureReason(str):
    """Reasons for envelope verification failure"""
    INVALID_SIGNATURE = "invalid_signature"
    KEY_MISMATCH = "key_mismatch"
    MISSING_SIGNATURE = "missing_signature"
    MALFORMED_KEY = "malformed_key"
    WRONG_CEREMONY = "wrong_ceremony"


@dataclass
class VerificationResult:
    """Result of envelope verification"""
    success: bool
    failure_reason: Optional[str] = None

    def __bool__(self):
        return self.success


class NodeKeyPair:
    """Ed25519 key pair a node signs its envelopes with"""

    def __init__(self, private_key: Optional[ed25519.Ed25519PrivateKey] = None):
        """
        Initialize key pair
        Args:
            private_key: Optional existing private key, generates new one if None
        """
        if private_key is None:
            private_key = ed25519.Ed25519PrivateKey.generate()
        self._private_key = private_key
        self._public_key = self._private_key.public_key()
        self._key_id = stable_hash(self.public_key_b64)

    @property
    def private_key(self) -> ed25519.Ed25519PrivateKey:
        """Get private key (never logged)"""
        return self._private_key

    @property
    def public_key(self) -> ed25519.Ed25519PublicKey:
        return self._public_key

    @property
    def key_id(self) -> str:
        return self._key_id

    @property
    def public_key_b64(self) -> str:
        public_bytes = self._public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw
        )
        return base64.b64encode(public_bytes).decode('utf-8')

    def private_key_bytes(self) -> bytes:
        return self._private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption()
        )

    @classmethod
    def from_private_key_bytes(cls, private_key_bytes: bytes) -> 'NodeKeyPair':
        """Create key pair from raw private key bytes"""
        return cls(ed25519.Ed25519PrivateKey.from_private_bytes(private_key_bytes))

    @classmethod
    def load_or_create(cls, path: Path) -> 'NodeKeyPair':
        """
        Load the node signing key from disk, creating it on first use

        Args:
            path: File holding the raw 32-byte private key

        Returns:
            Loaded or newly generated key pair
        """
        path = Path(path)
        if path.exists():
            logger.info(f"Loading node signing key from {path}")
            return cls.from_private_key_bytes(path.read_bytes())

        logger.info(f"Node signing key not found, creating one at {path}")
        key_pair = cls()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(key_pair.private_key_bytes())
        path.chmod(0o600)
        return key_pair

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary (only public key)"""
        return {
            'key_id': self.key_id,
            'public_key': self.public_key_b64
        }


def load_public_key(public_key_b64: str) -> ed25519.Ed25519PublicKey:
    """Decode a base64 raw Ed25519 public key"""
    return ed25519.Ed25519PublicKey.from_public_bytes(base64.b64decode(public_key_b64))


def sign_envelope(envelope: Envelope, key_pair: NodeKeyPair) -> Envelope:
    """
    Sign an envelope with the node key

    Args:
        envelope: Envelope to sign; its sender_public_key must match key_pair
        key_pair: Signing key pair

    Returns:
        Envelope with signature attached
    """
    if envelope.sender_public_key != key_pair.public_key_b64:
        raise ValueError("Envelope sender key does not match signing key")

    signature = key_pair.private_key.sign(envelope.canonical_bytes())
    envelope.signature_b64 = base64.b64encode(signature).decode('utf-8')
    return envelope


def verify_envelope(
    envelope: Envelope,
    expected_public_key: Optional[str] = None,
    ceremony: Optional[str] = None
) -> VerificationResult:
    """
    Verify an envelope signature

    Args:
        envelope: Envelope to verify
        expected_public_key: Known key for the sender ordinal, if any
        ceremony: Ceremony name the envelope must belong to, if any

    Returns:
        Verification result
    """
    if ceremony is not None and envelope.ceremony != ceremony:
        return VerificationResult(False, VerificationFailureReason.WRONG_CEREMONY)

    if not envelope.signature_b64:
        return VerificationResult(False, VerificationFailureReason.MISSING_SIGNATURE)

    if expected_public_key is not None and envelope.sender_public_key != expected_public_key:
        return VerificationResult(False, VerificationFailureReason.KEY_MISMATCH)

    try:
        public_key = load_public_key(envelope.sender_public_key)
    except (ValueError, TypeError) as e:
        logger.debug(f"Malformed sender key from #{envelope.sender}: {e}")
        return VerificationResult(False, VerificationFailureReason.MALFORMED_KEY)

    try:
        public_key.verify(base64.b64decode(envelope.signature_b64), envelope.canonical_bytes())
    except (InvalidSignature, ValueError):
        return VerificationResult(False, VerificationFailureReason.INVALID_SIGNATURE)

    return VerificationResult(True)
