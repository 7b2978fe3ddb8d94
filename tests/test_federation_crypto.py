"""
Tests for envelope signing and verification
"""

import base64
import secrets

import pytest

from dvt_ceremony.federation.crypto import (
    NodeKeyPair,
    VerificationFailureReason,
    sign_envelope,
    verify_envelope,
)
from dvt_ceremony.federation.messages import ConfigGenerated, SendIdentity, create_envelope


def signed(key_pair: NodeKeyPair, message=None, ceremony="Example", sender=1):
    envelope = create_envelope(
        ceremony=ceremony,
        sender=sender,
        recipient=0,
        sender_public_key=key_pair.public_key_b64,
        message=message or SendIdentity(identity="enr:-abc"),
        nonce=secrets.token_hex(16)
    )
    return sign_envelope(envelope, key_pair)


class TestNodeKeyPair:
    """Test node signing keys"""

    def test_key_id_is_stable(self):
        key_pair = NodeKeyPair()
        restored = NodeKeyPair.from_private_key_bytes(key_pair.private_key_bytes())
        assert restored.key_id == key_pair.key_id
        assert restored.public_key_b64 == key_pair.public_key_b64

    def test_to_dict_has_no_private_material(self):
        key_pair = NodeKeyPair()
        assert set(key_pair.to_dict()) == {"key_id", "public_key"}

    def test_load_or_create_persists_key(self, tmp_path):
        path = tmp_path / "keys" / "node-signing.key"
        created = NodeKeyPair.load_or_create(path)
        assert path.exists()
        assert oct(path.stat().st_mode & 0o777) == "0o600"

        loaded = NodeKeyPair.load_or_create(path)
        assert loaded.public_key_b64 == created.public_key_b64


class TestEnvelopeSigning:
    """Test signature verification outcomes"""

    def test_valid_signature(self):
        key_pair = NodeKeyPair()
        result = verify_envelope(signed(key_pair), expected_public_key=key_pair.public_key_b64, ceremony="Example")
        assert result
        assert result.failure_reason is None

    def test_sign_with_wrong_key_refused(self):
        envelope = create_envelope("Example", 1, 0, NodeKeyPair().public_key_b64, SendIdentity(identity="x"), "n")
        with pytest.raises(ValueError):
            sign_envelope(envelope, NodeKeyPair())

    def test_tampered_payload_rejected(self):
        envelope = signed(NodeKeyPair())
        envelope.payload_b64 = base64.b64encode(b'{"identity":"enr:-evil","msg_type":"send_identity"}').decode()
        result = verify_envelope(envelope)
        assert not result
        assert result.failure_reason == VerificationFailureReason.INVALID_SIGNATURE

    def test_tampered_recipient_rejected(self):
        envelope = signed(NodeKeyPair())
        envelope.recipient = 2
        assert verify_envelope(envelope).failure_reason == VerificationFailureReason.INVALID_SIGNATURE

    def test_missing_signature(self):
        envelope = signed(NodeKeyPair())
        envelope.signature_b64 = ""
        assert verify_envelope(envelope).failure_reason == VerificationFailureReason.MISSING_SIGNATURE

    def test_unknown_key_for_position(self):
        envelope = signed(NodeKeyPair())
        result = verify_envelope(envelope, expected_public_key=NodeKeyPair().public_key_b64)
        assert result.failure_reason == VerificationFailureReason.KEY_MISMATCH

    def test_wrong_ceremony(self):
        envelope = signed(NodeKeyPair(), ceremony="Other")
        assert verify_envelope(envelope, ceremony="Example").failure_reason == VerificationFailureReason.WRONG_CEREMONY

    def test_malformed_key(self):
        envelope = signed(NodeKeyPair())
        envelope.sender_public_key = base64.b64encode(b"short").decode()
        assert verify_envelope(envelope).failure_reason == VerificationFailureReason.MALFORMED_KEY

    def test_substituted_key_fails(self):
        """Re-keying a signed envelope without re-signing does not verify"""
        envelope = signed(NodeKeyPair(), message=ConfigGenerated(config="{}"))
        envelope.sender_public_key = NodeKeyPair().public_key_b64
        assert verify_envelope(envelope).failure_reason == VerificationFailureReason.INVALID_SIGNATURE
