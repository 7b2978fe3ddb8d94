"""
Ceremony data models
Participants and the shared ceremony configuration
"""

from typing import Optional, Tuple
from pydantic import BaseModel, Field, ConfigDict, field_validator

from ..config import DEFAULT_FEE_RECIPIENT_ADDRESS, DEFAULT_WITHDRAWAL_ADDRESS


class Participant(BaseModel):
    """A node taking part in one ceremony run"""
    model_config = ConfigDict(extra="forbid", frozen=True)
    
    position: int = Field(ge=0, description="Ordinal position, 0 is the leader")
    public_key_b64: str = Field(min_length=1, description="Base64 encoded Ed25519 public key")
    identity: Optional[str] = Field(default=None, description="Identity string (ENR) once obtained")
    
    @property
    def is_leader(self) -> bool:
        return self.position == 0


class CeremonyParams(BaseModel):
    """Ceremony-specific parameters passed to configuration authoring"""
    model_config = ConfigDict(extra="forbid", frozen=True)
    
    validator_count: int = Field(default=1, ge=1, description="Number of validators to create")
    fee_recipient_address: str = Field(default=DEFAULT_FEE_RECIPIENT_ADDRESS, min_length=1, description="Fee recipient address")
    withdrawal_address: str = Field(default=DEFAULT_WITHDRAWAL_ADDRESS, min_length=1, description="Withdrawal address")


class CeremonyConfig(BaseModel):
    """
    Shared ceremony configuration
    
    Identities are ordered with the leader's own identity first. The value is
    immutable once built; the serialized definition distributed to peers is
    the external tool's canonical form, carried alongside in `definition`.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)
    
    name: str = Field(min_length=1, description="Ceremony name")
    required_participants: int = Field(ge=1, description="Number of identities required")
    identities: Tuple[str, ...] = Field(description="Participant identities, leader first")
    params: CeremonyParams = Field(description="Ceremony parameters")
    definition: Optional[str] = Field(default=None, description="Serialized definition written by the tool")
    
    @field_validator('identities')
    @classmethod
    def validate_identities(cls, v):
        if any(not identity.strip() for identity in v):
            raise ValueError("Identities must be non-empty strings")
        return v
    
    @property
    def is_complete(self) -> bool:
        return len(self.identities) == self.required_participants
    
    def operator_identities_arg(self) -> str:
        """Comma separated identity list as accepted by the tool"""
        return ",".join(self.identities)
