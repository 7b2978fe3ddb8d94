"""
dvt-ceremony - distributed validator key ceremony coordinator

Coordinates a fixed set of nodes through a leader/follower configuration
exchange and drives the ceremony tool through isolated process runs.
"""

__version__ = "0.1.0"

from .config import NodeConfig, ProtocolConfig, TransportConfig
from .errors import (
    ArtifactMissing,
    CeremonyError,
    CeremonyFailed,
    ConfigAuthoringFailed,
    ConfigurationError,
    ExchangeTimedOut,
    IdentityGenerationFailed,
    IncompleteExchange,
    PeerDiscoveryFailed,
    ProcessIOFailed,
    TransportIOFailed,
)

__all__ = [
    "__version__",
    "ArtifactMissing",
    "CeremonyError",
    "CeremonyFailed",
    "ConfigAuthoringFailed",
    "ConfigurationError",
    "ExchangeTimedOut",
    "IdentityGenerationFailed",
    "IncompleteExchange",
    "NodeConfig",
    "PeerDiscoveryFailed",
    "ProcessIOFailed",
    "ProtocolConfig",
    "TransportConfig",
    "TransportIOFailed",
]
