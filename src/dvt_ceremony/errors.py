"""
Ceremony error taxonomy
Every failure surfaced by the coordination and execution engines derives from CeremonyError
"""

from typing import Optional


class CeremonyError(Exception):
    """Base class for ceremony failures"""
    pass


class ConfigurationError(CeremonyError):
    """Raised when the node configuration is invalid"""
    pass


class PeerDiscoveryFailed(CeremonyError):
    """Raised when the peer quorum cannot be reached"""

    def __init__(self, message: str, connected: int = 0, expected: int = 0):
        self.connected = connected
        self.expected = expected
        super().__init__(f"{message} ({connected}/{expected} peers connected)")


class IncompleteExchange(CeremonyError):
    """Raised when the protocol receive stream ends before the exchange completes"""

    def __init__(self, message: str, state: Optional[str] = None):
        self.state = state
        if state:
            message = f"{message} (state: {state})"
        super().__init__(message)


class ExchangeTimedOut(IncompleteExchange):
    """Raised when bounded receive retries are exhausted"""

    def __init__(self, attempts: int, timeout_seconds: float, state: Optional[str] = None):
        self.attempts = attempts
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"No protocol message received after {attempts} attempts of {timeout_seconds}s",
            state=state
        )


class IdentityGenerationFailed(CeremonyError):
    """Raised when the identity process emits no matching output line"""
    pass


class ConfigAuthoringFailed(CeremonyError):
    """Raised when the configuration run fails or leaves no definition behind"""
    pass


class CeremonyFailed(CeremonyError):
    """Raised when the ceremony run does not produce its lock artifact"""
    pass


class ArtifactMissing(CeremonyError):
    """Raised when reading an artifact that does not exist"""

    def __init__(self, artifact: str, path: str):
        self.artifact = artifact
        self.path = path
        super().__init__(f"Artifact {artifact} not found at {path}")


class TransportIOFailed(CeremonyError):
    """Pass-through failure from the message transport"""
    pass


class ProcessIOFailed(CeremonyError):
    """Pass-through failure from the process runtime"""
    pass
