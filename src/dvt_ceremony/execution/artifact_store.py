"""
Local artifact store
File-backed completion markers under a node's data directory
"""

import logging
from enum import Enum
from pathlib import Path

from ..errors import ArtifactMissing

logger = logging.getLogger(__name__)


class CeremonyArtifact(str, Enum):
    """Artifacts whose presence marks a completed phase, by relative path"""
    IDENTITY_KEY = ".charon/charon-enr-private-key"
    IDENTITY_PUBLIC = "enr.pub"
    CONFIG_DEFINITION = ".charon/cluster-definition.json"
    CEREMONY_LOCK = ".charon/cluster-lock.json"


class ArtifactStore:
    """Key to bytes persistence at deterministic paths under data_dir"""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)

    def path(self, artifact: CeremonyArtifact) -> Path:
        return self.data_dir / artifact.value

    def exists(self, artifact: CeremonyArtifact) -> bool:
        return self.path(artifact).is_file()

    def read(self, artifact: CeremonyArtifact) -> bytes:
        """
        Read an artifact's raw contents

        Raises:
            ArtifactMissing: If the artifact has not been written
        """
        path = self.path(artifact)
        if not path.is_file():
            raise ArtifactMissing(artifact.name, str(path))
        return path.read_bytes()

    def write(self, artifact: CeremonyArtifact, data: bytes) -> Path:
        """Write an artifact, replacing any existing contents"""
        path = self.path(artifact)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug(f"Wrote {artifact.name} ({len(data)} bytes) to {path}")
        return path
