"""
Ceremony execution engine
Artifact-gated phases that drive the ceremony tool through isolated runs
"""

import logging
from typing import List, Optional

from pydantic import ValidationError

from ..config import NodeConfig
from ..errors import CeremonyFailed, ConfigAuthoringFailed, IdentityGenerationFailed
from ..federation.models import CeremonyConfig, CeremonyParams
from .artifact_store import ArtifactStore, CeremonyArtifact
from .compose import ComposeServiceLauncher
from .line_scanner import LineScanner, prefix_predicate
from .process_run import ProcessRun
from .runtime import ProcessRuntime

logger = logging.getLogger(__name__)


class CeremonyExecutionEngine:
    """
    Runs the four ceremony phases for one node

    Identity generation, configuration authoring and ceremony execution are
    each skipped when their artifact already exists in the store. Service
    startup always runs. Phases are sequential and every run is removed
    before the phase returns.
    """

    def __init__(
        self,
        runtime: ProcessRuntime,
        store: ArtifactStore,
        config: NodeConfig,
        service_launcher: Optional[ComposeServiceLauncher] = None
    ):
        self.runtime = runtime
        self.store = store
        self.config = config
        self.service_launcher = service_launcher or ComposeServiceLauncher(
            config.compose_command, config.compose_service
        )
        self._identity: Optional[str] = None

    @property
    def binds(self) -> List[str]:
        return [f"{self.store.data_dir.resolve()}:{self.config.container_data_dir}"]

    def _run(self, args: List[str]) -> ProcessRun:
        return ProcessRun(self.runtime, self.config.image, args, self.binds)

    async def identity(self) -> str:
        """
        Return the local identity, generating it on first use

        Raises:
            IdentityGenerationFailed: If the tool prints no identity line
        """
        if self._identity is not None:
            return self._identity

        if self.store.exists(CeremonyArtifact.IDENTITY_KEY) and self.store.exists(CeremonyArtifact.IDENTITY_PUBLIC):
            logger.info(f"Identity exists, reading from {self.store.path(CeremonyArtifact.IDENTITY_PUBLIC)}")
            self._identity = self.store.read(CeremonyArtifact.IDENTITY_PUBLIC).decode("utf-8").strip()
            return self._identity

        logger.info("Identity not found, creating one...")
        scanner = LineScanner(prefix_predicate(self.config.identity_prefix))

        async with self._run(["create", "enr"]) as run:
            await run.start()
            identity = await scanner.scan(run.output())
            if identity is None:
                logger.error("Failed to create identity")
                raise IdentityGenerationFailed(
                    f"No output line starting with '{self.config.identity_prefix}' from '{run.description}'"
                )
            exit_code = await run.wait()
            if exit_code != 0:
                logger.warning(f"Identity run exited with code {exit_code} after printing the identity")

        self.store.write(CeremonyArtifact.IDENTITY_PUBLIC, identity.encode("utf-8"))
        self._identity = identity
        logger.info("Successfully created identity")
        return identity

    async def author_config(
        self,
        peer_identities: List[str],
        params: Optional[CeremonyParams] = None
    ) -> CeremonyConfig:
        """
        Author the ceremony definition from the leader and peer identities

        Args:
            peer_identities: Follower identities in receipt order
            params: Ceremony parameters; defaults from the node configuration

        Returns:
            Configuration with the tool-written definition attached

        Raises:
            ConfigAuthoringFailed: On invalid identities, non-zero exit or a missing definition
        """
        params = params or CeremonyParams(
            validator_count=self.config.validator_count,
            fee_recipient_address=self.config.fee_recipient_address,
            withdrawal_address=self.config.withdrawal_address
        )
        identities = (await self.identity(),) + tuple(peer_identities)
        try:
            config = CeremonyConfig(
                name=self.config.ceremony_name,
                required_participants=len(identities),
                identities=identities,
                params=params
            )
        except ValidationError as e:
            raise ConfigAuthoringFailed(f"Invalid ceremony configuration: {e.error_count()} validation errors") from e

        if self.store.exists(CeremonyArtifact.CONFIG_DEFINITION):
            logger.info(f"Ceremony definition exists at {self.store.path(CeremonyArtifact.CONFIG_DEFINITION)}")
        else:
            logger.info("Ceremony definition not found, creating one...")
            args = [
                "create", "dkg",
                "--name", config.name,
                "--num-validators", str(params.validator_count),
                "--fee-recipient-addresses", params.fee_recipient_address,
                "--withdrawal-addresses", params.withdrawal_address,
                "--operator-enrs", config.operator_identities_arg(),
            ]
            async with self._run(args) as run:
                exit_code = await run.start(wait_for_exit=True)
            if exit_code != 0:
                raise ConfigAuthoringFailed(f"'{run.description}' exited with code {exit_code}")
            if not self.store.exists(CeremonyArtifact.CONFIG_DEFINITION):
                raise ConfigAuthoringFailed(
                    f"Run succeeded but {self.store.path(CeremonyArtifact.CONFIG_DEFINITION)} was not written"
                )
            logger.info("Successfully created ceremony definition")

        definition = (await self.fetch_config()).decode("utf-8")
        return config.model_copy(update={"definition": definition})

    async def fetch_config(self) -> bytes:
        """Raw ceremony definition contents"""
        return self.store.read(CeremonyArtifact.CONFIG_DEFINITION)

    async def adopt_config(self, data: bytes) -> None:
        """Overwrite the local definition with the leader's"""
        path = self.store.write(CeremonyArtifact.CONFIG_DEFINITION, data)
        logger.info(f"Adopted ceremony definition at {path}")

    async def run_ceremony(self) -> None:
        """
        Run the ceremony unless its lock already exists

        Raises:
            CeremonyFailed: On non-zero exit or a missing lock afterwards
        """
        if self.store.exists(CeremonyArtifact.CEREMONY_LOCK):
            logger.info("Skipping ceremony, already performed")
            return

        logger.info("Starting ceremony...")
        async with self._run(["dkg", "--publish"]) as run:
            exit_code = await run.start(wait_for_exit=True)
        if exit_code != 0:
            raise CeremonyFailed(f"'{run.description}' exited with code {exit_code}")
        if not self.store.exists(CeremonyArtifact.CEREMONY_LOCK):
            raise CeremonyFailed(
                f"Ceremony finished without writing {self.store.path(CeremonyArtifact.CEREMONY_LOCK)}"
            )
        logger.info("Ceremony succeeded")

    async def start_service(self) -> str:
        """Start the long-running service and return its container id"""
        logger.info("Starting service")
        container_id = await self.service_launcher.start(self.store.data_dir)
        logger.debug(f"Started with container id: {container_id}")
        return container_id
