"""
Ceremony node
Wires readiness, coordination and execution for one participant
"""

import logging
from pathlib import Path
from typing import List, Optional

from .config import NodeConfig
from .execution.artifact_store import ArtifactStore
from .execution.ceremony_engine import CeremonyExecutionEngine
from .execution.runtime import DockerProcessRuntime, ProcessRuntime
from .federation.coordination import CoordinationProtocolEngine
from .federation.crypto import NodeKeyPair
from .federation.models import CeremonyParams, Participant
from .federation.peer_readiness import PeerReadinessMonitor
from .jobs import JobDispatcher, UpdateJobHandler
from .transport.base import Transport
from .transport.nats_transport import NatsTransport

logger = logging.getLogger(__name__)

SIGNING_KEY_FILE = "node-signing.key"


class CeremonyNode:
    """
    One participant in a ceremony run

    Leadership is fixed by position: the node at position 0 coordinates the
    exchange and there is no fallback if it fails.
    """

    def __init__(
        self,
        config: NodeConfig,
        transport: Optional[Transport] = None,
        runtime: Optional[ProcessRuntime] = None,
        key_pair: Optional[NodeKeyPair] = None,
        ceremony: Optional[CeremonyExecutionEngine] = None
    ):
        self.config = config.validate()
        data_dir = config.ensure_data_dir()

        self.key_pair = key_pair or NodeKeyPair.load_or_create(Path(data_dir) / SIGNING_KEY_FILE)
        self.participant = Participant(position=config.position, public_key_b64=self.key_pair.public_key_b64)
        self.transport = transport or NatsTransport(
            config.transport,
            config.ceremony_name,
            config.position,
            self.key_pair,
            config.peer_public_keys
        )
        self.ceremony = ceremony or CeremonyExecutionEngine(
            runtime or DockerProcessRuntime(),
            ArtifactStore(data_dir),
            config
        )
        self.params = CeremonyParams(
            validator_count=config.validator_count,
            fee_recipient_address=config.fee_recipient_address,
            withdrawal_address=config.withdrawal_address
        )
        self.coordination = CoordinationProtocolEngine(
            self.transport,
            self.ceremony,
            self.params,
            config.protocol
        )
        self.jobs = JobDispatcher()
        self.jobs.register(UpdateJobHandler())

        logger.info(
            f"CeremonyNode #{config.position} of {config.operator_count} initialized "
            f"({'leader' if config.is_leader else 'follower'}, data dir {data_dir})"
        )

    @property
    def roster(self) -> List[Participant]:
        """This node and every peer with a pinned key, by position"""
        peers = [
            Participant(position=position, public_key_b64=public_key)
            for position, public_key in self.config.peer_public_keys.items()
            if position != self.config.position
        ]
        return sorted([self.participant] + peers, key=lambda participant: participant.position)

    async def run(self) -> str:
        """
        Run the node through every phase

        Returns:
            Handle of the started service

        Raises:
            CeremonyError: Any phase failure aborts the run
        """
        try:
            identity = await self.ceremony.identity()
            logger.info(f"Local identity: {identity}")
            self.participant = self.participant.model_copy(update={"identity": identity})

            monitor = PeerReadinessMonitor(
                self.transport,
                self.config.expected_peer_count,
                self.config.transport.servers,
                self.config.position
            )
            await monitor.wait_for_quorum()

            if self.config.is_leader:
                await self.coordination.run_as_leader(self.config.expected_peer_count)
            else:
                await self.coordination.run_as_follower(self.config.position)

            await self.ceremony.run_ceremony()
            return await self.ceremony.start_service()
        finally:
            await self.transport.close()
