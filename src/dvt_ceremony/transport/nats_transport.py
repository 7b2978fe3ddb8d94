"""
NATS transport for the ceremony coordinator
Core pub/sub subjects per ceremony, with signed envelopes and presence beacons
"""

import asyncio
import logging
from typing import AsyncIterator, Dict, Literal, Optional, Sequence, Set

import nats
from nats.errors import Error as NatsError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import TransportConfig
from ..errors import TransportIOFailed
from ..federation.crypto import NodeKeyPair
from ..reliability import (
    RetryCategory,
    RetryError,
    RetryManager,
    TimeoutCategory,
    TimeoutConfig,
    TimeoutError,
    TimeoutManager,
)
from .base import EnvelopeCodec, PeerEvent, PeerEventKind, ReceivedMessage, Transport

logger = logging.getLogger(__name__)


class PresenceBeacon(BaseModel):
    """Periodic presence advertisement published on the presence subject"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    ceremony: str = Field(min_length=1)
    position: int = Field(ge=0)
    public_key: str = Field(min_length=1)
    status: Literal["online", "leaving"] = "online"


class NatsTransport(Transport):
    """NATS core transport with timeout enforcement"""

    def __init__(
        self,
        config: TransportConfig,
        ceremony: str,
        position: int,
        key_pair: NodeKeyPair,
        peer_public_keys: Optional[Dict[int, str]] = None,
        timeout_manager: Optional[TimeoutManager] = None,
        retry_manager: Optional[RetryManager] = None
    ):
        self.config = config
        self.ceremony = ceremony
        self.position = position
        self.key_pair = key_pair
        self.codec = EnvelopeCodec(ceremony, position, key_pair, peer_public_keys)
        self.timeout_manager = timeout_manager or TimeoutManager(TimeoutConfig(
            transport_connect=config.connection_timeout
        ))
        self.retry_manager = retry_manager or RetryManager()

        self.nc: Optional[nats.NATS] = None
        self.connected = False
        self._closing = False
        self._inbound: asyncio.Queue = asyncio.Queue()
        self._events: asyncio.Queue = asyncio.Queue()
        self._seen_peers: Set[int] = set()
        self._beacon_task: Optional[asyncio.Task] = None

        base = f"{config.subject_prefix}.{ceremony}"
        self.subjects = {
            "broadcast": f"{base}.broadcast",
            "node": f"{base}.node.{position}",
            "presence": f"{base}.presence",
        }

        logger.info(f"NatsTransport initialized for #{position} on {base}")

    def node_subject(self, ordinal: int) -> str:
        return f"{self.config.subject_prefix}.{self.ceremony}.node.{ordinal}"

    async def connect(self, bootstrap_addresses: Sequence[str] = ()) -> None:
        """Connect to NATS and subscribe to this node's subjects"""
        servers = list(bootstrap_addresses) or list(self.config.servers)

        try:
            await self.retry_manager.execute_with_retry(
                category=RetryCategory.TRANSPORT_CONNECT,
                operation="NATS connection establishment",
                coro_factory=lambda: self.timeout_manager.execute_with_timeout(
                    category=TimeoutCategory.TRANSPORT_CONNECT,
                    operation="NATS connection establishment",
                    coro=self._do_connect(servers)
                )
            )
        except RetryError as e:
            raise TransportIOFailed(f"Failed to connect to NATS at {servers}: {e.last_exception}") from e

        logger.info(f"Connected to NATS at {servers}")

    async def _do_connect(self, servers: Sequence[str]) -> None:
        self.nc = await nats.connect(
            servers=list(servers),
            max_reconnect_attempts=self.config.max_reconnect_attempts,
            reconnect_time_wait=self.config.reconnect_wait,
            connect_timeout=self.config.connection_timeout,
            error_cb=self._error_handler,
            closed_cb=self._closed_handler,
            disconnected_cb=self._disconnected_handler,
            reconnected_cb=self._reconnected_handler
        )

        await self.nc.subscribe(self.subjects["broadcast"], cb=self._message_handler)
        await self.nc.subscribe(self.subjects["node"], cb=self._message_handler)
        await self.nc.subscribe(self.subjects["presence"], cb=self._presence_handler)
        self.connected = True

    async def peer_events(self) -> AsyncIterator[PeerEvent]:
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    async def announce(self, self_id: int) -> None:
        """Start publishing presence beacons until the transport closes"""
        self._require_connection()
        await self._publish_beacon("online")
        if self._beacon_task is None:
            self._beacon_task = asyncio.create_task(self._beacon_loop())

    async def _beacon_loop(self) -> None:
        while not self._closing:
            await asyncio.sleep(self.config.presence_interval)
            try:
                await self._publish_beacon("online")
            except TransportIOFailed as e:
                logger.warning(f"Presence beacon failed: {e}")

    async def _publish_beacon(self, status: str) -> None:
        beacon = PresenceBeacon(
            ceremony=self.ceremony,
            position=self.position,
            public_key=self.key_pair.public_key_b64,
            status=status
        )
        await self._publish(self.subjects["presence"], beacon.model_dump_json().encode("utf-8"))

    async def send(self, recipient: Optional[int], message: BaseModel) -> None:
        """Sign and publish a message to one ordinal or to everyone"""
        self._require_connection()
        subject = self.subjects["broadcast"] if recipient is None else self.node_subject(recipient)
        await self._publish(subject, self.codec.seal(recipient, message))

    async def _publish(self, subject: str, data: bytes) -> None:
        try:
            await self.timeout_manager.execute_with_timeout(
                category=TimeoutCategory.TRANSPORT_PUBLISH,
                operation=f"publish to {subject}",
                coro=self.nc.publish(subject, data)
            )
        except (NatsError, TimeoutError) as e:
            raise TransportIOFailed(f"Failed to publish to {subject}: {e}") from e

    async def receive(self) -> Optional[ReceivedMessage]:
        while True:
            data = await self._inbound.get()
            if data is None:
                return None
            received = self.codec.open(data)
            if received is not None:
                return received

    async def close(self) -> None:
        """Publish a leaving beacon, drain and close the connection"""
        if self._closing:
            return
        self._closing = True

        if self._beacon_task:
            self._beacon_task.cancel()
            try:
                await self._beacon_task
            except asyncio.CancelledError:
                pass

        if self.nc and not self.nc.is_closed:
            try:
                await self._publish_beacon("leaving")
            except TransportIOFailed as e:
                logger.warning(f"Failed to publish leaving beacon: {e}")
            try:
                await self.timeout_manager.execute_with_timeout(
                    category=TimeoutCategory.TRANSPORT_DRAIN,
                    operation="NATS drain",
                    coro=self.nc.drain()
                )
            except TimeoutError:
                logger.warning("NATS drain timed out, forcing close")
                await self.nc.close()

        self.connected = False
        self._inbound.put_nowait(None)
        self._events.put_nowait(None)
        logger.info("Disconnected from NATS")

    def _require_connection(self) -> None:
        if not self.connected or self.nc is None:
            raise TransportIOFailed("Not connected to NATS")

    async def _message_handler(self, msg) -> None:
        self._inbound.put_nowait(msg.data)

    async def _presence_handler(self, msg) -> None:
        try:
            beacon = PresenceBeacon.model_validate_json(msg.data)
        except ValidationError:
            logger.warning("Ignoring malformed presence beacon")
            return

        if beacon.ceremony != self.ceremony or beacon.position == self.position:
            return

        expected_key = self.codec.peer_public_keys.get(beacon.position)
        if expected_key is not None and expected_key != beacon.public_key:
            logger.warning(f"Ignoring presence beacon for #{beacon.position} with unknown key")
            return

        if beacon.status == "online" and beacon.position not in self._seen_peers:
            self._seen_peers.add(beacon.position)
            self._events.put_nowait(PeerEvent(PeerEventKind.CONNECTED, peer=beacon.position))
        elif beacon.status == "leaving" and beacon.position in self._seen_peers:
            self._seen_peers.discard(beacon.position)
            self._events.put_nowait(PeerEvent(PeerEventKind.DISCONNECTED, peer=beacon.position))

    async def _error_handler(self, e) -> None:
        logger.error(f"NATS error: {e}")

    async def _disconnected_handler(self) -> None:
        logger.warning("NATS disconnected, reconnecting")

    async def _reconnected_handler(self) -> None:
        logger.info("NATS reconnected")

    async def _closed_handler(self) -> None:
        if self._closing:
            return
        logger.error("NATS connection closed unexpectedly")
        self.connected = False
        self._events.put_nowait(PeerEvent(PeerEventKind.ERROR, detail="NATS connection closed"))
        self._events.put_nowait(None)
        self._inbound.put_nowait(None)
