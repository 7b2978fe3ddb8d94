"""
Peer readiness monitor
Blocks a node until the expected quorum of peers is reachable on the transport
"""

import logging
from typing import Optional, Sequence, Set

from ..errors import PeerDiscoveryFailed, TransportIOFailed
from ..transport.base import PeerEventKind, Transport

logger = logging.getLogger(__name__)


class PeerReadinessMonitor:
    """
    Waits for a quorum of distinct peer connections
    
    A peer dropping before quorum is logged and no longer counted; the monitor
    does not retry the connection itself. Once quorum is reached the monitor
    returns and observes no further events.
    """
    
    def __init__(
        self,
        transport: Transport,
        expected_peers: int,
        bootstrap_addresses: Sequence[str] = (),
        self_id: Optional[int] = None
    ):
        if expected_peers < 0:
            raise ValueError(f"expected_peers must be >= 0, got {expected_peers}")
        self.transport = transport
        self.expected_peers = expected_peers
        self.bootstrap_addresses = list(bootstrap_addresses)
        self.self_id = transport.position if self_id is None else self_id
        self._connected: Set[int] = set()
    
    @property
    def connected_peers(self) -> Set[int]:
        return set(self._connected)
    
    async def wait_for_quorum(self) -> Set[int]:
        """
        Connect, announce, and spin until quorum
        
        Returns:
            Ordinals of the connected peers
            
        Raises:
            PeerDiscoveryFailed: On connection errors or if the event stream
                ends before quorum is reached
        """
        logger.info(f"Spinning until {self.expected_peers} peers are available")
        
        try:
            await self.transport.connect(self.bootstrap_addresses)
            await self.transport.announce(self.self_id)
        except TransportIOFailed as e:
            raise PeerDiscoveryFailed(f"Transport connection failed: {e}", 0, self.expected_peers) from e
        
        if self.expected_peers == 0:
            logger.info("No peers expected, done spinning")
            return set()
        
        async for event in self.transport.peer_events():
            if event.kind == PeerEventKind.CONNECTED:
                if event.peer in self._connected:
                    continue
                self._connected.add(event.peer)
                logger.info(f"Connected to peer #{event.peer} ({len(self._connected)}/{self.expected_peers})")
                
                if len(self._connected) >= self.expected_peers:
                    logger.info("All peers connected, done spinning")
                    return set(self._connected)
            
            elif event.kind == PeerEventKind.DISCONNECTED:
                logger.error(f"Peer #{event.peer} dropped before quorum was reached")
                self._connected.discard(event.peer)
            
            elif event.kind == PeerEventKind.ERROR:
                raise PeerDiscoveryFailed(
                    f"Transport error before quorum: {event.detail}",
                    len(self._connected),
                    self.expected_peers
                )
        
        raise PeerDiscoveryFailed(
            "Transport closed before quorum",
            len(self._connected),
            self.expected_peers
        )
