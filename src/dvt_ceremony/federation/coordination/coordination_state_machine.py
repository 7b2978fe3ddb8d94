"""
Leader and follower state machines for the ceremony configuration exchange
Deterministic, I/O-free: each inbound message yields the messages to send next

    Leader                              Follower
      |<------------- Announce ------------| (1) initial ping
      |------------- RequestIdentity ----->| (2) broadcast, once all peers announced
      |<------------ SendIdentity ---------| (3) response
      |------------- IdentityAck --------->| (4) acknowledgment
      |------------- ConfigGenerated ----->| (5) broadcast, once all identities received
      |<------------ ConfigAck ------------| (6) acknowledgment
      |------------- ExchangeEnd --------->| (7) broadcast, final
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel

from ..messages import (
    Announce,
    ConfigAck,
    ConfigGenerated,
    ExchangeEnd,
    IdentityAck,
    RequestIdentity,
    SendIdentity,
)

logger = logging.getLogger(__name__)

LEADER_POSITION = 0


class LeaderState(str, Enum):
    """Leader exchange states"""
    AWAITING_PEERS = "awaiting_peers"
    COLLECTING_IDENTITIES = "collecting_identities"
    DISTRIBUTING = "distributing"
    AWAITING_ACKS = "awaiting_acks"
    DONE = "done"


class FollowerState(str, Enum):
    """Follower exchange states"""
    ANNOUNCING_SELF = "announcing_self"
    AWAITING_REQUEST = "awaiting_request"
    AWAITING_CONFIG = "awaiting_config"
    AWAITING_END = "awaiting_end"
    DONE = "done"


@dataclass(frozen=True)
class Outbound:
    """Message to send; recipient None is a broadcast"""
    recipient: Optional[int]
    message: BaseModel


@dataclass
class StepResult:
    """Outcome of feeding one event to a state machine"""
    outbound: List[Outbound] = field(default_factory=list)
    # Leader: all identities collected, the configuration must be authored
    author_config: bool = False
    # Follower: configuration received and must be persisted
    adopt_config: Optional[str] = None
    ignored: bool = False


@dataclass
class StateTransition:
    """Record of an exchange state transition"""
    from_state: str
    to_state: str
    sender: Optional[int]
    message_type: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class _ExchangeStateMachine:
    """Shared transition bookkeeping"""

    VALID_TRANSITIONS: Dict[Enum, List[Enum]] = {}

    def __init__(self, initial_state: Enum):
        self._state = initial_state
        self._transitions: List[StateTransition] = []

    @property
    def state(self):
        return self._state

    @property
    def transitions(self) -> List[StateTransition]:
        return list(self._transitions)

    @property
    def is_done(self) -> bool:
        return len(self.VALID_TRANSITIONS.get(self._state, [])) == 0

    def can_transition(self, from_state: Enum, to_state: Enum) -> bool:
        return to_state in self.VALID_TRANSITIONS.get(from_state, [])

    def _transition(self, to_state: Enum, sender: Optional[int], message_type: str) -> None:
        if not self.can_transition(self._state, to_state):
            raise RuntimeError(f"Invalid transition: {self._state.value} -> {to_state.value}")

        self._transitions.append(StateTransition(
            from_state=self._state.value,
            to_state=to_state.value,
            sender=sender,
            message_type=message_type
        ))
        logger.info(f"{type(self).__name__}: {self._state.value} -> {to_state.value}")
        self._state = to_state

    def _ignore(self, sender: int, message: BaseModel) -> StepResult:
        logger.debug(f"Ignoring {message.msg_type} from #{sender} in state {self._state.value}")
        return StepResult(ignored=True)


class LeaderStateMachine(_ExchangeStateMachine):
    """
    Leader side of the exchange

    Counts distinct announcements, collects identities in receipt order,
    distributes the authored configuration and waits for acknowledgments.
    """

    VALID_TRANSITIONS = {
        LeaderState.AWAITING_PEERS: [LeaderState.COLLECTING_IDENTITIES, LeaderState.DISTRIBUTING],
        LeaderState.COLLECTING_IDENTITIES: [LeaderState.DISTRIBUTING],
        LeaderState.DISTRIBUTING: [LeaderState.AWAITING_ACKS],
        LeaderState.AWAITING_ACKS: [LeaderState.DONE],
        LeaderState.DONE: [],
    }

    def __init__(self, expected_count: int):
        if expected_count < 0:
            raise ValueError(f"expected_count must be >= 0, got {expected_count}")
        super().__init__(LeaderState.AWAITING_PEERS)
        self.expected_count = expected_count
        self._announced: List[int] = []
        self._identities: List[str] = []
        self._identity_senders: Set[int] = set()
        self._acked: Set[int] = set()
        self._config: Optional[str] = None

    @property
    def identities(self) -> List[str]:
        """Collected peer identities in receipt order"""
        return list(self._identities)

    @property
    def announced_peers(self) -> List[int]:
        return list(self._announced)

    @property
    def config(self) -> Optional[str]:
        return self._config

    def start(self) -> StepResult:
        """Initial step; with no peers the configuration is authored immediately"""
        if self.expected_count == 0:
            self._transition(LeaderState.DISTRIBUTING, None, "start")
            return StepResult(author_config=True)
        return StepResult()

    def handle(self, sender: int, message: BaseModel) -> StepResult:
        if self._state == LeaderState.AWAITING_PEERS and isinstance(message, Announce):
            return self._on_announce(sender)
        if self._state == LeaderState.COLLECTING_IDENTITIES and isinstance(message, SendIdentity):
            return self._on_identity(sender, message.identity)
        if self._state == LeaderState.AWAITING_ACKS and isinstance(message, ConfigAck):
            return self._on_config_ack(sender)
        return self._ignore(sender, message)

    def _on_announce(self, sender: int) -> StepResult:
        if sender in self._announced:
            return StepResult()

        self._announced.append(sender)
        logger.info(f"Received Announce from peer #{sender} ({len(self._announced)}/{self.expected_count})")

        if len(self._announced) < self.expected_count:
            return StepResult()

        logger.info("Requesting all identities")
        self._transition(LeaderState.COLLECTING_IDENTITIES, sender, "announce")
        return StepResult(outbound=[Outbound(None, RequestIdentity())])

    def _on_identity(self, sender: int, identity: str) -> StepResult:
        if not identity.strip():
            logger.warning(f"Ignoring blank identity from peer #{sender}")
            return StepResult(ignored=True)

        ack = Outbound(sender, IdentityAck())
        if sender in self._identity_senders:
            logger.info(f"Peer #{sender} resent its identity, acknowledging again")
            return StepResult(outbound=[ack])

        self._identity_senders.add(sender)
        self._identities.append(identity)
        logger.info(f"Received a new identity from peer #{sender} ({len(self._identities)}/{self.expected_count})")

        if len(self._identities) < self.expected_count:
            return StepResult(outbound=[ack])

        self._transition(LeaderState.DISTRIBUTING, sender, "send_identity")
        return StepResult(outbound=[ack], author_config=True)

    def config_ready(self, config: str) -> StepResult:
        """Broadcast the authored configuration"""
        if self._state != LeaderState.DISTRIBUTING:
            raise RuntimeError(f"Configuration is not expected in state {self._state.value}")

        self._config = config
        logger.info("Broadcasting configuration to peers")
        self._transition(LeaderState.AWAITING_ACKS, None, "config_generated")
        outbound = [Outbound(None, ConfigGenerated(config=config))]

        if self.expected_count == 0:
            self._transition(LeaderState.DONE, None, "exchange_end")
            outbound.append(Outbound(None, ExchangeEnd()))

        return StepResult(outbound=outbound)

    def _on_config_ack(self, sender: int) -> StepResult:
        if sender in self._acked:
            return StepResult()

        self._acked.add(sender)
        logger.info(f"Peer #{sender} received the configuration ({len(self._acked)}/{self.expected_count})")

        if len(self._acked) < self.expected_count:
            return StepResult()

        logger.info("Broadcasting exchange end to peers")
        self._transition(LeaderState.DONE, sender, "config_ack")
        return StepResult(outbound=[Outbound(None, ExchangeEnd())])

    def resend(self) -> List[Outbound]:
        """Messages to repeat after a receive deadline passes"""
        if self._state == LeaderState.COLLECTING_IDENTITIES:
            return [Outbound(None, RequestIdentity())]
        if self._state == LeaderState.AWAITING_ACKS and self._config is not None:
            return [Outbound(None, ConfigGenerated(config=self._config))]
        return []


class FollowerStateMachine(_ExchangeStateMachine):
    """
    Follower side of the exchange

    Replies to exactly one identity request, persists the configuration once
    and acknowledges it, then waits for the leader to end the exchange.
    """

    VALID_TRANSITIONS = {
        FollowerState.ANNOUNCING_SELF: [FollowerState.AWAITING_REQUEST],
        FollowerState.AWAITING_REQUEST: [FollowerState.AWAITING_CONFIG],
        FollowerState.AWAITING_CONFIG: [FollowerState.AWAITING_END],
        FollowerState.AWAITING_END: [FollowerState.DONE],
        FollowerState.DONE: [],
    }

    def __init__(self, position: int, identity: str, leader_position: int = LEADER_POSITION):
        super().__init__(FollowerState.ANNOUNCING_SELF)
        self.position = position
        self.identity = identity
        self.leader_id = leader_position
        self.identity_replies = 0

    def start(self) -> StepResult:
        """Announce to the leader"""
        self._transition(FollowerState.AWAITING_REQUEST, None, "announce")
        return StepResult(outbound=[Outbound(self.leader_id, Announce())])

    def handle(self, sender: int, message: BaseModel) -> StepResult:
        if isinstance(message, IdentityAck):
            logger.info("Leader received my identity")
            return StepResult()
        if self._state == FollowerState.AWAITING_REQUEST and isinstance(message, RequestIdentity):
            return self._on_request(sender)
        if isinstance(message, ConfigGenerated) and sender == self.leader_id:
            if self._state == FollowerState.AWAITING_CONFIG:
                logger.info("Received configuration, copying...")
                return StepResult(adopt_config=message.config)
            if self._state == FollowerState.AWAITING_END:
                logger.info("Leader resent the configuration, acknowledging again")
                return StepResult(outbound=[Outbound(self.leader_id, ConfigAck())])
        if self._state == FollowerState.AWAITING_END and isinstance(message, ExchangeEnd) and sender == self.leader_id:
            logger.info("Ending exchange by leader request")
            self._transition(FollowerState.DONE, sender, "exchange_end")
            return StepResult()
        return self._ignore(sender, message)

    def _on_request(self, sender: int) -> StepResult:
        logger.info("Leader requested identity, sending...")
        self.leader_id = sender
        self.identity_replies += 1
        self._transition(FollowerState.AWAITING_CONFIG, sender, "request_identity")
        return StepResult(outbound=[Outbound(self.leader_id, SendIdentity(identity=self.identity))])

    def config_adopted(self) -> StepResult:
        """Acknowledge a persisted configuration"""
        if self._state != FollowerState.AWAITING_CONFIG:
            raise RuntimeError(f"Configuration adoption is not expected in state {self._state.value}")
        self._transition(FollowerState.AWAITING_END, self.leader_id, "config_generated")
        return StepResult(outbound=[Outbound(self.leader_id, ConfigAck())])

    def resend(self) -> List[Outbound]:
        """Messages to repeat after a receive deadline passes"""
        if self._state == FollowerState.AWAITING_REQUEST:
            return [Outbound(self.leader_id, Announce())]
        if self._state == FollowerState.AWAITING_CONFIG:
            return [Outbound(self.leader_id, SendIdentity(identity=self.identity))]
        if self._state == FollowerState.AWAITING_END:
            return [Outbound(self.leader_id, ConfigAck())]
        return []
