"""
Leader/follower configuration exchange
"""

from .coordination_state_machine import (
    LEADER_POSITION,
    FollowerState,
    FollowerStateMachine,
    LeaderState,
    LeaderStateMachine,
    Outbound,
    StateTransition,
    StepResult,
)
from .protocol_engine import CoordinationProtocolEngine

__all__ = [
    "LEADER_POSITION",
    "CoordinationProtocolEngine",
    "FollowerState",
    "FollowerStateMachine",
    "LeaderState",
    "LeaderStateMachine",
    "Outbound",
    "StateTransition",
    "StepResult",
]
