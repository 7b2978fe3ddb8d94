"""
Coordination protocol engine
Drives the leader or follower state machine over a transport
"""

import asyncio
import dataclasses
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional, Union

from ...config import ProtocolConfig
from ...errors import ExchangeTimedOut, IncompleteExchange
from ...reliability import (
    RetryCategory,
    RetryManager,
    RetryPolicy,
    TimeoutCategory,
    TimeoutConfig,
    TimeoutError,
    TimeoutManager,
)
from ...transport.base import Transport
from ..models import CeremonyParams
from .coordination_state_machine import (
    FollowerStateMachine,
    LeaderStateMachine,
    Outbound,
    StepResult,
)

if TYPE_CHECKING:
    from ...execution.ceremony_engine import CeremonyExecutionEngine

logger = logging.getLogger(__name__)

StateMachine = Union[LeaderStateMachine, FollowerStateMachine]


class CoordinationProtocolEngine:
    """
    Runs one side of the configuration exchange

    The engine owns the receive loop: it awaits one message at a time, feeds
    it to the role's state machine and performs the resulting sends, config
    authoring (leader) or config adoption (follower). Each receive is bounded
    by the protocol receive timeout; on expiry the state machine's pending
    messages are re-sent after a backoff, and the exchange fails with
    ExchangeTimedOut once the attempt budget is spent.
    """

    def __init__(
        self,
        transport: Transport,
        ceremony: "CeremonyExecutionEngine",
        params: Optional[CeremonyParams] = None,
        protocol: Optional[ProtocolConfig] = None,
        retry_manager: Optional[RetryManager] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.transport = transport
        self.ceremony = ceremony
        self.params = params or CeremonyParams()
        self.protocol = protocol or ProtocolConfig()
        self.timeout_manager = TimeoutManager(TimeoutConfig(
            protocol_receive=self.protocol.receive_timeout
        ))
        self.retry_manager = retry_manager or RetryManager(sleep=sleep)
        self._sleep = sleep
        self.last_config: Optional[str] = None

    @property
    def resend_policy(self) -> RetryPolicy:
        return dataclasses.replace(
            self.retry_manager.get_policy(RetryCategory.PROTOCOL_RESEND),
            max_attempts=self.protocol.max_receive_attempts,
            base_delay=self.protocol.resend_base_delay,
            max_delay=self.protocol.resend_max_delay
        )

    async def run_as_leader(self, expected_peer_count: int) -> List[str]:
        """
        Collect peer identities, distribute the authored configuration and
        wait for every peer to acknowledge it

        Args:
            expected_peer_count: Number of followers taking part

        Returns:
            Collected peer identities in receipt order

        Raises:
            IncompleteExchange: If the transport closes before the exchange ends
            ExchangeTimedOut: If the receive attempt budget is exhausted
        """
        logger.info(f"Running as leader, expecting {expected_peer_count} peers")
        machine = LeaderStateMachine(expected_peer_count)
        await self._drive(machine, "leader")

        identities = machine.identities
        logger.info(f"Exchange complete with {len(identities)} peer identities")
        return identities

    async def run_as_follower(self, self_position: int) -> None:
        """
        Announce to the leader, hand over the local identity and adopt the
        distributed configuration

        Args:
            self_position: This node's ordinal

        Raises:
            IncompleteExchange: If the transport closes before the exchange ends
            ExchangeTimedOut: If the receive attempt budget is exhausted
        """
        logger.info(f"Running as follower #{self_position}")
        identity = await self.ceremony.identity()
        machine = FollowerStateMachine(self_position, identity)
        await self._drive(machine, "follower")
        logger.info("Exchange complete")

    async def _drive(self, machine: StateMachine, role: str) -> None:
        await self._apply(machine, machine.start())
        timeouts = 0

        while not machine.is_done:
            try:
                received = await self.timeout_manager.execute_with_timeout(
                    category=TimeoutCategory.PROTOCOL_RECEIVE,
                    operation=f"{role} receive in {machine.state.value}",
                    coro=self.transport.receive()
                )
            except TimeoutError as e:
                timeouts += 1
                if timeouts >= self.protocol.max_receive_attempts:
                    raise ExchangeTimedOut(timeouts, e.timeout_seconds, machine.state.value) from e
                await self._resend(machine, timeouts)
                continue

            if received is None:
                raise IncompleteExchange(
                    f"Message stream ended while {role} was in {machine.state.value}",
                    state=machine.state.value
                )

            before = machine.state
            await self._apply(machine, machine.handle(received.sender, received.message))
            # Re-acks of re-sent messages are not progress
            if machine.state != before:
                timeouts = 0

    async def _apply(self, machine: StateMachine, step: StepResult) -> None:
        await self._send_all(step.outbound)

        if step.author_config:
            config = await self._author_config(machine.identities)
            await self._apply(machine, machine.config_ready(config))

        if step.adopt_config is not None:
            await self.ceremony.adopt_config(step.adopt_config.encode("utf-8"))
            await self._apply(machine, machine.config_adopted())

    async def _author_config(self, peer_identities: List[str]) -> str:
        authored = await self.ceremony.author_config(peer_identities, self.params)
        if authored.definition is not None:
            config = authored.definition
        else:
            config = (await self.ceremony.fetch_config()).decode("utf-8")
        self.last_config = config
        return config

    async def _resend(self, machine: StateMachine, attempt: int) -> None:
        delay = self.resend_policy.compute_delay(attempt)
        pending = machine.resend()
        logger.warning(
            f"No message received in {machine.state.value} "
            f"(attempt {attempt}/{self.protocol.max_receive_attempts}), "
            f"re-sending {len(pending)} messages in {delay:.2f}s"
        )
        await self._sleep(delay)
        await self._send_all(pending)

    async def _send_all(self, outbound: List[Outbound]) -> None:
        for item in outbound:
            target = "all" if item.recipient is None else f"#{item.recipient}"
            logger.debug(f"Sending {item.message.msg_type} to {target}")
            await self.transport.send(item.recipient, item.message)
