"""
Scoped process run
One ephemeral execution, always removed when the scope exits
"""

import logging
from enum import Enum
from typing import AsyncIterator, List, Optional

from ..errors import ProcessIOFailed
from .runtime import LogChunk, ProcessRuntime

logger = logging.getLogger(__name__)


class ProcessRunState(str, Enum):
    """Lifecycle of a process run"""
    PENDING = "pending"
    CREATED = "created"
    RUNNING = "running"
    EXITED = "exited"
    FAILED = "failed"
    REMOVED = "removed"


class ProcessRun:
    """
    Async context manager around a single runtime execution

    Usage:
        async with ProcessRun(runtime, image, ["create", "enr"], binds) as run:
            await run.start()
            async for chunk in run.output():
                ...
            exit_code = await run.wait()

    The execution is created on enter and removed on exit regardless of
    outcome. A removal failure is logged and does not replace an error
    already propagating out of the scope.
    """

    def __init__(self, runtime: ProcessRuntime, image: str, args: List[str], binds: List[str]):
        self.runtime = runtime
        self.image = image
        self.args = list(args)
        self.binds = list(binds)
        self.handle: Optional[str] = None
        self.state = ProcessRunState.PENDING
        self.exit_code: Optional[int] = None

    @property
    def description(self) -> str:
        return " ".join(self.args)

    async def __aenter__(self) -> "ProcessRun":
        self.handle = await self.runtime.create(self.image, self.args, self.binds)
        self.state = ProcessRunState.CREATED
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc is not None and self.state != ProcessRunState.EXITED:
            self.state = ProcessRunState.FAILED

        try:
            await self.runtime.remove(self.handle)
        except ProcessIOFailed as e:
            if exc is not None:
                logger.error(f"Failed to remove run '{self.description}' after error: {e}")
                return False
            raise

        self.state = ProcessRunState.REMOVED
        return False

    async def start(self, wait_for_exit: bool = False) -> Optional[int]:
        """
        Start the execution

        Args:
            wait_for_exit: Block until the process exits

        Returns:
            Exit code when waiting, otherwise None
        """
        self._require(ProcessRunState.CREATED)
        logger.debug(f"Starting run '{self.description}'")
        await self.runtime.start(self.handle)
        self.state = ProcessRunState.RUNNING
        if wait_for_exit:
            return await self.wait()
        return None

    def output(self) -> AsyncIterator[LogChunk]:
        """Lazy stream of the run's combined output"""
        self._require(ProcessRunState.RUNNING, ProcessRunState.EXITED)
        return self.runtime.logs(self.handle)

    async def wait(self) -> int:
        """Wait for the process to exit and record its exit code"""
        if self.state == ProcessRunState.EXITED:
            return self.exit_code
        self._require(ProcessRunState.RUNNING)
        self.exit_code = await self.runtime.wait(self.handle)
        self.state = ProcessRunState.EXITED
        logger.debug(f"Run '{self.description}' exited with code {self.exit_code}")
        return self.exit_code

    def _require(self, *states: ProcessRunState) -> None:
        if self.state not in states:
            raise RuntimeError(f"Run '{self.description}' is {self.state.value}")
