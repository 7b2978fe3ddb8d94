"""
Process runtime adapter
Isolated, ephemeral executions of the ceremony tool image
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, List, Optional

import docker
from docker.errors import DockerException

from ..errors import ProcessIOFailed

logger = logging.getLogger(__name__)


class LogStream(str, Enum):
    """Output stream a log chunk came from"""
    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class LogChunk:
    """A chunk of process output; chunks are not aligned to lines"""
    stream: LogStream
    data: bytes


class ProcessRuntime(ABC):
    """
    Runtime able to create, start, stream, wait on and remove isolated
    executions. Handles are opaque strings owned by the runtime.
    """

    @abstractmethod
    async def create(self, image: str, args: List[str], binds: List[str]) -> str:
        """Create an execution and return its handle"""

    @abstractmethod
    async def start(self, handle: str) -> None:
        """Start a created execution"""

    @abstractmethod
    def logs(self, handle: str) -> AsyncIterator[LogChunk]:
        """Stream combined output until the execution exits"""

    @abstractmethod
    async def wait(self, handle: str) -> int:
        """Wait for exit and return the exit code"""

    @abstractmethod
    async def remove(self, handle: str) -> None:
        """Remove the execution, stopping it if still running"""


class DockerProcessRuntime(ProcessRuntime):
    """Docker-backed runtime; blocking SDK calls run in worker threads"""

    def __init__(self, client: Optional[docker.DockerClient] = None):
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                logger.info("Connecting to local docker server...")
                self._client = docker.from_env()
                self._client.ping()
            except DockerException as e:
                raise ProcessIOFailed(f"Failed to connect to docker: {e}") from e
        return self._client

    async def _call(self, description: str, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except DockerException as e:
            raise ProcessIOFailed(f"Docker {description} failed: {e}") from e

    async def create(self, image: str, args: List[str], binds: List[str]) -> str:
        container = await self._call(
            "create",
            self.client.containers.create,
            image,
            command=list(args),
            volumes=list(binds),
            detach=True
        )
        logger.debug(f"Created container {container.id[:12]} from {image}: {' '.join(args)}")
        return container.id

    async def start(self, handle: str) -> None:
        await self._call("start", self.client.api.start, handle)

    async def logs(self, handle: str) -> AsyncIterator[LogChunk]:
        stream = await self._call(
            "attach",
            self.client.api.attach,
            handle,
            stdout=True,
            stderr=True,
            stream=True,
            logs=True,
            demux=True
        )
        try:
            while True:
                frame = await self._call("log read", next, stream, None)
                if frame is None:
                    return
                stdout, stderr = frame
                if stdout:
                    yield LogChunk(LogStream.STDOUT, stdout)
                if stderr:
                    yield LogChunk(LogStream.STDERR, stderr)
        finally:
            # Releases the attach socket when the reader stops early
            await self._call("attach close", stream.close)

    async def wait(self, handle: str) -> int:
        result = await self._call("wait", self.client.api.wait, handle)
        error = (result.get("Error") or {}).get("Message")
        if error:
            logger.error(f"Container {handle[:12]} failed: {error}")
        return int(result.get("StatusCode", -1))

    async def remove(self, handle: str) -> None:
        await self._call("remove", self.client.api.remove_container, handle, force=True)
        logger.debug(f"Removed container {handle[:12]}")
