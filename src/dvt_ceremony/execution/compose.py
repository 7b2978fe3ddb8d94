"""
Long-running service startup through a compose-style CLI
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from ..errors import ProcessIOFailed
from ..reliability import TimeoutCategory, TimeoutError, TimeoutManager

logger = logging.getLogger(__name__)


class ComposeServiceLauncher:
    """Runs `<compose> up -d` then `<compose> ps -q <service>` in a directory"""

    def __init__(
        self,
        compose_command: Sequence[str] = ("docker", "compose"),
        service: str = "charon",
        timeout_manager: Optional[TimeoutManager] = None
    ):
        self.compose_command = list(compose_command)
        self.service = service
        self.timeout_manager = timeout_manager or TimeoutManager()

    async def start(self, directory: Path) -> str:
        """
        Bring the service up and return its container id

        Raises:
            ProcessIOFailed: If a compose invocation fails or no container is running
        """
        await self._run(["up", "-d"], directory)
        output = await self._run(["ps", "-q", self.service], directory)
        container_id = output.strip()
        if not container_id:
            raise ProcessIOFailed(f"Service {self.service} is not running in {directory}")
        return container_id

    async def _run(self, args: List[str], directory: Path) -> str:
        command = self.compose_command + args
        description = " ".join(command)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(directory),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise ProcessIOFailed(f"Failed to run {description}: {e}") from e

        try:
            stdout, stderr = await self.timeout_manager.execute_with_timeout(
                category=TimeoutCategory.SERVICE_STARTUP,
                operation=description,
                coro=process.communicate()
            )
        except TimeoutError as e:
            process.kill()
            await process.wait()
            raise ProcessIOFailed(str(e)) from e

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise ProcessIOFailed(f"{description} exited with code {process.returncode}: {message}")

        return stdout.decode("utf-8", errors="replace")
