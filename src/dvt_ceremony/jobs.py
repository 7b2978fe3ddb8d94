"""
Job handlers invoked by the external job scheduler
Each job is one JobHandler implementation registered explicitly by id
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class JobCall(BaseModel):
    """A job invocation observed by the scheduler"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    job_id: int = Field(ge=0, description="Job identifier")
    call_id: int = Field(ge=0, description="Scheduler call identifier")
    service_id: int = Field(default=0, ge=0, description="Service instance identifier")
    args: List[int] = Field(default_factory=list, description="Job arguments")


class JobResult(BaseModel):
    """Result submitted back to the scheduler"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    job_id: int
    call_id: int
    value: int


class JobHandler(ABC):
    """Handles calls for a single job id"""

    job_id: int

    @abstractmethod
    async def handle(self, call: JobCall) -> JobResult:
        """Process one job call"""


class UpdateJobHandler(JobHandler):
    """Update job; acknowledges every call with 0"""

    job_id = 0

    async def handle(self, call: JobCall) -> JobResult:
        logger.info(f"Update job called (call {call.call_id}, args {call.args})")
        return JobResult(job_id=call.job_id, call_id=call.call_id, value=0)


class JobDispatcher:
    """Routes job calls to their registered handler"""

    def __init__(self):
        self._handlers: Dict[int, JobHandler] = {}

    def register(self, handler: JobHandler) -> None:
        if handler.job_id in self._handlers:
            raise ValueError(f"Job {handler.job_id} already has a handler")
        self._handlers[handler.job_id] = handler
        logger.debug(f"Registered {type(handler).__name__} for job {handler.job_id}")

    @property
    def job_ids(self) -> List[int]:
        return sorted(self._handlers)

    async def dispatch(self, call: JobCall) -> JobResult:
        """
        Invoke the handler for a call

        Raises:
            KeyError: If no handler is registered for the call's job id
        """
        handler = self._handlers.get(call.job_id)
        if handler is None:
            raise KeyError(f"No handler registered for job {call.job_id}")
        return await handler.handle(call)
