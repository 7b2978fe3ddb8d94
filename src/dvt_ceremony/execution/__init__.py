"""
Ceremony execution: artifact store, process runs and phase engine
"""

from .artifact_store import ArtifactStore, CeremonyArtifact
from .ceremony_engine import CeremonyExecutionEngine
from .compose import ComposeServiceLauncher
from .line_scanner import LineScanner, prefix_predicate
from .process_run import ProcessRun, ProcessRunState
from .runtime import DockerProcessRuntime, LogChunk, LogStream, ProcessRuntime

__all__ = [
    "ArtifactStore",
    "CeremonyArtifact",
    "CeremonyExecutionEngine",
    "ComposeServiceLauncher",
    "DockerProcessRuntime",
    "LineScanner",
    "LogChunk",
    "LogStream",
    "ProcessRun",
    "ProcessRunState",
    "ProcessRuntime",
    "prefix_predicate",
]
