"""
Pytest configuration and fixtures for dvt-ceremony
"""

import faulthandler
import os

import pytest

from dvt_ceremony.config import NodeConfig, ProtocolConfig
from dvt_ceremony.execution.artifact_store import ArtifactStore
from dvt_ceremony.execution.ceremony_engine import CeremonyExecutionEngine
from dvt_ceremony.transport.loopback import LoopbackHub

from factories import CharonSimulator, FakeProcessRuntime, FakeServiceLauncher


def pytest_sessionstart(session):
    """Add watchdog for hanging tests when env flag is set"""
    if os.environ.get("DVT_CEREMONY_PYTEST_WATCHDOG") == "1":
        faulthandler.enable()
        faulthandler.dump_traceback_later(30, repeat=True)


@pytest.fixture
def node_config(tmp_path) -> NodeConfig:
    """Single-operator leader configuration rooted in a temp data dir"""
    return NodeConfig(
        position=0,
        operator_count=1,
        data_dir=tmp_path / "node",
        protocol=ProtocolConfig(receive_timeout=None)
    )


@pytest.fixture
def store(node_config) -> ArtifactStore:
    return ArtifactStore(node_config.ensure_data_dir())


@pytest.fixture
def simulator() -> CharonSimulator:
    return CharonSimulator(identity="enr:-leader")


@pytest.fixture
def runtime(simulator) -> FakeProcessRuntime:
    return FakeProcessRuntime(simulator)


@pytest.fixture
def launcher() -> FakeServiceLauncher:
    return FakeServiceLauncher()


@pytest.fixture
def engine(runtime, store, node_config, launcher) -> CeremonyExecutionEngine:
    return CeremonyExecutionEngine(runtime, store, node_config, launcher)


@pytest.fixture
def hub() -> LoopbackHub:
    return LoopbackHub(ceremony="Example")


@pytest.fixture
def fast_protocol() -> ProtocolConfig:
    """Short receive deadlines with no resend backoff"""
    return ProtocolConfig(
        receive_timeout=0.05,
        max_receive_attempts=3,
        resend_base_delay=0.0,
        resend_max_delay=0.0
    )
