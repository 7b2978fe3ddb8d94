"""
Tests for the dvt-ceremony command line
"""

import os

import pytest
from click.testing import CliRunner

from dvt_ceremony import cli
from dvt_ceremony.errors import CeremonyFailed


class StubNode:
    """Records the configuration the CLI built"""

    instances = []

    def __init__(self, config):
        self.config = config
        StubNode.instances.append(self)

    async def run(self):
        return "container-abc"


class FailingNode(StubNode):
    async def run(self):
        raise CeremonyFailed("lock missing")


@pytest.fixture
def runner(monkeypatch):
    for key in list(os.environ):
        if key.startswith("DVT_CEREMONY_"):
            monkeypatch.delenv(key)
    StubNode.instances = []
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)
    return CliRunner()


class TestRunCommand:
    """Test the run command"""

    def test_options_build_config(self, runner, monkeypatch, tmp_path):
        monkeypatch.setattr(cli, "CeremonyNode", StubNode)
        result = runner.invoke(cli.main, [
            "run", "--position", "2", "--operator-count", "4",
            "--data-dir", str(tmp_path), "--name", "devnet",
            "--nats-servers", "nats://n1:4222", "--receive-timeout", "none",
        ])

        assert result.exit_code == 0, result.output
        assert "container-abc" in result.output
        config = StubNode.instances[0].config
        assert config.position == 2
        assert config.operator_count == 4
        assert config.ceremony_name == "devnet"
        assert config.transport.servers == ["nats://n1:4222"]
        assert config.protocol.receive_timeout is None

    def test_env_used_when_options_absent(self, runner, monkeypatch):
        monkeypatch.setattr(cli, "CeremonyNode", StubNode)
        monkeypatch.setenv("DVT_CEREMONY_POSITION", "1")
        monkeypatch.setenv("DVT_CEREMONY_OPERATOR_COUNT", "2")

        result = runner.invoke(cli.main, ["run"])

        assert result.exit_code == 0, result.output
        assert StubNode.instances[0].config.position == 1

    def test_missing_position_fails(self, runner, monkeypatch):
        monkeypatch.setattr(cli, "CeremonyNode", StubNode)
        result = runner.invoke(cli.main, ["run", "--operator-count", "2"])
        assert result.exit_code == 1
        assert StubNode.instances == []

    def test_ceremony_error_exit_code(self, runner, monkeypatch):
        monkeypatch.setattr(cli, "CeremonyNode", FailingNode)
        result = runner.invoke(cli.main, ["run", "--position", "0", "--operator-count", "1"])
        assert result.exit_code == 1
        assert "lock missing" in result.output


class TestIdentityCommand:
    """Test the identity command"""

    def test_prints_stored_identity(self, runner, tmp_path):
        (tmp_path / ".charon").mkdir()
        (tmp_path / ".charon" / "charon-enr-private-key").write_bytes(b"secret")
        (tmp_path / "enr.pub").write_text("enr:-stored")

        result = runner.invoke(cli.main, ["identity", "--data-dir", str(tmp_path)])

        assert result.exit_code == 0, result.output
        assert result.output.strip() == "enr:-stored"


def test_version(runner):
    result = runner.invoke(cli.main, ["--version"])
    assert result.exit_code == 0
    assert "dvt-ceremony" in result.output
