"""
Tests for the ceremony execution engine phases
"""

import json

import pytest

from dvt_ceremony.errors import (
    ArtifactMissing,
    CeremonyFailed,
    ConfigAuthoringFailed,
    IdentityGenerationFailed,
)
from dvt_ceremony.execution.artifact_store import CeremonyArtifact
from dvt_ceremony.execution.ceremony_engine import CeremonyExecutionEngine
from dvt_ceremony.federation.models import CeremonyParams

from factories import CharonSimulator, FakeProcessRuntime, FakeScript, stderr, stdout


def seed_identity(store, identity="enr:-stored"):
    store.write(CeremonyArtifact.IDENTITY_KEY, b"secret")
    store.write(CeremonyArtifact.IDENTITY_PUBLIC, identity.encode())


class TestArtifactStore:
    """Test the file-backed artifact store"""

    def test_paths(self, store):
        assert store.path(CeremonyArtifact.CONFIG_DEFINITION) == store.data_dir / ".charon" / "cluster-definition.json"
        assert store.path(CeremonyArtifact.IDENTITY_PUBLIC) == store.data_dir / "enr.pub"

    def test_write_read_exists(self, store):
        assert not store.exists(CeremonyArtifact.CEREMONY_LOCK)
        store.write(CeremonyArtifact.CEREMONY_LOCK, b"{}")
        assert store.exists(CeremonyArtifact.CEREMONY_LOCK)
        assert store.read(CeremonyArtifact.CEREMONY_LOCK) == b"{}"

    def test_read_missing(self, store):
        with pytest.raises(ArtifactMissing) as exc_info:
            store.read(CeremonyArtifact.CONFIG_DEFINITION)
        assert exc_info.value.artifact == "CONFIG_DEFINITION"


class TestIdentityPhase:
    """Test identity generation"""

    @pytest.mark.asyncio
    async def test_generates_and_persists_identity(self, engine, runtime, store, node_config):
        identity = await engine.identity()

        assert identity == "enr:-leader"
        assert store.read(CeremonyArtifact.IDENTITY_PUBLIC) == b"enr:-leader"
        assert runtime.commands == [["create", "enr"]]
        assert runtime.runs[0].image == node_config.image
        assert runtime.runs[0].binds == [f"{store.data_dir.resolve()}:/opt/charon"]
        assert runtime.leaked == []

    @pytest.mark.asyncio
    async def test_existing_identity_skips_process(self, engine, runtime, store):
        seed_identity(store)
        assert await engine.identity() == "enr:-stored"
        assert runtime.runs == []

    @pytest.mark.asyncio
    async def test_identity_cached(self, engine, runtime):
        await engine.identity()
        await engine.identity()
        assert len(runtime.runs) == 1

    @pytest.mark.asyncio
    async def test_public_without_key_regenerates(self, engine, runtime, store):
        store.write(CeremonyArtifact.IDENTITY_PUBLIC, b"enr:-orphan")
        assert await engine.identity() == "enr:-leader"
        assert len(runtime.runs) == 1

    @pytest.mark.asyncio
    async def test_no_identity_line_fails_and_removes_run(self, store, node_config, launcher):
        runtime = FakeProcessRuntime(lambda args, binds: FakeScript(
            chunks=[stdout(b"starting\n"), stderr(b"enr:-on-stderr\n"), stdout(b"done\n")]
        ))
        engine = CeremonyExecutionEngine(runtime, store, node_config, launcher)

        with pytest.raises(IdentityGenerationFailed):
            await engine.identity()

        assert len(runtime.runs) == 1
        assert runtime.leaked == []
        assert not store.exists(CeremonyArtifact.IDENTITY_PUBLIC)

    @pytest.mark.asyncio
    async def test_output_stream_closed_after_match(self, engine, runtime):
        await engine.identity()
        assert runtime.runs[0].logs_closed


class TestConfigAuthoringPhase:
    """Test configuration authoring"""

    @pytest.mark.asyncio
    async def test_authors_definition(self, engine, runtime, store):
        params = CeremonyParams(validator_count=4)
        config = await engine.author_config(["enr:-a", "enr:-b"], params)

        assert config.identities == ("enr:-leader", "enr:-a", "enr:-b")
        assert config.required_participants == 3
        assert config.is_complete
        assert json.loads(config.definition)["operators"] == ["enr:-leader", "enr:-a", "enr:-b"]

        args = runtime.commands[-1]
        assert args[:2] == ["create", "dkg"]
        assert args[args.index("--name") + 1] == "Example"
        assert args[args.index("--num-validators") + 1] == "4"
        assert args[args.index("--withdrawal-addresses") + 1] == "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
        assert args[args.index("--operator-enrs") + 1] == "enr:-leader,enr:-a,enr:-b"
        assert runtime.leaked == []

    @pytest.mark.asyncio
    async def test_second_call_runs_nothing(self, engine, runtime):
        first = await engine.author_config(["enr:-a"])
        runs_after_first = len(runtime.runs)

        second = await engine.author_config(["enr:-a"])

        assert len(runtime.runs) == runs_after_first
        assert second.definition == first.definition
        assert await engine.fetch_config() == first.definition.encode("utf-8")

    @pytest.mark.asyncio
    async def test_existing_definition_runs_nothing(self, engine, runtime, store):
        seed_identity(store)
        store.write(CeremonyArtifact.CONFIG_DEFINITION, b'{"preexisting":true}')

        config = await engine.author_config(["enr:-a"])

        assert runtime.runs == []
        assert config.definition == '{"preexisting":true}'

    @pytest.mark.asyncio
    async def test_non_zero_exit_fails(self, store, node_config, launcher):
        seed_identity(store)
        runtime = FakeProcessRuntime(lambda args, binds: FakeScript(exit_code=1))
        engine = CeremonyExecutionEngine(runtime, store, node_config, launcher)

        with pytest.raises(ConfigAuthoringFailed):
            await engine.author_config(["enr:-a"])
        assert runtime.leaked == []

    @pytest.mark.asyncio
    async def test_missing_artifact_after_run_fails(self, store, node_config, launcher):
        seed_identity(store)
        runtime = FakeProcessRuntime(lambda args, binds: FakeScript(exit_code=0))
        engine = CeremonyExecutionEngine(runtime, store, node_config, launcher)

        with pytest.raises(ConfigAuthoringFailed):
            await engine.author_config(["enr:-a"])

    @pytest.mark.asyncio
    async def test_blank_peer_identity_fails_before_running(self, store, node_config, launcher):
        seed_identity(store)
        runtime = FakeProcessRuntime()
        engine = CeremonyExecutionEngine(runtime, store, node_config, launcher)

        with pytest.raises(ConfigAuthoringFailed):
            await engine.author_config(["enr:-a", " "])
        assert runtime.runs == []

    @pytest.mark.asyncio
    async def test_adopt_overwrites(self, engine, store):
        store.write(CeremonyArtifact.CONFIG_DEFINITION, b"old")
        await engine.adopt_config(b"new")
        assert await engine.fetch_config() == b"new"

    @pytest.mark.asyncio
    async def test_fetch_missing(self, engine):
        with pytest.raises(ArtifactMissing):
            await engine.fetch_config()


class TestCeremonyPhase:
    """Test ceremony execution and service startup"""

    @pytest.mark.asyncio
    async def test_runs_ceremony(self, engine, runtime, store):
        await engine.run_ceremony()
        assert runtime.commands == [["dkg", "--publish"]]
        assert store.exists(CeremonyArtifact.CEREMONY_LOCK)
        assert runtime.leaked == []

    @pytest.mark.asyncio
    async def test_existing_lock_runs_nothing(self, engine, runtime, store):
        store.write(CeremonyArtifact.CEREMONY_LOCK, b"{}")
        await engine.run_ceremony()
        assert runtime.runs == []

    @pytest.mark.asyncio
    async def test_missing_lock_is_fatal(self, store, node_config, launcher):
        runtime = FakeProcessRuntime(CharonSimulator(write_lock=False))
        engine = CeremonyExecutionEngine(runtime, store, node_config, launcher)

        with pytest.raises(CeremonyFailed):
            await engine.run_ceremony()
        assert len(runtime.runs) == 1
        assert runtime.leaked == []

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_fatal(self, store, node_config, launcher):
        runtime = FakeProcessRuntime(CharonSimulator(dkg_exit_code=2))
        engine = CeremonyExecutionEngine(runtime, store, node_config, launcher)

        with pytest.raises(CeremonyFailed):
            await engine.run_ceremony()

    @pytest.mark.asyncio
    async def test_phases_never_touch_lock_unasked(self, engine, runtime, store):
        await engine.identity()
        await engine.author_config([])
        assert not store.exists(CeremonyArtifact.CEREMONY_LOCK)
        assert ["dkg", "--publish"] not in runtime.commands

    @pytest.mark.asyncio
    async def test_start_service_always_invoked(self, engine, launcher, store):
        assert await engine.start_service() == "container-1"
        assert await engine.start_service() == "container-1"
        assert launcher.started == [store.data_dir, store.data_dir]
