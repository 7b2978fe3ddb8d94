"""
Tests for scoped process runs
"""

import logging

import pytest

from dvt_ceremony.errors import ProcessIOFailed
from dvt_ceremony.execution.process_run import ProcessRun, ProcessRunState

from factories import FakeProcessRuntime, FakeScript, stdout


class TestProcessRun:
    """Test run lifecycle and removal"""

    @pytest.mark.asyncio
    async def test_lifecycle(self):
        runtime = FakeProcessRuntime(lambda args, binds: FakeScript(chunks=[stdout(b"hi\n")], exit_code=0))

        async with ProcessRun(runtime, "image:1", ["create", "enr"], ["/data:/opt/charon"]) as run:
            assert run.state == ProcessRunState.CREATED
            await run.start()
            assert run.state == ProcessRunState.RUNNING
            chunks = [chunk async for chunk in run.output()]
            assert await run.wait() == 0
            assert run.state == ProcessRunState.EXITED

        assert chunks == [stdout(b"hi\n")]
        assert run.state == ProcessRunState.REMOVED
        assert runtime.runs[0].image == "image:1"
        assert runtime.runs[0].binds == ["/data:/opt/charon"]
        assert runtime.leaked == []

    @pytest.mark.asyncio
    async def test_start_waiting_for_exit(self):
        runtime = FakeProcessRuntime(lambda args, binds: FakeScript(exit_code=3))
        async with ProcessRun(runtime, "image", ["dkg"], []) as run:
            assert await run.start(wait_for_exit=True) == 3
            assert run.exit_code == 3

    @pytest.mark.asyncio
    async def test_removed_when_body_fails(self):
        runtime = FakeProcessRuntime()
        with pytest.raises(KeyError):
            async with ProcessRun(runtime, "image", ["create", "enr"], []) as run:
                await run.start()
                raise KeyError("boom")

        assert run.state == ProcessRunState.REMOVED
        assert runtime.leaked == []

    @pytest.mark.asyncio
    async def test_removal_error_does_not_mask_original(self, caplog):
        runtime = FakeProcessRuntime(lambda args, binds: FakeScript(fail_remove=True))
        with caplog.at_level(logging.ERROR):
            with pytest.raises(KeyError):
                async with ProcessRun(runtime, "image", ["create", "enr"], []) as run:
                    raise KeyError("boom")

        assert run.state == ProcessRunState.FAILED
        assert any("Failed to remove" in record.getMessage() for record in caplog.records)

    @pytest.mark.asyncio
    async def test_removal_error_raised_on_success_path(self):
        runtime = FakeProcessRuntime(lambda args, binds: FakeScript(fail_remove=True))
        with pytest.raises(ProcessIOFailed):
            async with ProcessRun(runtime, "image", ["create", "enr"], []) as run:
                await run.start(wait_for_exit=True)

    @pytest.mark.asyncio
    async def test_output_requires_started_run(self):
        async with ProcessRun(FakeProcessRuntime(), "image", ["x"], []) as run:
            with pytest.raises(RuntimeError):
                run.output()
            with pytest.raises(RuntimeError):
                await run.wait()
