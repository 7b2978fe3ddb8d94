"""
Tests for the peer readiness monitor
"""

import asyncio

import pytest

from dvt_ceremony.errors import PeerDiscoveryFailed
from dvt_ceremony.federation.peer_readiness import PeerReadinessMonitor


async def bring_up(hub, position):
    transport = hub.transport(position)
    await transport.connect(())
    await transport.announce(position)
    return transport


class TestPeerReadinessMonitor:
    """Test quorum waiting"""

    @pytest.mark.asyncio
    async def test_no_peers_expected(self, hub):
        monitor = PeerReadinessMonitor(hub.transport(0), 0)
        assert await asyncio.wait_for(monitor.wait_for_quorum(), 1.0) == set()

    @pytest.mark.asyncio
    async def test_negative_expected_rejected(self, hub):
        with pytest.raises(ValueError):
            PeerReadinessMonitor(hub.transport(0), -1)

    @pytest.mark.asyncio
    async def test_peers_already_present(self, hub):
        await bring_up(hub, 1)
        await bring_up(hub, 2)
        monitor = PeerReadinessMonitor(hub.transport(0), 2)

        assert await asyncio.wait_for(monitor.wait_for_quorum(), 1.0) == {1, 2}

    @pytest.mark.asyncio
    async def test_waits_for_late_peers(self, hub):
        monitor = PeerReadinessMonitor(hub.transport(0), 2)
        task = asyncio.create_task(monitor.wait_for_quorum())

        await asyncio.sleep(0.01)
        await bring_up(hub, 1)
        await asyncio.sleep(0.01)
        assert not task.done()
        assert monitor.connected_peers == {1}

        await bring_up(hub, 2)
        assert await asyncio.wait_for(task, 1.0) == {1, 2}

    @pytest.mark.asyncio
    async def test_disconnect_before_quorum_uncounted(self, hub):
        monitor = PeerReadinessMonitor(hub.transport(0), 2)
        task = asyncio.create_task(monitor.wait_for_quorum())
        await asyncio.sleep(0.01)

        flaky = await bring_up(hub, 1)
        await asyncio.sleep(0.01)
        await flaky.close()
        await bring_up(hub, 2)
        await asyncio.sleep(0.01)
        assert not task.done()

        await bring_up(hub, 3)
        assert await asyncio.wait_for(task, 1.0) == {2, 3}

    @pytest.mark.asyncio
    async def test_transport_error_fails(self, hub):
        monitor = PeerReadinessMonitor(hub.transport(0), 2)
        task = asyncio.create_task(monitor.wait_for_quorum())
        await asyncio.sleep(0.01)
        await bring_up(hub, 1)
        await asyncio.sleep(0.01)

        hub.fail("gossip layer down")

        with pytest.raises(PeerDiscoveryFailed) as exc_info:
            await asyncio.wait_for(task, 1.0)
        assert exc_info.value.connected == 1
        assert exc_info.value.expected == 2
        assert "gossip layer down" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_closed_before_quorum(self, hub):
        transport = hub.transport(0)
        monitor = PeerReadinessMonitor(transport, 1)
        task = asyncio.create_task(monitor.wait_for_quorum())
        await asyncio.sleep(0.01)
        await transport.close()

        with pytest.raises(PeerDiscoveryFailed):
            await asyncio.wait_for(task, 1.0)

    @pytest.mark.asyncio
    async def test_connect_failure(self, hub):
        transport = hub.transport(0)
        await transport.close()

        with pytest.raises(PeerDiscoveryFailed):
            await PeerReadinessMonitor(transport, 1).wait_for_quorum()
