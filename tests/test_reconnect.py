"""
Tests for reopening serial links after read errors.
"""

import asyncio

import pytest

from prize_vending.core.interfaces import Endpoint
from prize_vending.core.scheduling import RetryPolicy
from prize_vending.devices.vending import LinkSupervisor, VendingProtocolClient

from conftest import FakeLink, controller, response_frame


async def settle(rounds=20):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def vending(scheduler):
    link = FakeLink(endpoints=[Endpoint(path="/dev/ttyUSB0", manufacturer="FTDI")])
    link.responder = controller()
    client = VendingProtocolClient(link, scheduler)
    supervisor = LinkSupervisor(
        link,
        scheduler,
        RetryPolicy(),
        9600,
        on_reconnected=client.initialize,
        name=client.name,
    )
    return link, client, supervisor


async def bring_up(link, client, supervisor):
    await link.open("/dev/ttyUSB0", 9600)
    supervisor.remember("/dev/ttyUSB0")
    assert await client.initialize() is True
    link.opened.clear()
    link.written.clear()


class TestLinkSupervisor:
    """Tests for LinkSupervisor."""

    @pytest.mark.asyncio
    async def test_read_error_reopens_and_reinitializes(self, vending, scheduler):
        link, client, supervisor = vending
        await bring_up(link, client, supervisor)

        link.fail(OSError("device disconnected"))
        assert client.is_initialized is False
        assert supervisor.is_reconnecting is True

        await settle()

        assert supervisor.is_reconnecting is False
        assert link.opened == ["/dev/ttyUSB0"]
        assert client.is_initialized is True
        assert scheduler.sleeps == [0.5]
        assert supervisor.attempts == 1

    @pytest.mark.asyncio
    async def test_waits_for_device_to_reappear(self, vending, scheduler):
        """Test a device that re-enumerates under a new name is found again."""
        link, client, supervisor = vending
        await bring_up(link, client, supervisor)
        link.endpoints = []

        link.fail(OSError("device disconnected"))
        await settle(5)

        assert supervisor.is_reconnecting is True
        assert link.opened == []
        assert scheduler.sleeps[:3] == [0.5, 1.0, 2.0]
        assert scheduler.sleeps[3:] == [2.0] * (len(scheduler.sleeps) - 3)

        link.endpoints = [
            Endpoint(path="/dev/ttyS0"),
            Endpoint(path="/dev/ttyUSB1", manufacturer="FTDI"),
        ]
        await settle()

        assert supervisor.is_reconnecting is False
        assert link.opened == ["/dev/ttyUSB1"]
        assert client.is_initialized is True

    @pytest.mark.asyncio
    async def test_failed_self_check_closes_and_retries(self, vending):
        link, client, supervisor = vending
        await bring_up(link, client, supervisor)
        link.responder = lambda frame: response_frame(0xA1, 0, error=72)

        link.fail(OSError("device disconnected"))
        await settle(3)

        assert client.is_initialized is False
        assert supervisor.is_reconnecting is True

        link.responder = controller()
        await settle()

        assert client.is_initialized is True
        assert link.is_open is True
        assert len(link.opened) >= 2

    @pytest.mark.asyncio
    async def test_fixed_path_reopened(self, scheduler):
        """Test a link without auto-selection only retries its configured path."""
        link = FakeLink(
            endpoints=[Endpoint(path="/dev/ttyUSB0", manufacturer="FTDI")],
            is_open=True,
        )
        supervisor = LinkSupervisor(
            link,
            scheduler,
            RetryPolicy(),
            9600,
            preferred_path="/dev/ttyS3",
            auto_select=False,
            name="hold_sensor",
        )

        link.fail(OSError("device disconnected"))
        await settle()

        assert link.opened == ["/dev/ttyS3"]
        assert link.is_open is True
        assert supervisor.is_reconnecting is False

    @pytest.mark.asyncio
    async def test_repeated_errors_start_one_run(self, vending):
        link, client, supervisor = vending
        await bring_up(link, client, supervisor)
        link.endpoints = []

        link.fail(OSError("device disconnected"))
        first = supervisor._task
        link.fail(OSError("device disconnected"))

        assert supervisor._task is first
        await supervisor.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_reconnect(self, vending):
        link, client, supervisor = vending
        await bring_up(link, client, supervisor)
        link.endpoints = []

        link.fail(OSError("device disconnected"))
        await settle(3)
        await supervisor.stop()

        assert supervisor.is_reconnecting is False
        link.endpoints = [Endpoint(path="/dev/ttyUSB0", manufacturer="FTDI")]
        await settle()
        assert link.opened == []
