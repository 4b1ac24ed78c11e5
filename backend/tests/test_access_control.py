"""Tests for per-device blocking through forged ARP replies."""

import asyncio

import pytest

from lancut.core.errors import (
    ArpSendError,
    GatewayBlockError,
    InterfaceNotFoundError,
    MacResolutionError,
    PermissionDeniedError,
    SelfBlockError,
)
from lancut.scanner.access_control import AccessController, BlockState
from lancut.scanner.events import DEVICE_BLOCKED, DEVICE_UNBLOCKED, DEVICE_UPDATED, EventBus
from lancut.scanner.registry import DeviceRegistry

LOCAL_MAC = "02:00:00:00:00:50"
GATEWAY = ("192.168.1.1", "D0:50:9C:11:22:33")
LAPTOP = ("192.168.1.20", "DC:53:60:AA:BB:CC")


@pytest.fixture
async def registry(network, events):
    bus = EventBus()
    bus.register_callback(events)
    registry = DeviceRegistry(bus=bus)
    registry.set_network(network)
    await registry.upsert(*GATEWAY)
    await registry.upsert(*LAPTOP)
    return registry


@pytest.fixture
async def access(registry, probe, settings):
    controller = AccessController(registry, probe, settings)
    yield controller
    await controller.shutdown()


def poison_round(target, gateway):
    return [
        (target[0], target[1], gateway[0], LOCAL_MAC),
        (gateway[0], gateway[1], target[0], LOCAL_MAC),
    ]


def restore_round(target, gateway):
    return [
        (target[0], target[1], gateway[0], gateway[1]),
        (gateway[0], gateway[1], target[0], target[1]),
    ]


# ─── Block ───────────────────────────────────────────────────────────────────


class TestBlock:

    async def test_block(self, access, registry, probe, events):
        await access.block("192.168.1.20")

        assert access.is_blocked("192.168.1.20")
        assert access.blocked_ips == ["192.168.1.20"]
        assert (await registry.get("192.168.1.20")).is_blocked is True
        assert probe.arp_replies[:2] == poison_round(LAPTOP, GATEWAY)
        assert (DEVICE_BLOCKED, {"ip": "192.168.1.20", "mac": LAPTOP[1]}) in events.received

        session = access.session("192.168.1.20")
        assert session.state == BlockState.ACTIVE
        assert session.gateway_mac == GATEWAY[1]

    async def test_spoofing_repeats(self, access, probe):
        await access.block("192.168.1.20")
        await asyncio.sleep(0.1)
        assert access.session("192.168.1.20").rounds >= 3
        assert set(probe.arp_replies) == set(poison_round(LAPTOP, GATEWAY))

    async def test_block_twice_is_noop(self, access):
        await access.block("192.168.1.20")
        task = access.session("192.168.1.20").task
        await access.block("192.168.1.20")
        assert access.session("192.168.1.20").task is task

    async def test_gateway_guard(self, access, registry, probe):
        with pytest.raises(GatewayBlockError):
            await access.block("192.168.1.1")

        assert probe.arp_replies == []
        assert access.blocked_ips == []
        assert (await registry.get("192.168.1.1")).is_blocked is False

    async def test_mac_resolution_failure(self, access, registry, probe):
        del probe.macs["192.168.1.20"]

        with pytest.raises(MacResolutionError):
            await access.block("192.168.1.20")

        assert access.session("192.168.1.20") is None
        assert probe.arp_replies == []
        assert (await registry.get("192.168.1.20")).is_blocked is False

    async def test_gateway_mac_failure(self, access, probe):
        del probe.macs["192.168.1.1"]
        with pytest.raises(MacResolutionError):
            await access.block("192.168.1.20")
        assert access.blocked_ips == []

    async def test_permission_denied_rolls_back(self, access, registry, probe):
        probe.deny_send = True

        with pytest.raises(PermissionDeniedError):
            await access.block("192.168.1.20")

        assert access.session("192.168.1.20") is None
        assert (await registry.get("192.168.1.20")).is_blocked is False

    async def test_send_failure_rolls_back(self, access, registry, probe, events):
        probe.send_error = OSError("No such device")

        with pytest.raises(ArpSendError):
            await access.block("192.168.1.20")

        assert access.session("192.168.1.20") is None
        assert access.is_blocked("192.168.1.20") is False
        assert (await registry.get("192.168.1.20")).is_blocked is False
        assert DEVICE_BLOCKED not in [event for event, _ in events.received]

        probe.send_error = None
        await access.block("192.168.1.20")
        assert access.is_blocked("192.168.1.20")
        assert access.session("192.168.1.20").task is not None

    async def test_second_reply_failure_heals_target(self, access, registry, probe):
        probe.send_error = OSError("Network is down")
        probe.fail_send_at = 1

        with pytest.raises(ArpSendError):
            await access.block("192.168.1.20")

        assert probe.arp_replies == poison_round(LAPTOP, GATEWAY)[:1] + restore_round(LAPTOP, GATEWAY)
        assert access.session("192.168.1.20") is None
        assert (await registry.get("192.168.1.20")).is_blocked is False

    async def test_self_guard(self, access, registry, probe):
        await registry.upsert("192.168.1.50", LOCAL_MAC)

        with pytest.raises(SelfBlockError):
            await access.block("192.168.1.50")

        assert probe.arp_replies == []
        assert access.blocked_ips == []

    async def test_unknown_network(self, registry, probe, settings):
        registry.set_network(None)
        controller = AccessController(registry, probe, settings)
        with pytest.raises(InterfaceNotFoundError):
            await controller.block("192.168.1.20")

    async def test_rediscovered_device_stays_blocked(self, access, registry):
        await access.block("192.168.1.20")
        await registry.remove("192.168.1.20")
        device, _ = await registry.upsert(*LAPTOP)
        assert device.is_blocked is True


# ─── Unblock ─────────────────────────────────────────────────────────────────


class TestUnblock:

    async def test_unblock_sends_corrective_replies(self, access, registry, probe, events):
        await access.block("192.168.1.20")
        session = access.session("192.168.1.20")

        await access.unblock("192.168.1.20")

        assert probe.arp_replies[-2:] == restore_round(LAPTOP, GATEWAY)
        assert access.session("192.168.1.20") is None
        assert session.state == BlockState.STOPPED
        assert session.task.done()
        assert (await registry.get("192.168.1.20")).is_blocked is False
        assert events.received[-1][0] == DEVICE_UNBLOCKED

    async def test_no_spoofing_after_unblock(self, access, probe):
        await access.block("192.168.1.20")
        await access.unblock("192.168.1.20")
        sent = len(probe.arp_replies)
        await asyncio.sleep(0.05)
        assert len(probe.arp_replies) == sent

    async def test_unblock_during_first_round(self, access, registry, probe, events):
        probe.send_gate = asyncio.Event()
        blocking = asyncio.create_task(access.block("192.168.1.20"))
        while probe.send_attempts == 0:
            await asyncio.sleep(0)

        unblocking = asyncio.create_task(access.unblock("192.168.1.20"))
        await asyncio.sleep(0)
        probe.send_gate.set()
        await asyncio.gather(blocking, unblocking)

        assert probe.arp_replies[-2:] == restore_round(LAPTOP, GATEWAY)
        assert access.session("192.168.1.20") is None
        assert access.is_blocked("192.168.1.20") is False
        assert (await registry.get("192.168.1.20")).is_blocked is False
        assert DEVICE_BLOCKED not in [event for event, _ in events.received]

        sent = len(probe.arp_replies)
        await asyncio.sleep(0.05)
        assert len(probe.arp_replies) == sent

    async def test_unblock_while_block_is_reported(self, access, registry, probe, events):
        # Hold the first "device is blocked" update until unblock has run
        reported = asyncio.Event()
        release = asyncio.Event()

        async def slow_subscriber(event_type, data):
            if event_type == DEVICE_UPDATED and not reported.is_set():
                reported.set()
                await release.wait()

        access.bus.register_callback(slow_subscriber)
        blocking = asyncio.create_task(access.block("192.168.1.20"))
        await reported.wait()

        await access.unblock("192.168.1.20")
        release.set()
        await blocking

        assert probe.arp_replies[-2:] == restore_round(LAPTOP, GATEWAY)
        assert access.session("192.168.1.20") is None
        assert (await registry.get("192.168.1.20")).is_blocked is False
        assert DEVICE_BLOCKED not in [event for event, _ in events.received]

        sent = len(probe.arp_replies)
        await asyncio.sleep(0.05)
        assert len(probe.arp_replies) == sent

    async def test_unblock_not_blocked_is_noop(self, access, probe):
        await access.unblock("192.168.1.20")
        assert probe.arp_replies == []

    async def test_restore_failure_still_unblocks(self, access, registry, probe):
        await access.block("192.168.1.20")
        probe.deny_send = True

        await access.unblock("192.168.1.20")

        assert access.blocked_ips == []
        assert (await registry.get("192.168.1.20")).is_blocked is False


# ─── Shutdown ────────────────────────────────────────────────────────────────


class TestShutdown:

    async def test_shutdown_unblocks_everything(self, registry, probe, settings):
        await registry.upsert("192.168.1.10", "74:D4:DD:01:02:03")
        controller = AccessController(registry, probe, settings)
        await controller.block("192.168.1.20")
        await controller.block("192.168.1.10")
        tasks = [controller.session(ip).task for ip in controller.blocked_ips]

        await controller.shutdown()

        assert controller.blocked_ips == []
        assert all(task.done() for task in tasks)
        assert not any(d.is_blocked for d in await registry.list_devices())

    async def test_shutdown_is_bounded(self, registry, probe, settings):
        controller = AccessController(registry, probe, settings)
        await controller.block("192.168.1.20")
        task = controller.session("192.168.1.20").task
        probe.hang_sends = True

        await asyncio.wait_for(controller.shutdown(), timeout=2)

        assert controller.blocked_ips == []
        assert controller.session("192.168.1.20") is None
        await asyncio.sleep(0)
        assert task.done()
        assert (await registry.get("192.168.1.20")).is_blocked is False
