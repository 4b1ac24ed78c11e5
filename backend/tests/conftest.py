"""
Shared fixtures: an in-memory network probe standing in for the host OS.

The default fake describes a small home network on 192.168.1.0/24:

    192.168.1.1   gateway, TP-LINK, in the ARP table
    192.168.1.20  Apple laptop, in the ARP table, has a PTR record
    192.168.1.30  stale ARP entry, does not answer ping
    192.168.1.10  Samsung phone, answers ping only
    192.168.1.50  this host (eth0)
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional

import pytest

from lancut.core.config import Settings
from lancut.core.errors import ArpQueryError, MacResolutionError, PermissionDeniedError
from lancut.scanner.engine import DiscoveryEngine
from lancut.scanner.models import InterfaceInfo, InterfaceRecord, NeighborRecord, NeighborState

LOCAL_IP = "192.168.1.50"
LOCAL_MAC = "02:00:00:00:00:50"
GATEWAY_IP = "192.168.1.1"
GATEWAY_MAC = "D0:50:9C:11:22:33"
LAPTOP_IP = "192.168.1.20"
LAPTOP_MAC = "DC:53:60:AA:BB:CC"
PHONE_IP = "192.168.1.10"
PHONE_MAC = "74:D4:DD:01:02:03"
STALE_IP = "192.168.1.30"


class FakeNetworkProbe:
    """Scriptable NetworkProbe that records everything sent through it."""

    def __init__(self):
        self.interfaces = [
            InterfaceRecord(name="lo", is_up=True, kind="loopback", ipv4=[("127.0.0.1", "255.0.0.0")]),
            InterfaceRecord(
                name="eth0",
                is_up=True,
                ipv4=[(LOCAL_IP, "255.255.255.0")],
                gateways=[GATEWAY_IP],
                mac=LOCAL_MAC,
            ),
        ]
        self.neighbors = [
            NeighborRecord(GATEWAY_IP, GATEWAY_MAC, NeighborState.DYNAMIC),
            NeighborRecord(LAPTOP_IP, LAPTOP_MAC, NeighborState.DYNAMIC),
            NeighborRecord(STALE_IP, "AA:AA:AA:AA:AA:30", NeighborState.STALE),
        ]
        self.reachable = {GATEWAY_IP: 1, LAPTOP_IP: 3, PHONE_IP: 4}
        self.macs = {GATEWAY_IP: GATEWAY_MAC, LAPTOP_IP: LAPTOP_MAC, PHONE_IP: PHONE_MAC}
        self.hostnames = {LAPTOP_IP: "macbook.lan.", PHONE_IP: PHONE_IP}
        self.counts: dict[str, int] = {}

        self.fail_arp = False
        self.deny_send = False
        self.hang_sends = False
        self.send_gate: Optional[asyncio.Event] = None
        self.send_error: Optional[Exception] = None
        self.fail_send_at: Optional[int] = None
        self.echo_delay = 0.0

        self.pinged: list[str] = []
        self.arp_replies: list[tuple[str, str, str, str]] = []
        self.send_attempts = 0
        self.bound_interface: Optional[str] = None
        self.in_flight = 0
        self.max_in_flight = 0

    async def query_neighbor_cache(self):
        if self.fail_arp:
            raise ArpQueryError("arp: command not found")
        return list(self.neighbors)

    async def resolve_mac(self, ip):
        if ip not in self.macs:
            raise MacResolutionError(ip)
        return self.macs[ip]

    async def send_arp_reply(self, target_ip, target_mac, claimed_ip, claimed_mac):
        attempt = self.send_attempts
        self.send_attempts += 1
        if self.deny_send:
            raise PermissionDeniedError("raw sockets need root")
        # fail_send_at picks a single attempt (0-based); None fails them all
        if self.send_error is not None and self.fail_send_at in (None, attempt):
            raise self.send_error
        if self.hang_sends:
            await asyncio.sleep(3600)
        if self.send_gate is not None:
            await self.send_gate.wait()
        self.arp_replies.append((target_ip, target_mac, claimed_ip, claimed_mac))

    async def icmp_echo(self, ip, timeout_ms):
        self.pinged.append(ip)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.echo_delay:
                await asyncio.sleep(self.echo_delay)
        finally:
            self.in_flight -= 1
        if ip in self.reachable:
            return True, self.reachable[ip]
        return False, -1

    async def reverse_dns(self, ip, timeout_ms):
        if ip not in self.hostnames:
            raise OSError("host not found")
        return self.hostnames[ip]

    def bind_interface(self, name):
        self.bound_interface = name

    def enumerate_interfaces(self):
        return list(self.interfaces)

    def connection_counts(self):
        return dict(self.counts)


@pytest.fixture
def probe():
    return FakeNetworkProbe()


@pytest.fixture
def settings():
    return Settings(
        BACKGROUND_SCANNING=False,
        PROBE_TIMEOUT_MS=100,
        SPOOF_INTERVAL=0.01,
        SHUTDOWN_UNBLOCK_TIMEOUT=0.2,
    )


@pytest.fixture
def network():
    return InterfaceInfo(
        local_ip=LOCAL_IP,
        subnet_mask="255.255.255.0",
        gateway_ip=GATEWAY_IP,
        local_mac=LOCAL_MAC,
        interface_name="eth0",
    )


@pytest.fixture
async def engine(settings, probe):
    engine = DiscoveryEngine(settings, probe=probe)
    await engine.start()
    yield engine
    await engine.shutdown()


class FakeClock:
    """Manually advanced clock for freshness checks."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now = self.now + delta


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def events():
    """Collects (event_type, data) tuples published on a bus."""
    received = []

    async def callback(event_type, data):
        received.append((event_type, data))

    callback.received = received
    return callback
