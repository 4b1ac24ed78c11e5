"""Tests for the OS-backed probe pieces that need no privileges."""

from types import SimpleNamespace

import psutil
import pytest
from scapy.all import ARP, Ether

from lancut.core.errors import ArpSendError, PermissionDeniedError
from lancut.scanner import system_probe
from lancut.scanner.system_probe import RTT_PATTERN, SystemNetworkProbe


@pytest.fixture
def system():
    return SystemNetworkProbe()


class TestPingCommand:

    def test_linux(self, system, monkeypatch):
        monkeypatch.setattr(system_probe.sys, "platform", "linux")
        assert system._ping_command("192.168.1.10", 500) == ["ping", "-c", "1", "-W", "1", "192.168.1.10"]
        assert system._ping_command("192.168.1.10", 2500)[4] == "3"

    def test_macos(self, system, monkeypatch):
        monkeypatch.setattr(system_probe.sys, "platform", "darwin")
        assert system._ping_command("192.168.1.10", 500) == ["ping", "-c", "1", "-W", "500", "192.168.1.10"]

    def test_windows(self, system, monkeypatch):
        monkeypatch.setattr(system_probe.sys, "platform", "win32")
        assert system._ping_command("192.168.1.10", 500) == ["ping", "-n", "1", "-w", "500", "192.168.1.10"]

    @pytest.mark.parametrize("output,rtt", [
        ("64 bytes from 192.168.1.1: icmp_seq=1 ttl=64 time=1.84 ms", "1.84"),
        ("Reply from 192.168.1.1: bytes=32 time<1ms TTL=64", "1"),
        ("Reply from 192.168.1.1: bytes=32 time=12ms TTL=64", "12"),
    ])
    def test_rtt_pattern(self, output, rtt):
        assert RTT_PATTERN.search(output).group(1) == rtt


class TestInterfaceKind:

    @pytest.mark.parametrize("name,flags,ipv4,kind", [
        ("lo", "up,loopback,running", [("127.0.0.1", "255.0.0.0")], "loopback"),
        ("Loopback Pseudo-Interface 1", "", [], "loopback"),
        ("tun0", "up,pointopoint,running", [("10.8.0.2", "255.255.255.0")], "tunnel"),
        ("wg0", "", [("10.9.0.2", "255.255.255.0")], "tunnel"),
        ("utun3", "", [], "tunnel"),
        ("wlan0", "up,broadcast,running", [("192.168.1.50", "255.255.255.0")], "wireless"),
        ("Wi-Fi", "", [("192.168.1.50", "255.255.255.0")], "wireless"),
        ("eth0", "up,broadcast,running", [("192.168.1.50", "255.255.255.0")], "ethernet"),
        ("en0", "up,broadcast,running", [("192.168.1.50", "255.255.255.0")], "ethernet"),
    ])
    def test_kind(self, system, name, flags, ipv4, kind):
        assert system._interface_kind(name, SimpleNamespace(flags=flags), ipv4) == kind

    def test_missing_stats(self, system):
        assert system._interface_kind("eth0", None, []) == "ethernet"


class TestArpReply:

    def test_forged_reply_fields(self, system):
        packet = system._build_arp_reply(
            "192.168.1.20", "dc:53:60:aa:bb:cc", "192.168.1.1", "02:00:00:00:00:50",
        )
        assert packet[Ether].dst == "dc:53:60:aa:bb:cc"
        assert packet[Ether].src == "02:00:00:00:00:50"
        assert packet[ARP].op == 2
        assert packet[ARP].pdst == "192.168.1.20"
        assert packet[ARP].psrc == "192.168.1.1"
        assert packet[ARP].hwsrc == "02:00:00:00:00:50"

    async def test_sent_on_bound_interface(self, system, monkeypatch):
        sent = []
        monkeypatch.setattr(system_probe, "sendp", lambda packet, iface, verbose: sent.append(iface))

        system.bind_interface("eth0")
        await system.send_arp_reply("192.168.1.20", "DC:53:60:AA:BB:CC", "192.168.1.1", "02:00:00:00:00:50")

        assert sent == ["eth0"]

    def test_configured_interface_kept_for_empty_name(self):
        system = SystemNetworkProbe(interface="en0")
        system.bind_interface("")
        assert system.interface == "en0"

    async def test_send_errors(self, system, monkeypatch):
        def no_device(packet, iface, verbose):
            raise OSError(19, "No such device")

        monkeypatch.setattr(system_probe, "sendp", no_device)
        with pytest.raises(ArpSendError):
            await system.send_arp_reply("192.168.1.20", "DC:53:60:AA:BB:CC", "192.168.1.1", "02:00:00:00:00:50")

        def denied(packet, iface, verbose):
            raise PermissionError(1, "Operation not permitted")

        monkeypatch.setattr(system_probe, "sendp", denied)
        with pytest.raises(PermissionDeniedError):
            await system.send_arp_reply("192.168.1.20", "DC:53:60:AA:BB:CC", "192.168.1.1", "02:00:00:00:00:50")


class TestConnectionCounts:

    def test_counts_per_peer(self, system, monkeypatch):
        def addr(ip):
            return SimpleNamespace(ip=ip, port=443)

        connections = [
            SimpleNamespace(laddr=addr("192.168.1.50"), raddr=addr("192.168.1.20")),
            SimpleNamespace(laddr=addr("192.168.1.50"), raddr=addr("192.168.1.20")),
            SimpleNamespace(laddr=addr("0.0.0.0"), raddr=()),
        ]
        monkeypatch.setattr(system_probe.psutil, "net_connections", lambda kind: connections)

        counts = system.connection_counts()
        assert counts["192.168.1.20"] == 2
        assert counts["192.168.1.50"] == 2

    def test_access_denied(self, system, monkeypatch):
        def denied(kind):
            raise psutil.AccessDenied()

        monkeypatch.setattr(system_probe.psutil, "net_connections", denied)
        assert system.connection_counts() == {}
