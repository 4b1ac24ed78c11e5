import asyncio
import functools
import logging
import math
import re
import shutil
import socket
import sys
from collections import Counter
from typing import Optional

import psutil
from scapy.all import ARP, Ether, conf, getmacbyip, sendp

from ..core.errors import (
    ArpQueryError,
    ArpSendError,
    HostnameResolutionError,
    MacResolutionError,
    PermissionDeniedError,
    ProbeTimeout,
)
from .models import InterfaceRecord, NeighborRecord
from .neighbor_cache import parse_bsd_arp, parse_ip_neigh, parse_windows_arp
from .utils import is_usable_mac, normalize_mac

logger = logging.getLogger(__name__)

# Round trip reported by ping: "time=1.23 ms", "time<1ms"
RTT_PATTERN = re.compile(r"time[=<]\s*([\d.]+)\s*ms", re.IGNORECASE)

TUNNEL_PREFIXES = ("tun", "tap", "wg", "utun", "ppp", "ipsec", "gif", "stf", "zt", "tailscale")
WIRELESS_PREFIXES = ("wl", "wlan", "wi-fi", "wifi")
LOOPBACK_NAMES = ("lo", "lo0", "loopback pseudo-interface 1")


class SystemNetworkProbe:
    """Network primitives backed by the host OS: system tools, scapy and psutil."""

    def __init__(self, interface: Optional[str] = None):
        self.interface = interface
        conf.verb = 0  # Disable scapy verbose output

    def bind_interface(self, name: str):
        """Send raw frames on the interface the engine scans from."""
        if name and name != self.interface:
            logger.debug("Raw frames will go out on %s", name)
            self.interface = name

    async def _run(self, *args: str, timeout: Optional[float] = None) -> tuple[int, str]:
        """Run a command and return (returncode, stdout). The process is killed on timeout."""
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise
        return process.returncode, stdout.decode(errors="ignore")

    # Neighbor cache

    async def query_neighbor_cache(self) -> list[NeighborRecord]:
        try:
            if sys.platform == "win32":
                code, output = await self._run("arp", "-a")
                parser = parse_windows_arp
            elif sys.platform.startswith("linux") and shutil.which("ip"):
                code, output = await self._run("ip", "-4", "neigh", "show")
                parser = parse_ip_neigh
            else:
                code, output = await self._run("arp", "-an")
                parser = parse_bsd_arp
        except OSError as e:
            raise ArpQueryError(f"neighbor table query failed: {e}") from e

        if code != 0:
            raise ArpQueryError(f"neighbor table query exited with status {code}")
        return parser(output)

    async def resolve_mac(self, ip: str) -> str:
        """Neighbor cache first (no privileges needed), then an ARP request through scapy."""
        try:
            for record in await self.query_neighbor_cache():
                if record.ip == ip and record.state.is_resolved and is_usable_mac(record.mac):
                    return record.mac
        except ArpQueryError as e:
            logger.debug("Cache lookup for %s failed: %s", ip, e)

        loop = asyncio.get_running_loop()
        try:
            mac = await loop.run_in_executor(None, getmacbyip, ip)
        except PermissionError as e:
            raise MacResolutionError(ip, "permission denied") from e
        except OSError as e:
            raise MacResolutionError(ip, str(e)) from e

        mac = normalize_mac(mac)
        if not is_usable_mac(mac):
            raise MacResolutionError(ip)
        return mac

    # ARP replies

    def _build_arp_reply(self, target_ip: str, target_mac: str, claimed_ip: str, claimed_mac: str):
        return Ether(dst=target_mac, src=claimed_mac) / ARP(
            op=2,
            pdst=target_ip,
            hwdst=target_mac,
            psrc=claimed_ip,
            hwsrc=claimed_mac,
        )

    async def send_arp_reply(self, target_ip: str, target_mac: str, claimed_ip: str, claimed_mac: str) -> None:
        packet = self._build_arp_reply(target_ip, target_mac.lower(), claimed_ip, claimed_mac.lower())
        loop = asyncio.get_running_loop()
        send = functools.partial(sendp, packet, iface=self.interface, verbose=False)
        try:
            await loop.run_in_executor(None, send)
        except PermissionError as e:
            raise PermissionDeniedError("Sending raw ARP frames requires administrator/root privileges") from e
        except OSError as e:
            raise ArpSendError(f"sendp on {self.interface or conf.iface} failed: {e}") from e

    # ICMP

    def _ping_command(self, ip: str, timeout_ms: int) -> list[str]:
        if sys.platform == "win32":
            return ["ping", "-n", "1", "-w", str(timeout_ms), ip]
        if sys.platform == "darwin":
            return ["ping", "-c", "1", "-W", str(timeout_ms), ip]
        # iputils takes whole seconds; the asyncio timeout enforces the real bound
        return ["ping", "-c", "1", "-W", str(max(1, math.ceil(timeout_ms / 1000))), ip]

    async def icmp_echo(self, ip: str, timeout_ms: int) -> tuple[bool, int]:
        try:
            code, output = await self._run(*self._ping_command(ip, timeout_ms), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise ProbeTimeout(f"{ip} did not answer within {timeout_ms} ms") from e

        if code != 0:
            return False, -1
        # Windows exits 0 on "Destination host unreachable" relayed by the gateway
        if sys.platform == "win32" and "TTL=" not in output.upper():
            return False, -1

        match = RTT_PATTERN.search(output)
        rtt = int(round(float(match.group(1)))) if match else 0
        return True, rtt

    # DNS

    async def reverse_dns(self, ip: str, timeout_ms: int) -> str:
        loop = asyncio.get_running_loop()
        try:
            hostname, _, _ = await asyncio.wait_for(
                loop.run_in_executor(None, socket.gethostbyaddr, ip),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            raise HostnameResolutionError(f"reverse lookup of {ip} timed out") from e
        except OSError as e:
            raise HostnameResolutionError(f"reverse lookup of {ip} failed: {e}") from e
        return hostname

    # Interfaces

    def _default_gateways(self) -> dict[str, list[str]]:
        """Interface name -> IPv4 default gateways, from scapy's routing table."""
        gateways: dict[str, list[str]] = {}
        try:
            routes = list(conf.route.routes)
        except Exception as e:
            logger.debug("Could not read routing table: %s", e)
            return gateways

        for route in routes:
            net, mask, gateway, iface = route[:4]
            if net != 0 or mask != 0 or not gateway or gateway == "0.0.0.0":
                continue
            name = str(getattr(iface, "network_name", None) or getattr(iface, "name", None) or iface)
            gateways.setdefault(name, [])
            if gateway not in gateways[name]:
                gateways[name].append(gateway)
        return gateways

    def _interface_kind(self, name: str, stats, ipv4: list[tuple[str, str]]) -> str:
        flags = str(getattr(stats, "flags", "") or "")
        lowered = name.lower()
        if "loopback" in flags or lowered in LOOPBACK_NAMES or any(a.startswith("127.") for a, _ in ipv4):
            return "loopback"
        if "pointopoint" in flags or lowered.startswith(TUNNEL_PREFIXES):
            return "tunnel"
        if lowered.startswith(WIRELESS_PREFIXES):
            return "wireless"
        return "ethernet"

    def enumerate_interfaces(self) -> list[InterfaceRecord]:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
        gateways = self._default_gateways()

        records = []
        for name, entries in addrs.items():
            st = stats.get(name)
            ipv4 = [
                (a.address, a.netmask or "255.255.255.0")
                for a in entries
                if a.family == socket.AF_INET and a.address
            ]
            mac = next(
                (normalize_mac(a.address) for a in entries if a.family == psutil.AF_LINK and a.address),
                "",
            )
            records.append(InterfaceRecord(
                name=name,
                is_up=bool(st and st.isup),
                kind=self._interface_kind(name, st, ipv4),
                ipv4=ipv4,
                gateways=gateways.get(name, []),
                mac=mac,
            ))
        return records

    # Connections

    def connection_counts(self) -> dict[str, int]:
        counts: Counter = Counter()
        try:
            connections = psutil.net_connections(kind="tcp")
        except (psutil.AccessDenied, OSError) as e:
            logger.debug("Connection table unavailable: %s", e)
            return {}

        for connection in connections:
            if connection.raddr:
                counts[connection.raddr.ip] += 1
            if connection.laddr:
                counts[connection.laddr.ip] += 1
        return dict(counts)
