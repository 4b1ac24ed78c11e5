"""
Neighbor (ARP) cache reading.

The OS table is queried once per call through the network probe. The text parsers
for the various platform tools live here as plain functions so they can be reused
and tested without a network.
"""

import logging
import re

from .models import ArpEntry, NeighborRecord, NeighborState
from .network_probe import NetworkProbe
from .utils import is_usable_mac, normalize_mac

logger = logging.getLogger(__name__)

# `ip neigh` NUD states
LINUX_STATES = {
    "REACHABLE": NeighborState.DYNAMIC,
    "DELAY": NeighborState.DYNAMIC,
    "PROBE": NeighborState.DYNAMIC,
    "PERMANENT": NeighborState.STATIC,
    "STALE": NeighborState.STALE,
    "FAILED": NeighborState.UNREACHABLE,
    "INCOMPLETE": NeighborState.UNREACHABLE,
    "NOARP": NeighborState.INVALID,
    "NONE": NeighborState.INVALID,
}

WINDOWS_STATES = {
    "dynamic": NeighborState.DYNAMIC,
    "static": NeighborState.STATIC,
    "invalid": NeighborState.INVALID,
}

_IPV4 = r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}"
_IP_NEIGH_PATTERN = re.compile(rf"^({_IPV4})\s+dev\s+\S+(?:\s+lladdr\s+(\S+))?.*?\s([A-Z]+)\s*$")
_BSD_ARP_PATTERN = re.compile(rf"\(({_IPV4})\)\s+at\s+(\S+)")
_WINDOWS_ARP_PATTERN = re.compile(rf"^\s*({_IPV4})\s+([0-9a-fA-F]{{2}}(?:-[0-9a-fA-F]{{2}}){{5}})\s+(\w+)")


def parse_ip_neigh(output: str) -> list[NeighborRecord]:
    """Parse `ip -4 neigh show` output."""
    records = []
    for line in output.splitlines():
        match = _IP_NEIGH_PATTERN.match(line.strip())
        if not match:
            continue
        ip, mac, state = match.groups()
        records.append(NeighborRecord(
            ip=ip,
            mac=normalize_mac(mac),
            state=LINUX_STATES.get(state, NeighborState.INVALID),
        ))
    return records


def parse_bsd_arp(output: str) -> list[NeighborRecord]:
    """Parse `arp -an` output (macOS, BSD and Linux net-tools)."""
    records = []
    for line in output.splitlines():
        match = _BSD_ARP_PATTERN.search(line)
        if not match:
            continue
        ip, raw_mac = match.groups()
        mac = normalize_mac(raw_mac)
        if not mac:
            state = NeighborState.UNREACHABLE  # (incomplete) / <incomplete>
        elif "permanent" in line.lower() or " PERM " in line:
            state = NeighborState.STATIC
        else:
            state = NeighborState.DYNAMIC
        records.append(NeighborRecord(ip=ip, mac=mac, state=state))
    return records


def parse_windows_arp(output: str) -> list[NeighborRecord]:
    """Parse Windows `arp -a` output."""
    records = []
    for line in output.splitlines():
        match = _WINDOWS_ARP_PATTERN.match(line)
        if not match:
            continue
        ip, mac, kind = match.groups()
        records.append(NeighborRecord(
            ip=ip,
            mac=normalize_mac(mac),
            state=WINDOWS_STATES.get(kind.lower(), NeighborState.INVALID),
        ))
    return records


class NeighborCacheReader:
    """Reads resolved (ip, mac) pairs from the OS neighbor cache."""

    def __init__(self, probe: NetworkProbe):
        self.probe = probe

    async def read_table(self) -> list[ArpEntry]:
        """Return dynamic/static entries only; an unreadable table yields an empty list."""
        try:
            records = await self.probe.query_neighbor_cache()
        except Exception as e:
            logger.warning("ARP table read failed: %s", e)
            return []

        entries = []
        seen = set()
        for record in records:
            if not record.state.is_resolved:
                continue
            mac = normalize_mac(record.mac)
            if not is_usable_mac(mac) or record.ip in seen:
                continue
            seen.add(record.ip)
            entries.append(ArpEntry(ip=record.ip, mac=mac))
        return entries

    async def lookup(self, ip: str) -> str:
        """MAC for one IP from the cache, or "" if the cache has no resolved entry."""
        for entry in await self.read_table():
            if entry.ip == ip:
                return entry.mac
        return ""
