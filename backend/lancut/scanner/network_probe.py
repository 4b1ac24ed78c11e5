"""Capability interface for the OS network primitives the engine depends on.

The engine never calls the operating system directly. Everything goes through an object
satisfying :class:`NetworkProbe`: :class:`lancut.scanner.system_probe.SystemNetworkProbe`
in production, an in-memory fake in tests.
"""

from typing import Protocol

from .models import InterfaceRecord, NeighborRecord


class NetworkProbe(Protocol):

    async def query_neighbor_cache(self) -> list[NeighborRecord]:
        """Read the whole neighbor cache. Raises ArpQueryError."""
        ...

    async def resolve_mac(self, ip: str) -> str:
        """Resolve (forcing a lookup if needed) the MAC of ``ip``. Raises MacResolutionError."""
        ...

    async def send_arp_reply(self, target_ip: str, target_mac: str, claimed_ip: str, claimed_mac: str) -> None:
        """Tell ``target_ip`` that ``claimed_ip`` is at ``claimed_mac``. Raises PermissionDeniedError or ArpSendError."""
        ...

    async def icmp_echo(self, ip: str, timeout_ms: int) -> tuple[bool, int]:
        """Single echo request. Returns (reachable, rtt in ms)."""
        ...

    async def reverse_dns(self, ip: str, timeout_ms: int) -> str:
        """PTR lookup. Raises HostnameResolutionError."""
        ...

    def bind_interface(self, name: str) -> None:
        """Use interface ``name`` for raw frames from now on."""
        ...

    def enumerate_interfaces(self) -> list[InterfaceRecord]:
        """Interfaces in OS enumeration order."""
        ...

    def connection_counts(self) -> dict[str, int]:
        """Number of TCP connections per peer IP."""
        ...
