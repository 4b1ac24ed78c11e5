from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NeighborState(str, Enum):
    """Validity kind of a neighbor cache row, common to every platform."""
    DYNAMIC = "dynamic"
    STATIC = "static"
    STALE = "stale"
    UNREACHABLE = "unreachable"
    INVALID = "invalid"

    @property
    def is_resolved(self) -> bool:
        return self in (NeighborState.DYNAMIC, NeighborState.STATIC)


@dataclass(frozen=True)
class NeighborRecord:
    """Raw row from the OS neighbor cache."""
    ip: str
    mac: str
    state: NeighborState


@dataclass(frozen=True)
class ArpEntry:
    """Resolved (ip, mac) pair read from the neighbor cache."""
    ip: str
    mac: str


@dataclass(frozen=True)
class ProbeResult:
    reachable: bool
    rtt_ms: int = -1


@dataclass
class InterfaceRecord:
    """One network interface as enumerated by the OS."""
    name: str
    is_up: bool
    kind: str = "ethernet"  # ethernet, wireless, loopback, tunnel
    ipv4: list[tuple[str, str]] = field(default_factory=list)  # (address, netmask)
    gateways: list[str] = field(default_factory=list)
    mac: str = ""


@dataclass(frozen=True)
class InterfaceInfo:
    """The interface the engine scans from."""
    local_ip: str
    subnet_mask: str
    gateway_ip: str
    local_mac: str
    interface_name: str

    @property
    def base_ip(self) -> str:
        return ".".join(self.local_ip.split(".")[:3])

    @property
    def cidr(self) -> str:
        return f"{self.base_ip}.0/24"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["cidr"] = self.cidr
        return data


@dataclass
class Device:
    """A device discovered on the local subnet, keyed by IP."""
    ip: str
    mac: str = ""
    hostname: str = ""
    vendor: str = "Unknown"
    device_type: str = "Unknown"
    is_online: bool = True
    is_blocked: bool = False
    is_gateway: bool = False
    ping_time: int = -1
    first_seen: datetime = field(default_factory=utcnow)
    last_seen: datetime = field(default_factory=utcnow)
    estimated_connections: int = 0

    @property
    def display_name(self) -> str:
        return self.hostname or self.ip

    @property
    def can_block(self) -> bool:
        return not self.is_gateway

    @property
    def status_text(self) -> str:
        if self.is_blocked:
            return "Blocked"
        return "Online" if self.is_online else "Offline"

    @property
    def ping_text(self) -> str:
        return f"{self.ping_time} ms" if self.ping_time >= 0 else "-"

    def online_duration(self, now: Optional[datetime] = None) -> str:
        """How long the device has been around, e.g. ``3d 4h``."""
        if not self.is_online:
            return "-"
        duration = (now or utcnow()) - self.first_seen
        total_minutes = int(duration.total_seconds() // 60)
        hours, minutes = divmod(total_minutes, 60)
        days, hours = divmod(hours, 24)
        if days:
            return f"{days}d {hours}h"
        if hours:
            return f"{hours}h {minutes}m"
        return f"{minutes}m"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["display_name"] = self.display_name
        data["status_text"] = self.status_text
        data["can_block"] = self.can_block
        return data


@dataclass
class ScanSummary:
    status: str  # completed, cancelled, already_running
    device_count: int = 0
    subnet: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return asdict(self)
