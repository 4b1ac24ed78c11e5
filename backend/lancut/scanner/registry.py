import asyncio
import ipaddress
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from ..core.errors import GatewayBlockError
from .events import DEVICE_ADDED, DEVICE_UPDATED, EventBus
from .models import Device, InterfaceInfo, utcnow
from .oui_lookup import VendorClassifier

logger = logging.getLogger(__name__)


def _ip_sort_key(device: Device):
    try:
        return (0, int(ipaddress.IPv4Address(device.ip)))
    except ValueError:
        return (1, device.ip)


class DeviceRegistry:
    """
    Authoritative table of discovered devices, keyed by IP.

    Every mutation goes through one asyncio lock, so scanner upserts, the presence pass
    and block/unblock status flips never interleave on an entry. Callers always get
    copies; events are published after the lock is released.
    """

    def __init__(
        self,
        classifier: Optional[VendorClassifier] = None,
        bus: Optional[EventBus] = None,
        freshness_window: float = 120,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.classifier = classifier or VendorClassifier()
        self.bus = bus or EventBus()
        self.freshness_window = timedelta(seconds=freshness_window)
        self._clock = clock
        self._devices: dict[str, Device] = {}
        self._lock = asyncio.Lock()
        self.network: Optional[InterfaceInfo] = None
        # Answers "is there an active block session for this IP?"
        self.blocked_lookup: Callable[[str], bool] = lambda ip: False

    @property
    def gateway_ip(self) -> str:
        return self.network.gateway_ip if self.network else ""

    @property
    def local_ip(self) -> str:
        return self.network.local_ip if self.network else ""

    def set_network(self, network: Optional[InterfaceInfo]):
        self.network = network

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, ip: str) -> bool:
        return ip in self._devices

    async def _publish(self, event_type: str, devices: Iterable[Device]):
        for device in devices:
            await self.bus.publish(event_type, device.to_dict())

    async def upsert(self, ip: str, mac: str = "", ping_time: int = -1) -> tuple[Device, bool]:
        """
        Insert a new device or refresh a known one.

        A refresh moves last_seen forward, marks the device online and takes a new
        ping sample if one is given. MAC, vendor and type are kept once set; an empty
        MAC may still be filled in.

        Returns:
            (snapshot, is_new)
        """
        now = self._clock()
        gateway_ip = self.gateway_ip
        async with self._lock:
            device = self._devices.get(ip)
            is_new = device is None
            if is_new:
                vendor, device_type = self.classifier.classify(mac, ip, gateway_ip)
                is_gateway = bool(gateway_ip) and ip == gateway_ip
                device = Device(
                    ip=ip,
                    mac=mac,
                    vendor=vendor,
                    device_type=device_type,
                    is_online=True,
                    is_gateway=is_gateway,
                    is_blocked=not is_gateway and self.blocked_lookup(ip),
                    ping_time=ping_time if ping_time >= 0 else -1,
                    first_seen=now,
                    last_seen=now,
                )
                self._devices[ip] = device
            else:
                if now > device.last_seen:
                    device.last_seen = now
                device.is_online = True
                if ping_time >= 0:
                    device.ping_time = ping_time
                if mac and not device.mac:
                    device.mac = mac
                    device.vendor, device.device_type = self.classifier.classify(mac, ip, gateway_ip)
            snapshot = replace(device)

        if is_new:
            logger.debug("New device %s (%s, %s)", ip, mac or "-", snapshot.vendor)
        await self._publish(DEVICE_ADDED if is_new else DEVICE_UPDATED, [snapshot])
        return snapshot, is_new

    async def get(self, ip: str) -> Optional[Device]:
        async with self._lock:
            device = self._devices.get(ip)
            return replace(device) if device else None

    async def list_devices(self) -> list[Device]:
        async with self._lock:
            devices = [replace(d) for d in self._devices.values()]
        return sorted(devices, key=_ip_sort_key)

    async def remove(self, ip: str) -> bool:
        async with self._lock:
            return self._devices.pop(ip, None) is not None

    async def set_blocked(self, ip: str, blocked: bool) -> Optional[Device]:
        """
        Flip the blocked flag of a known device.

        Raises:
            GatewayBlockError: when asked to block the gateway
        """
        async with self._lock:
            device = self._devices.get(ip)
            if device is None:
                return None
            if blocked and device.is_gateway:
                raise GatewayBlockError(ip)
            if device.is_blocked == blocked:
                return replace(device)
            device.is_blocked = blocked
            snapshot = replace(device)
        await self._publish(DEVICE_UPDATED, [snapshot])
        return snapshot

    async def set_hostname(self, ip: str, hostname: str) -> Optional[Device]:
        if not hostname:
            return None
        async with self._lock:
            device = self._devices.get(ip)
            if device is None or device.hostname == hostname:
                return None
            device.hostname = hostname
            snapshot = replace(device)
        await self._publish(DEVICE_UPDATED, [snapshot])
        return snapshot

    async def refresh_presence(
        self,
        present_ips: set[str],
        connection_counts: Optional[dict[str, int]] = None,
    ) -> list[Device]:
        """
        Presence pass: devices seen in the ARP table are refreshed, devices without any
        signal for longer than the freshness window go offline. Nothing is removed.

        Returns:
            snapshots of the devices whose state changed
        """
        now = self._clock()
        connection_counts = connection_counts or {}
        changed = []
        async with self._lock:
            for ip, device in self._devices.items():
                dirty = False
                if ip in present_ips:
                    if now > device.last_seen:
                        device.last_seen = now
                    if not device.is_online:
                        device.is_online = True
                        dirty = True
                    connections = connection_counts.get(ip, 0)
                    if connections != device.estimated_connections:
                        device.estimated_connections = connections
                        dirty = True
                elif device.is_online and now - device.last_seen > self.freshness_window:
                    device.is_online = False
                    dirty = True
                    logger.info("Device %s went offline (last seen %s)", ip, device.last_seen.isoformat())
                if dirty:
                    changed.append(replace(device))

        await self._publish(DEVICE_UPDATED, changed)
        return changed

    async def prune(self, keep_ips: set[str]) -> list[str]:
        """Drop offline, unblocked devices that are not in ``keep_ips``."""
        async with self._lock:
            removed = [
                ip for ip, device in self._devices.items()
                if ip not in keep_ips and not device.is_online and not device.is_blocked
            ]
            for ip in removed:
                del self._devices[ip]
        if removed:
            logger.info("Removed %d offline devices: %s", len(removed), ", ".join(removed))
        return removed
