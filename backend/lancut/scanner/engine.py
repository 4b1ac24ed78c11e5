import logging
from typing import Optional

from ..core.config import Settings
from ..core.errors import DeviceNotFoundError, InterfaceNotFoundError
from .access_control import AccessController
from .events import EventBus, EventCallback
from .models import Device, InterfaceInfo, ScanSummary
from .network_probe import NetworkProbe
from .network_scanner import SubnetScanner
from .oui_lookup import VendorClassifier
from .registry import DeviceRegistry

logger = logging.getLogger(__name__)


class DiscoveryEngine:
    """
    Composition root of the discovery and access-control engine.

    Everything is injected: the settings object, the network probe (the system one by
    default) and optionally a logger. Nothing here depends on a process-wide instance.
    """

    def __init__(
        self,
        settings: Settings,
        probe: Optional[NetworkProbe] = None,
        log: Optional[logging.Logger] = None,
    ):
        if probe is None:
            from .system_probe import SystemNetworkProbe
            probe = SystemNetworkProbe(interface=settings.INTERFACE)

        self.settings = settings
        self.probe = probe
        self.logger = log or logger
        self.bus = EventBus()
        self.registry = DeviceRegistry(
            classifier=VendorClassifier(),
            bus=self.bus,
            freshness_window=settings.FRESHNESS_WINDOW,
        )
        self.scanner = SubnetScanner(self.registry, probe, settings, bus=self.bus)
        self.access = AccessController(self.registry, probe, settings, bus=self.bus)
        self._started = False

    @property
    def network(self) -> Optional[InterfaceInfo]:
        return self.registry.network

    @property
    def is_running(self) -> bool:
        return self._started

    def register_callback(self, callback: EventCallback):
        self.bus.register_callback(callback)

    def unregister_callback(self, callback: EventCallback):
        self.bus.unregister_callback(callback)

    async def resolve_interface(self) -> Optional[InterfaceInfo]:
        """Resolve the scanning interface; None when the host has no usable interface."""
        try:
            return await self.scanner.resolve_interface()
        except InterfaceNotFoundError as e:
            self.logger.warning("Scanning unavailable: %s", e)
            return None

    async def start(self):
        if self._started:
            return
        await self.resolve_interface()
        if self.settings.BACKGROUND_SCANNING:
            await self.scanner.start_background_scanning()
        self._started = True
        self.logger.info("Discovery engine started")

    async def shutdown(self):
        """Force-unblock every device, then stop scanning."""
        await self.access.shutdown()
        await self.scanner.stop_background_scanning()
        self._started = False
        self.logger.info("Discovery engine stopped")

    # Queries

    async def get_device(self, ip: str) -> Device:
        device = await self.registry.get(ip)
        if device is None:
            raise DeviceNotFoundError(ip)
        return device

    async def list_devices(self) -> list[Device]:
        return await self.registry.list_devices()

    # Commands

    async def scan(self) -> ScanSummary:
        return await self.scanner.scan()

    async def stop_scan(self) -> bool:
        return await self.scanner.stop_scan()

    async def block(self, ip: str):
        await self.access.block(ip)

    async def unblock(self, ip: str):
        await self.access.unblock(ip)
