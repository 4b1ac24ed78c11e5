import asyncio
import logging
from typing import Optional

from ..core.config import Settings
from ..core.errors import InterfaceNotFoundError
from .events import (
    SCAN_CANCELLED,
    SCAN_COMPLETED,
    SCAN_FAILED,
    SCAN_PROGRESS,
    SCAN_STARTED,
    EventBus,
)
from .hostname import HostnameResolver
from .interfaces import InterfaceResolver
from .models import InterfaceInfo, ScanSummary, utcnow
from .neighbor_cache import NeighborCacheReader
from .network_probe import NetworkProbe
from .probe_client import ProbeClient
from .registry import DeviceRegistry
from .utils import is_private_ip, normalize_mac

logger = logging.getLogger(__name__)

SWEEP_FIRST_HOST = 1
SWEEP_LAST_HOST = 254
PROGRESS_AFTER_ARP = 20
PROGRESS_AFTER_SWEEP = 90
PROGRESS_EVERY = 25


class SubnetScanner:
    """
    Runs scan cycles over the local /24 and keeps devices' presence up to date.

    A cycle is strictly ordered: the ARP table seeds the registry, the ICMP sweep
    confirms and extends it, then missing hostnames are resolved. A second cycle
    requested while one is running is ignored, not queued.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        probe: NetworkProbe,
        settings: Settings,
        bus: Optional[EventBus] = None,
        resolver: Optional[InterfaceResolver] = None,
        neighbor_reader: Optional[NeighborCacheReader] = None,
        probe_client: Optional[ProbeClient] = None,
        hostname_resolver: Optional[HostnameResolver] = None,
    ):
        self.registry = registry
        self.probe = probe
        self.settings = settings
        self.bus = bus or registry.bus
        self.resolver = resolver or InterfaceResolver(probe, preferred=settings.INTERFACE)
        self.neighbor_reader = neighbor_reader or NeighborCacheReader(probe)
        self.probe_client = probe_client or ProbeClient(probe, timeout_ms=settings.PROBE_TIMEOUT_MS)
        self.hostname_resolver = hostname_resolver or HostnameResolver(probe, timeout_ms=settings.HOSTNAME_TIMEOUT_MS)

        self.progress = 0
        self.status = "Ready"
        self.last_summary: Optional[ScanSummary] = None

        self._is_scanning = False
        self._stop_requested = False
        self._scan_task: Optional[asyncio.Task] = None
        self._arp_ips: set[str] = set()
        self._sweep_hits: set[str] = set()
        self._probed = 0

        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._presence_task: Optional[asyncio.Task] = None

    @property
    def is_scanning(self) -> bool:
        return self._is_scanning

    @property
    def interface(self) -> Optional[InterfaceInfo]:
        return self.registry.network

    async def resolve_interface(self) -> InterfaceInfo:
        """Pick the interface again and send raw frames through it. Raises InterfaceNotFoundError."""
        loop = asyncio.get_running_loop()
        network = await loop.run_in_executor(None, self.resolver.resolve)
        self.registry.set_network(network)
        self.probe.bind_interface(network.interface_name)
        return network

    async def ensure_interface(self) -> InterfaceInfo:
        """Resolve the scanning interface if it is not known yet. Raises InterfaceNotFoundError."""
        if self.registry.network is None:
            return await self.resolve_interface()
        return self.registry.network

    async def _set_progress(self, progress: int, status: str):
        self.progress = progress
        self.status = status
        await self.bus.publish(SCAN_PROGRESS, {"progress": progress, "status": status})

    def _is_local(self, ip: str, network: InterfaceInfo) -> bool:
        return ip == network.local_ip or ip == "127.0.0.1"

    # Scan cycle

    async def scan(self) -> ScanSummary:
        """
        Run one scan cycle.

        Returns immediately with status "already_running" if a cycle is in progress.
        A cycle stopped through stop_scan() returns status "cancelled" and keeps
        whatever it found so far.

        Raises:
            InterfaceNotFoundError: no usable interface, scanning is unavailable
        """
        if self._is_scanning:
            logger.debug("Scan requested while another scan is running; ignoring")
            return ScanSummary(status="already_running", device_count=len(self.registry))

        self._is_scanning = True
        self._stop_requested = False
        started_at = utcnow()
        try:
            self._scan_task = asyncio.create_task(self._perform_scan(started_at))
            try:
                summary = await self._scan_task
            except asyncio.CancelledError:
                if not self._stop_requested:
                    raise
                summary = ScanSummary(
                    status="cancelled",
                    device_count=len(self.registry),
                    subnet=self.interface.cidr if self.interface else None,
                    started_at=started_at,
                    completed_at=utcnow(),
                )
                logger.info("Network scan cancelled, %d devices known", summary.device_count)
                await self._set_progress(self.progress, "Scan cancelled")
                await self.bus.publish(SCAN_CANCELLED, summary.to_dict())
            self.last_summary = summary
            return summary
        finally:
            self._is_scanning = False
            self._scan_task = None

    async def stop_scan(self) -> bool:
        """Cancel the running scan. In-flight probes are abandoned, found devices are kept."""
        task = self._scan_task
        if task is None or task.done():
            return False
        self._stop_requested = True
        task.cancel()
        await asyncio.wait({task})
        return True

    async def _perform_scan(self, started_at) -> ScanSummary:
        try:
            network = await self.ensure_interface()
        except InterfaceNotFoundError as e:
            await self.bus.publish(SCAN_FAILED, {"error": str(e)})
            raise

        try:
            await self.bus.publish(SCAN_STARTED, {"subnet": network.cidr})
            self._arp_ips = set()
            self._sweep_hits = set()
            self._probed = 0

            await self._set_progress(0, "Reading ARP table...")
            await self._ingest_arp_table(network)

            await self._set_progress(PROGRESS_AFTER_ARP, "Scanning network...")
            await self._sweep(network)

            await self._set_progress(PROGRESS_AFTER_SWEEP, "Resolving hostnames...")
            await self._resolve_hostnames()

            await self.registry.prune(self._arp_ips | self._sweep_hits)

            summary = ScanSummary(
                status="completed",
                device_count=len(self.registry),
                subnet=network.cidr,
                started_at=started_at,
                completed_at=utcnow(),
            )
            await self._set_progress(100, f"Scan completed - {summary.device_count} devices found")
            logger.info("Network scan completed, found %d devices", summary.device_count)
            await self.bus.publish(SCAN_COMPLETED, summary.to_dict())
            return summary

        except Exception as e:
            logger.exception("Network scan failed")
            await self._set_progress(self.progress, f"Error: {e}")
            await self.bus.publish(SCAN_FAILED, {"error": str(e)})
            raise

    async def _ingest_arp_table(self, network: InterfaceInfo):
        entries = await self.neighbor_reader.read_table()
        for entry in entries:
            if not is_private_ip(entry.ip) or self._is_local(entry.ip, network):
                continue
            await self.registry.upsert(entry.ip, entry.mac)
            self._arp_ips.add(entry.ip)
        logger.debug("ARP table: %d entries, %d ingested", len(entries), len(self._arp_ips))

    async def _resolve_mac(self, ip: str) -> str:
        try:
            return normalize_mac(await self.probe.resolve_mac(ip))
        except Exception as e:
            logger.debug("MAC resolution for %s failed: %s", ip, e)
            return ""

    async def _sweep(self, network: InterfaceInfo):
        """ICMP sweep of the /24 with at most SCAN_CONCURRENCY probes in flight."""
        semaphore = asyncio.Semaphore(self.settings.SCAN_CONCURRENCY)
        targets = [
            f"{network.base_ip}.{i}"
            for i in range(SWEEP_FIRST_HOST, SWEEP_LAST_HOST + 1)
        ]
        targets = [ip for ip in targets if not self._is_local(ip, network) and ip not in self._arp_ips]
        total = len(targets)

        async def probe_one(ip: str):
            async with semaphore:
                try:
                    result = await self.probe_client.probe_host(ip, self.settings.PROBE_TIMEOUT_MS)
                    if result.reachable:
                        mac = await self._resolve_mac(ip)
                        await self.registry.upsert(ip, mac, result.rtt_ms)
                        self._sweep_hits.add(ip)
                except Exception:
                    logger.exception("Probe task for %s failed", ip)
                finally:
                    self._probed += 1

            if self._probed % PROGRESS_EVERY == 0 and total:
                span = PROGRESS_AFTER_SWEEP - PROGRESS_AFTER_ARP
                await self._set_progress(PROGRESS_AFTER_ARP + int(self._probed / total * span), "Scanning network...")

        await asyncio.gather(*(probe_one(ip) for ip in targets))
        logger.debug("Sweep of %s: %d/%d hosts answered", network.cidr, len(self._sweep_hits), total)

    async def _resolve_hostnames(self):
        devices = [d for d in await self.registry.list_devices() if not d.hostname]

        async def resolve_one(ip: str):
            hostname = await self.hostname_resolver.resolve(ip)
            if hostname:
                await self.registry.set_hostname(ip, hostname)

        results = await asyncio.gather(*(resolve_one(d.ip) for d in devices), return_exceptions=True)
        for device, result in zip(devices, results):
            if isinstance(result, Exception):
                logger.debug("Hostname enrichment for %s failed: %s", device.ip, result)

    # Presence

    async def refresh_presence(self):
        """One staleness pass: ARP presence refreshes devices, silence beyond the window marks them offline."""
        entries = await self.neighbor_reader.read_table()
        present = {entry.ip for entry in entries}
        loop = asyncio.get_running_loop()
        try:
            counts = await loop.run_in_executor(None, self.probe.connection_counts)
        except Exception as e:
            logger.debug("Connection counts unavailable: %s", e)
            counts = {}
        return await self.registry.refresh_presence(present, counts)

    # Background loops

    async def start_background_scanning(self):
        """Start periodic scanning and presence tracking."""
        if self._running:
            return

        self._running = True
        self._loop_task = asyncio.create_task(self._scan_loop())
        self._presence_task = asyncio.create_task(self._presence_loop())

    async def stop_background_scanning(self):
        """Stop periodic scanning and presence tracking."""
        self._running = False
        await self.stop_scan()
        for task in (self._loop_task, self._presence_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._loop_task = None
        self._presence_task = None

    async def _scan_loop(self):
        """Main scanning loop."""
        await asyncio.sleep(self.settings.SCAN_INITIAL_DELAY)
        while self._running:
            try:
                await self.scan()
            except InterfaceNotFoundError as e:
                logger.warning("Scanning unavailable: %s", e)
            except Exception:
                logger.exception("Scan error")

            await asyncio.sleep(self.settings.SCAN_INTERVAL)

    async def _presence_loop(self):
        await asyncio.sleep(self.settings.PRESENCE_INITIAL_DELAY)
        while self._running:
            try:
                await self.refresh_presence()
            except Exception:
                logger.exception("Presence update failed")

            await asyncio.sleep(self.settings.PRESENCE_INTERVAL)
