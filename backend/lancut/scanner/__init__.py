# Scanner module
from .access_control import AccessController, BlockSession, BlockState
from .engine import DiscoveryEngine
from .events import EventBus
from .hostname import HostnameResolver
from .interfaces import InterfaceResolver
from .models import Device, InterfaceInfo, ScanSummary
from .neighbor_cache import NeighborCacheReader
from .network_scanner import SubnetScanner
from .oui_lookup import VendorClassifier
from .probe_client import ProbeClient
from .registry import DeviceRegistry

__all__ = [
    "AccessController",
    "BlockSession",
    "BlockState",
    "Device",
    "DeviceRegistry",
    "DiscoveryEngine",
    "EventBus",
    "HostnameResolver",
    "InterfaceInfo",
    "InterfaceResolver",
    "NeighborCacheReader",
    "ProbeClient",
    "ScanSummary",
    "SubnetScanner",
    "VendorClassifier",
]
