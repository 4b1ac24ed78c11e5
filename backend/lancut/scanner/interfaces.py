import logging
from typing import Optional

from ..core.errors import InterfaceNotFoundError
from .models import InterfaceInfo, InterfaceRecord
from .network_probe import NetworkProbe

logger = logging.getLogger(__name__)

EXCLUDED_KINDS = ("loopback", "tunnel")


class InterfaceResolver:
    """Picks the interface the engine scans from."""

    def __init__(self, probe: NetworkProbe, preferred: Optional[str] = None):
        self.probe = probe
        self.preferred = preferred

    def _qualifies(self, record: InterfaceRecord) -> bool:
        return record.is_up and record.kind not in EXCLUDED_KINDS and bool(record.ipv4)

    def resolve(self) -> InterfaceInfo:
        """
        Return the first up, non-loopback, non-tunnel interface with an IPv4 address.

        Interfaces are walked in OS enumeration order. When a preferred interface name is
        configured it is the only candidate.

        Raises:
            InterfaceNotFoundError: no interface qualifies (e.g. the host is offline)
        """
        try:
            records = self.probe.enumerate_interfaces()
        except Exception as e:
            raise InterfaceNotFoundError(f"Could not enumerate interfaces: {e}") from e

        if self.preferred:
            records = [r for r in records if r.name == self.preferred]

        for record in records:
            if not self._qualifies(record):
                continue
            local_ip, netmask = record.ipv4[0]
            info = InterfaceInfo(
                local_ip=local_ip,
                subnet_mask=netmask,
                gateway_ip=record.gateways[0] if record.gateways else "",
                local_mac=record.mac,
                interface_name=record.name,
            )
            logger.info(
                "Using interface %s: %s/%s gateway %s mac %s",
                info.interface_name, info.local_ip, info.subnet_mask,
                info.gateway_ip or "-", info.local_mac or "-",
            )
            return info

        if self.preferred:
            raise InterfaceNotFoundError(f"Interface {self.preferred} is not up or has no IPv4 address")
        raise InterfaceNotFoundError("No active IPv4 network interface found")
