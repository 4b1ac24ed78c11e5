import logging

from .network_probe import NetworkProbe

logger = logging.getLogger(__name__)


class HostnameResolver:
    """Best-effort reverse DNS."""

    def __init__(self, probe: NetworkProbe, timeout_ms: int = 2000):
        self.probe = probe
        self.timeout_ms = timeout_ms

    async def resolve(self, ip: str) -> str:
        """Resolve IP address to hostname, "" when there is none."""
        try:
            hostname = await self.probe.reverse_dns(ip, self.timeout_ms)
        except Exception as e:
            logger.debug("No hostname for %s: %s", ip, e)
            return ""

        hostname = (hostname or "").strip().rstrip(".")
        # Some resolvers echo the address back instead of failing
        if hostname == ip:
            return ""
        return hostname
