import logging
from typing import Optional

from .models import ProbeResult
from .network_probe import NetworkProbe

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 500


class ProbeClient:
    """Single ICMP reachability probe. Never raises: every failure means unreachable."""

    def __init__(self, probe: NetworkProbe, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.probe = probe
        self.timeout_ms = timeout_ms

    async def probe_host(self, ip: str, timeout_ms: Optional[int] = None) -> ProbeResult:
        timeout_ms = timeout_ms or self.timeout_ms
        try:
            reachable, rtt = await self.probe.icmp_echo(ip, timeout_ms)
        except Exception as e:
            logger.debug("Probe of %s failed: %s", ip, e)
            return ProbeResult(reachable=False)

        if not reachable:
            return ProbeResult(reachable=False)
        return ProbeResult(reachable=True, rtt_ms=max(0, int(rtt)))
