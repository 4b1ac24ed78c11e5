"""Exception taxonomy shared by the engine and the API layer."""


class LancutError(Exception):
    """Base class for every error raised by the engine."""


class ProbeTimeout(LancutError):
    """An ICMP probe did not get a reply within its timeout."""


class ArpQueryError(LancutError):
    """The OS neighbor cache could not be read."""


class MacResolutionError(LancutError):
    """No MAC address could be resolved for an IP."""

    def __init__(self, ip: str, reason: str = ""):
        self.ip = ip
        message = f"Could not resolve MAC address for {ip}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class PermissionDeniedError(LancutError):
    """A native network operation needs elevated privileges."""


class HostnameResolutionError(LancutError):
    """Reverse DNS lookup failed or timed out."""


class InterfaceNotFoundError(LancutError):
    """No up, non-loopback, non-tunnel interface with an IPv4 address."""


class GatewayBlockError(LancutError):
    """Refused to block the default gateway."""

    def __init__(self, ip: str):
        self.ip = ip
        super().__init__(f"{ip} is the gateway and cannot be blocked")


class DeviceNotFoundError(LancutError):
    """No device with the given IP is known to the registry."""

    def __init__(self, ip: str):
        self.ip = ip
        super().__init__(f"Device {ip} not found")


class SelfBlockError(LancutError):
    """Refused to block the host the engine runs on."""

    def __init__(self, ip: str):
        self.ip = ip
        super().__init__(f"{ip} is this host and cannot be blocked")


class ArpSendError(LancutError):
    """A forged or corrective ARP reply could not be sent."""
