import ipaddress
import re
from typing import Optional

PRIVATE_NETWORKS = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
)

BROADCAST_MAC = "FF:FF:FF:FF:FF:FF"
ZERO_MAC = "00:00:00:00:00:00"

_MAC_SEPARATORS = re.compile(r"[:\-.]")


def is_private_ip(ip: str) -> bool:
    """True for RFC1918 addresses only (loopback, link-local and CGNAT are not private here)."""
    try:
        addr = ipaddress.IPv4Address(ip)
    except ValueError:
        return False
    return any(addr in net for net in PRIVATE_NETWORKS)


def normalize_mac(mac: Optional[str]) -> str:
    """
    Normalize a MAC address to upper-case, colon separated form.

    Accepts "aa-bb-cc-dd-ee-ff", "aabb.ccdd.eeff", "aabbccddeeff" and the unpadded
    BSD form "0:1b:63:a:b:c". Returns "" for anything that is not a 48-bit address.
    """
    if not mac:
        return ""
    mac = mac.strip()
    parts = _MAC_SEPARATORS.split(mac)
    if len(parts) == 6:
        if not all(1 <= len(p) <= 2 for p in parts):
            return ""
        hex_digits = "".join(p.zfill(2) for p in parts)
    else:
        hex_digits = "".join(parts)
    if len(hex_digits) != 12:
        return ""
    try:
        int(hex_digits, 16)
    except ValueError:
        return ""
    hex_digits = hex_digits.upper()
    return ":".join(hex_digits[i:i + 2] for i in range(0, 12, 2))


def is_usable_mac(mac: str) -> bool:
    return bool(mac) and mac not in (BROADCAST_MAC, ZERO_MAC)
