"""
OUI (Organizationally Unique Identifier) lookup for MAC address vendor identification.

The vendor table is a small, ordered list of prefixes. Lookup walks it in order and the
first prefix that matches wins, so more specific prefixes must come before broader ones.
The device type is a second heuristic evaluated in a fixed priority order on the vendor name.
"""

from typing import Optional

UNKNOWN = "Unknown"

# Ordered (prefix, vendor) table. Order is significant.
VENDOR_PREFIXES: list[tuple[str, str]] = [
    ("00005E", "IANA"),
    ("000C29", "VMware"),
    ("001122", "Cimsys"),
    ("001A2B", "Ayecom"),
    ("002170", "Dell"),
    ("0025AE", "Microsoft"),
    ("002427", "Cisco"),
    ("00259C", "Cisco"),
    ("0050F2", "Microsoft"),
    ("3C7C3F", "ASUSTek"),
    ("4C5E0C", "Routerboard"),
    ("50E549", "GIGA-BYTE"),
    ("54271E", "AzureWave"),
    ("60F262", "Intel"),
    ("74D4DD", "Samsung"),
    ("7C2F80", "Gigabyte"),
    ("88D7F6", "ASUSTek"),
    ("8C1645", "Samsung"),
    ("9C5C8E", "ASUSTek"),
    ("A0C589", "Intel"),
    ("A41F72", "Dell"),
    ("A4BADB", "Dell"),
    ("AC162D", "HP"),
    ("B8763F", "Intel"),
    ("C8F750", "ASRock"),
    ("D0509C", "TP-LINK"),
    ("D4BED9", "Dell"),
    ("DC5360", "Apple"),
    ("E0D55E", "GIGA-BYTE"),
    ("E4B318", "Intel"),
    ("EC8EB5", "HP"),
    ("F04DA2", "Dell"),
    ("F0F61C", "Apple"),
    ("DCCF96", "Xiaomi"),
    ("28D1BE", "Xiaomi"),
    ("64BC0C", "LG Electronics"),
    ("C45006", "Xiaomi"),
    ("40F520", "Espressif (IoT)"),
    ("A4CF12", "Espressif (IoT)"),
    ("B4E62D", "TP-LINK"),
    ("E8DE27", "TP-LINK"),
    ("F81A67", "TP-LINK"),
    ("50C7BF", "TP-LINK"),
    ("1062EB", "D-Link"),
    ("28107B", "D-Link"),
    ("FCE998", "Apple"),
    ("A860B6", "Apple"),
    ("080027", "VirtualBox"),
    ("525400", "QEMU"),
    ("B827EB", "Raspberry Pi"),
    ("DCA632", "Raspberry Pi"),
    ("240AC4", "Espressif (IoT)"),
    ("5CCF7F", "Espressif (IoT)"),
]

DEVICE_TYPE_GATEWAY = "Router/Gateway"
DEVICE_TYPE_APPLE = "Apple Device"
DEVICE_TYPE_SAMSUNG = "Samsung Device"
DEVICE_TYPE_XIAOMI = "Xiaomi Device"
DEVICE_TYPE_LG = "LG Device"
DEVICE_TYPE_WINDOWS = "Windows PC"
DEVICE_TYPE_COMPUTER = "Computer"
DEVICE_TYPE_NETWORK = "Network Device"
DEVICE_TYPE_VIRTUAL = "Virtual Machine"
DEVICE_TYPE_IOT = "IoT Device"

PC_VENDORS = ("intel", "dell", "hp", "asus", "gigabyte", "asrock")
NETWORK_VENDORS = ("tp-link", "d-link", "cisco", "routerboard")
VIRTUAL_VENDORS = ("vmware", "virtualbox", "qemu")
IOT_VENDORS = ("espressif", "iot")

# Evaluated top to bottom, first hit wins.
DEVICE_TYPE_RULES: list[tuple[tuple[str, ...], str]] = [
    (("apple",), DEVICE_TYPE_APPLE),
    (("samsung",), DEVICE_TYPE_SAMSUNG),
    (("xiaomi",), DEVICE_TYPE_XIAOMI),
    (("lg",), DEVICE_TYPE_LG),
    (("microsoft",), DEVICE_TYPE_WINDOWS),
    (PC_VENDORS, DEVICE_TYPE_COMPUTER),
    (NETWORK_VENDORS, DEVICE_TYPE_NETWORK),
    (VIRTUAL_VENDORS, DEVICE_TYPE_VIRTUAL),
    (IOT_VENDORS, DEVICE_TYPE_IOT),
]


def _normalize_mac_prefix(mac: str) -> str:
    """Normalize MAC address prefix to uppercase without separators."""
    mac_clean = mac.upper().replace(':', '').replace('-', '').replace('.', '')
    return mac_clean[:6]


def lookup_vendor(mac: Optional[str]) -> str:
    """
    Look up the vendor for a MAC address.

    Args:
        mac: MAC address in any format (e.g., "00:11:22:33:44:55", "00-11-22-33-44-55", "001122334455")

    Returns:
        Vendor name, or "Unknown" if the prefix is not in the table
    """
    if not mac:
        return UNKNOWN

    prefix = _normalize_mac_prefix(mac)
    if len(prefix) < 6:
        return UNKNOWN

    for oui, vendor in VENDOR_PREFIXES:
        if prefix.startswith(oui):
            return vendor

    return UNKNOWN


def guess_device_type(vendor: str, ip: str, gateway_ip: Optional[str]) -> str:
    """Coarse device type from the vendor name; the gateway check always comes first."""
    if gateway_ip and ip == gateway_ip:
        return DEVICE_TYPE_GATEWAY

    vendor_lower = (vendor or "").lower()
    for needles, device_type in DEVICE_TYPE_RULES:
        if any(needle in vendor_lower for needle in needles):
            return device_type

    return UNKNOWN


class VendorClassifier:
    """Maps a MAC address to a (vendor, device type) pair."""

    def classify(self, mac: Optional[str], ip: str, gateway_ip: Optional[str] = None) -> tuple[str, str]:
        vendor = lookup_vendor(mac)
        return vendor, guess_device_type(vendor, ip, gateway_ip)
