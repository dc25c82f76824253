"""
Warden - Shared Utility Functions
"""

import ipaddress
from typing import Optional, Union


def parse_address(address: str) -> Optional[Union[ipaddress.IPv4Network, ipaddress.IPv6Network]]:
    """Parse an IP address or CIDR network.

    Returns the network (a bare address becomes a /32 or /128), or None if
    the string is not a valid address. Used before any address is handed to
    firewall tooling.
    """
    if not isinstance(address, str) or not address or len(address) > 64:
        return None
    try:
        return ipaddress.ip_network(address.strip(), strict=False)
    except ValueError:
        return None


def is_valid_address(address: str) -> bool:
    return parse_address(address) is not None


def bytes_to_mb(value: int) -> int:
    """Floor bytes to whole megabytes."""
    return int(value // 1024 // 1024)
