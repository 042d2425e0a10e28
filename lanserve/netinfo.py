"""
Discovery of the host's network interfaces and of the address to share on the LAN.
"""

import ipaddress
import logging
import socket
import sys
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Tuple

import psutil

from .errors import AddressLookupError, InterfaceError

logger = logging.getLogger(__name__)

WINDOWS = "windows"
DARWIN = "darwin"
LINUX = "linux"


class FavoriteRule(NamedTuple):
    """Names that mark an interface as the primary LAN adapter on one platform."""

    exact: FrozenSet[str] = frozenset()
    prefixes: Tuple[str, ...] = ()


FAVORITE_RULES: Dict[str, FavoriteRule] = {
    WINDOWS: FavoriteRule(exact=frozenset({"WiFi"}), prefixes=("Ethernet",)),
    DARWIN: FavoriteRule(exact=frozenset({"en0", "en1"})),
    LINUX: FavoriteRule(exact=frozenset({"eth0", "wlan0"})),
}

_IP_FAMILIES = (socket.AF_INET, socket.AF_INET6)


@dataclass(frozen=True)
class Interface:
    """A network interface and its raw addresses in the order the OS reports them."""

    name: str
    addresses: Tuple[str, ...] = ()


class AddressPair(NamedTuple):
    ipv4: str = ""
    ipv6: str = ""


def current_platform() -> str:
    """Map ``sys.platform`` to one of the platform families in FAVORITE_RULES."""
    if sys.platform.startswith(("win32", "cygwin")):
        return WINDOWS
    if sys.platform == "darwin":
        return DARWIN
    if sys.platform.startswith("linux"):
        return LINUX
    return sys.platform


def is_favorite_interface(name: str, platform: str) -> bool:
    """Check whether ``name`` is a typical main interface (like "eth0" on Linux) for ``platform``."""
    rule = FAVORITE_RULES.get(platform)
    if rule is None:
        return False
    if name in rule.exact:
        return True
    return any(len(name) >= len(prefix) and name[: len(prefix)] == prefix for prefix in rule.prefixes)


def _prefix_length(netmask: Optional[str]) -> Optional[int]:
    if not netmask:
        return None
    try:
        return bin(int(ipaddress.ip_address(netmask))).count("1")
    except ValueError:
        return None


def _raw_addresses(entries) -> Tuple[str, ...]:
    """Turn psutil's address entries into CIDR strings, skipping link-layer entries."""
    raw = []
    for entry in entries:
        if entry.family not in _IP_FAMILIES or not entry.address:
            continue
        address = entry.address.split("%", 1)[0]
        prefix = _prefix_length(entry.netmask)
        raw.append(address if prefix is None else f"{address}/{prefix}")
    return tuple(raw)


def list_interface_names() -> List[str]:
    """List the host's interface names in the order the OS reports them."""
    try:
        return list(psutil.net_if_stats())
    except (OSError, RuntimeError) as e:
        raise InterfaceError(f"could not list network interfaces: {e}") from e


def load_interface(name: str) -> Interface:
    """Read the addresses bound to interface ``name``.

    An interface without any address information simply has no addresses.
    """
    try:
        if_addrs = psutil.net_if_addrs()
    except (OSError, RuntimeError) as e:
        raise AddressLookupError(f"could not read addresses of interface {name!r}: {e}") from e
    return Interface(name, _raw_addresses(if_addrs.get(name, ())))


def list_interfaces() -> List[Interface]:
    """Return every interface together with its addresses."""
    return [load_interface(name) for name in list_interface_names()]


def resolve_interface_addresses(iface: Interface) -> AddressPair:
    """Return the first IPv4 and the first IPv6 address of an interface.

    The interesting interfaces like eth0 and wlan0 typically have one address of
    each family, but some have only one of them and deactivated ones have none.
    On Windows an interface like "Ethernet 3" can have many addresses, and the
    main IPv4 address doesn't have to be one of the first two.
    """
    ipv4 = ipv6 = ""
    for raw in iface.addresses:
        if ipv4 and ipv6:
            break
        address = raw.split("/", 1)[0]
        if ":" in address:
            ipv6 = ipv6 or address
        else:
            ipv4 = ipv4 or address
    return AddressPair(ipv4, ipv6)


def determine_lan_ip(platform: Optional[str] = None) -> str:
    """Return the IPv4 address of the first favorite interface, or "" when there is none.

    Raises InterfaceError when the interfaces can't be listed and
    AddressLookupError when the favorite's addresses can't be read.
    """
    if platform is None:
        platform = current_platform()
    for name in list_interface_names():
        if is_favorite_interface(name, platform):
            pair = resolve_interface_addresses(load_interface(name))
            logger.debug("Favorite interface %s has addresses %s", name, pair)
            return pair.ipv4
    logger.debug("No favorite interface found for platform %s", platform)
    return ""
