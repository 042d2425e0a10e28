"""
lanserve - share a directory over HTTP(S) on the local network.
"""

from .config import ServeConfig, load_config
from .netinfo import AddressPair, Interface, determine_lan_ip, is_favorite_interface, resolve_interface_addresses
from .sans import build_default_sans
from .server import FileServer, build_handler

__version__ = "0.1.0"
__all__ = [
    "AddressPair",
    "FileServer",
    "Interface",
    "ServeConfig",
    "build_default_sans",
    "build_handler",
    "determine_lan_ip",
    "is_favorite_interface",
    "load_config",
    "resolve_interface_addresses",
]
