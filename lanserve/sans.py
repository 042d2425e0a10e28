"""
Subject Alternative Names for the temporary TLS certificate.
"""

import logging
import socket
from typing import List, Optional

from . import netinfo
from .errors import InterfaceError

logger = logging.getLogger(__name__)

HOSTNAME_SUFFIXES = (".local", ".lan", ".home")


def build_default_sans(platform: Optional[str] = None, lan_ip: Optional[str] = None) -> List[str]:
    """Return DNS names and IP addresses that might be used to reach this host.

    Covers access from the host itself and from other machines in the LAN.
    A missing hostname or interface listing only shortens the list. Pass
    ``lan_ip`` when it was already resolved; otherwise it is looked up here.
    """
    result = ["localhost", "127.0.0.1"]

    try:
        hostname = socket.gethostname()
    except OSError as e:
        logger.debug("Hostname unavailable, skipping hostname SANs: %s", e)
        hostname = ""
    if hostname:
        result.append(hostname)
        for suffix in HOSTNAME_SUFFIXES:
            result.extend([hostname + suffix, "*." + hostname + suffix])

    if lan_ip is None:
        try:
            lan_ip = netinfo.determine_lan_ip(platform)
        except InterfaceError as e:
            logger.debug("LAN IP unavailable, skipping it in SANs: %s", e)
            lan_ip = ""
    if lan_ip:
        result.append(lan_ip)

    return result
