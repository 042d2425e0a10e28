"""
Startup and shutdown of the lanserve file server.
"""

import contextlib
import logging
import sys
from typing import NamedTuple, Tuple

from . import netinfo
from .certs import create_ssl_context, temporary_certificate
from .config import ServeConfig, config_path_from_env, load_config
from .errors import InterfaceError, LanserveError
from .sans import build_default_sans
from .server import FileServer
from .table import format_interface_table

logger = logging.getLogger(__name__)

WILDCARD_ADDRESSES = ("", "0.0.0.0", "::")


def print_interface_table():
    """Print every interface with its first IPv4 and IPv6 address."""
    try:
        interfaces = netinfo.list_interfaces()
    except InterfaceError as e:
        logger.warning("Could not list network interfaces: %s", e)
        return
    print(format_interface_table(interfaces))
    print()


class StartupInfo(NamedTuple):
    """Addresses resolved once before the listener binds, read-only afterwards."""

    lan_ip: str
    sans: Tuple[str, ...]


def resolve_startup(config: ServeConfig) -> StartupInfo:
    """Resolve the LAN IP once and derive the certificate SANs from it."""
    lan_ip = ""
    if config.https or config.bind_address in WILDCARD_ADDRESSES:
        try:
            lan_ip = netinfo.determine_lan_ip()
        except InterfaceError as e:
            logger.debug("Could not determine LAN IP: %s", e)
    sans = tuple(build_default_sans(lan_ip=lan_ip)) if config.https else ()
    return StartupInfo(lan_ip, sans)


def shareable_urls(server: FileServer, lan_ip: str = ""):
    """URLs to reach the server, the LAN one first when bound to all interfaces."""
    host, _ = server.address
    if host not in WILDCARD_ADDRESSES:
        return [server.url_for(host)]
    urls = []
    if lan_ip:
        urls.append(server.url_for(lan_ip))
    urls.append(server.url_for("localhost"))
    return urls


def run(config: ServeConfig):
    """Serve ``config.directory`` until interrupted."""
    print_interface_table()

    startup = resolve_startup(config)
    if config.dry_run:
        if startup.sans:
            print("Certificate would cover: " + ", ".join(startup.sans))
        return

    with contextlib.ExitStack() as stack:
        ssl_context = None
        if config.https:
            cert_path, key_path = stack.enter_context(temporary_certificate(startup.sans))
            ssl_context = create_ssl_context(cert_path, key_path)

        server = FileServer(config, ssl_context)
        server.start()
        stack.callback(server.stop)

        logger.info("🖥️  Serving %s", config.directory)
        logger.info("📱 Open one of these in a browser:")
        for url in shareable_urls(server, startup.lan_ip):
            logger.info("   %s", url)
        if config.https:
            logger.info("💡 The certificate is self-signed, browsers will ask you to accept it")
        if config.auth_enabled:
            logger.info("🔒 Basic auth is enabled for user %s", config.username)

        server.wait()


def main_cli():
    """Load the configuration and run the server, exiting non-zero on fatal errors."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        config = ServeConfig.from_dict(load_config(config_path_from_env()))
        logging.getLogger().setLevel(getattr(logging, config.log_level.upper()))
        run(config)
    except LanserveError as e:
        logger.error("🚨 %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("👋 lanserve stopped")


if __name__ == "__main__":
    main_cli()
