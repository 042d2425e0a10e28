"""
Exceptions raised by lanserve.
"""


class LanserveError(Exception):
    """Base class for all lanserve errors."""


class ConfigError(LanserveError):
    """The configuration is invalid."""


class InterfaceError(LanserveError):
    """The host's network interfaces could not be listed."""


class AddressLookupError(LanserveError):
    """The addresses of a selected network interface could not be read.

    This is fatal: a broken address table would advertise misleading URLs.
    """


class CertificateError(LanserveError):
    """A temporary TLS certificate could not be generated."""


class ServerError(LanserveError):
    """The listener could not be started."""
