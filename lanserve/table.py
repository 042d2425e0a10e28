"""
Console table of the host's interfaces and their addresses.
"""

from typing import Iterable, List

from .netinfo import Interface, resolve_interface_addresses

HEADER = ("Interface", "IPv4", "IPv6")


def interface_rows(interfaces: Iterable[Interface]) -> List[tuple]:
    rows = []
    for iface in interfaces:
        pair = resolve_interface_addresses(iface)
        rows.append((iface.name, pair.ipv4, pair.ipv6))
    return rows


def format_table(rows: Iterable[tuple], header=HEADER) -> str:
    """Format rows as left-aligned columns separated by " | "."""
    rows = [header] + [tuple(str(cell) for cell in row) for row in rows]
    widths = [max(len(row[i]) for row in rows) for i in range(len(header))]
    lines = [" | ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip() for row in rows]
    lines.insert(1, "-+-".join("-" * width for width in widths))
    return "\n".join(lines)


def format_interface_table(interfaces: Iterable[Interface]) -> str:
    return format_table(interface_rows(interfaces))
