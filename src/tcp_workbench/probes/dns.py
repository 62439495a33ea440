from __future__ import annotations

import socket


def resolve_host(host_name: str) -> list[str]:
    """Resolve a host name to its addresses (IPv4 and IPv6), best-effort.

    Returns an empty list when resolution fails.
    """

    try:
        infos = socket.getaddrinfo(host_name, None, proto=socket.IPPROTO_TCP)
    except (OSError, UnicodeError):
        return []
    addresses: list[str] = []
    for _family, _type, _proto, _canon, sockaddr in infos:
        address = str(sockaddr[0])
        if address not in addresses:
            addresses.append(address)
    return addresses


def reverse_lookup(address: str) -> str | None:
    try:
        host_name, _aliases, _addresses = socket.gethostbyaddr(address)
    except (OSError, UnicodeError):
        return None
    return host_name
