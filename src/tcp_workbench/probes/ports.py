from __future__ import annotations

import contextlib
import socket
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Final

from ..config import ConfigError

MAX_CONCURRENT_PROBES: Final[int] = 100
DEFAULT_TIMEOUT_MS: Final[int] = 200

# Display only; never affects scan behavior.
PORT_DESCRIPTIONS: Final[dict[int, str]] = {
    20: "FTP (Data)",
    21: "FTP (Control)",
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    67: "DHCP (Server)",
    68: "DHCP (Client)",
    69: "TFTP",
    80: "HTTP",
    110: "POP3",
    123: "NTP",
    137: "NetBIOS Name Service",
    138: "NetBIOS Datagram Service",
    139: "NetBIOS Session Service",
    143: "IMAP",
    161: "SNMP",
    179: "BGP",
    389: "LDAP",
    443: "HTTPS",
    445: "Microsoft-DS (SMB)",
    465: "SMTPS",
    514: "Syslog",
    515: "LPD",
    587: "SMTP (Submission)",
    631: "IPP (CUPS)",
    636: "LDAPS",
    873: "Rsync",
    993: "IMAPS",
    995: "POP3S",
    1080: "SOCKS Proxy",
    1433: "MS SQL",
    1521: "Oracle DB",
    2049: "NFS",
    3000: "Gitea / Node.js",
    3306: "MySQL",
    3389: "RDP",
    5000: "Flask / Docker Registry",
    5432: "PostgreSQL",
    5900: "VNC",
    6379: "Redis",
    8000: "HTTP Alt",
    8080: "HTTP Proxy / Tomcat",
    8443: "HTTPS Alt",
    9000: "Portainer / PHP-FPM",
    9090: "Prometheus / Cockpit",
    9200: "Elasticsearch",
    27017: "MongoDB",
}


@dataclass(frozen=True, slots=True)
class ScanResult:
    port: int
    is_open: bool


def get_port_description(port: int) -> str:
    return PORT_DESCRIPTIONS.get(port, "Unknown Service")


def scan_port(host: str, port: int, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> bool:
    """Return True if a TCP connect to `host:port` completes within `timeout_ms`.

    Timeouts, refusals and any other socket failure count as closed.
    """

    try:
        with contextlib.closing(
            socket.create_connection((host, port), timeout=max(timeout_ms, 1) / 1000.0)
        ):
            return True
    except (OSError, ValueError):
        return False


def validate_port_range(start_port: int, end_port: int) -> None:
    if not (1 <= start_port <= 0xFFFF) or not (1 <= end_port <= 0xFFFF):
        raise ConfigError(f"Ports must be in range 1..65535, got {start_port}..{end_port}")
    if start_port > end_port:
        raise ConfigError(f"Start port {start_port} is greater than end port {end_port}")


def scan_range(
    host: str,
    start_port: int,
    end_port: int,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    on_progress: Callable[[ScanResult], None] | None = None,
    *,
    max_concurrency: int = MAX_CONCURRENT_PROBES,
) -> list[ScanResult]:
    """Probe every port in `start_port..end_port` (inclusive).

    At most `max_concurrency` connects are in flight at once. `on_progress` fires once
    per finished probe in completion order; the returned list is sorted by port.

    Raises:
        ConfigError: If the port range is invalid.
    """

    validate_port_range(start_port, end_port)
    if max_concurrency <= 0:
        raise ConfigError("max_concurrency must be > 0")

    ports = range(start_port, end_port + 1)
    results: list[ScanResult] = []
    with ThreadPoolExecutor(
        max_workers=min(max_concurrency, len(ports)),
        thread_name_prefix="port-scan",
    ) as pool:
        futures = {pool.submit(scan_port, host, port, timeout_ms): port for port in ports}
        for future in as_completed(futures):
            result = ScanResult(port=futures[future], is_open=future.result())
            results.append(result)
            if on_progress is not None:
                on_progress(result)
    results.sort(key=lambda r: r.port)
    return results
