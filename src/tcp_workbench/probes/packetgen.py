from __future__ import annotations

import socket
import threading
from collections.abc import Callable

from ..codec import FormatError, decode_hex


def run_packet_generator(
    host: str,
    port: int,
    hex_payload: str,
    iterations: int,
    delay_ms: int,
    on_log: Callable[[str], None] | None = None,
    *,
    cancel: threading.Event | None = None,
    connect_timeout_s: float = 5.0,
) -> int:
    """Replay one hex payload `iterations` times over a single connection.

    Waits `delay_ms` between writes (not after the last one). Invalid hex is reported
    before connecting; connection and I/O errors are reported through `on_log`.

    Returns:
        Number of packets actually written.
    """

    def log(message: str) -> None:
        if on_log is not None:
            on_log(f"[PacketGen] {message}")

    try:
        data = decode_hex(hex_payload)
    except FormatError as exc:
        log(f"Invalid hex data: {exc}")
        return 0

    cancel = cancel or threading.Event()
    sent = 0
    try:
        log(f"Connecting to {host}:{port}...")
        with socket.create_connection((host, port), timeout=connect_timeout_s) as sock:
            log(f"Connected. Sending {iterations} packets...")
            for index in range(iterations):
                if cancel.is_set():
                    break
                sock.sendall(data)
                sent += 1
                log(f"Sent packet {index + 1}/{iterations} ({len(data)} bytes)")
                if delay_ms > 0 and index < iterations - 1 and cancel.wait(delay_ms / 1000.0):
                    break
        log("Done.")
    except OSError as exc:
        log(f"Error: {exc}")
    return sent
