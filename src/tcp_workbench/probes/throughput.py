from __future__ import annotations

import logging
import random
import socket
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

logger = logging.getLogger(__name__)

THROUGHPUT_BUFFER_SIZE: Final[int] = 64 * 1024


@dataclass(frozen=True, slots=True)
class ThroughputResult:
    total_bytes: int
    elapsed_s: float
    bytes_per_second: float
    success: bool


FAILED_RESULT: Final[ThroughputResult] = ThroughputResult(0, 0.0, 0.0, False)


def run_throughput_test(
    host: str,
    port: int,
    duration_s: float,
    on_progress: Callable[[int], None] | None = None,
    *,
    cancel: threading.Event | None = None,
    buffer_size: int = THROUGHPUT_BUFFER_SIZE,
    connect_timeout_s: float = 5.0,
) -> ThroughputResult:
    """Write random bytes to `host:port` as fast as possible for `duration_s` seconds.

    `on_progress` receives the running byte total after every write. A write still
    blocked at the deadline ends the test normally; only fully written buffers count.
    Any connect or I/O failure yields `success=False` with zero totals instead of raising.
    """

    payload = random.randbytes(buffer_size)
    try:
        with socket.create_connection((host, port), timeout=connect_timeout_s) as sock:
            total = 0
            started = time.monotonic()
            deadline = started + duration_s
            while (remaining := deadline - time.monotonic()) > 0:
                if cancel is not None and cancel.is_set():
                    break
                # Writes are bounded by the time left before the deadline.
                sock.settimeout(remaining)
                try:
                    sock.sendall(payload)
                except TimeoutError:
                    break
                total += len(payload)
                if on_progress is not None:
                    on_progress(total)
            elapsed = time.monotonic() - started
    except OSError as exc:
        logger.warning("Throughput test against %s:%s failed: %s", host, port, exc)
        return FAILED_RESULT

    rate = total / elapsed if elapsed > 0 else 0.0
    return ThroughputResult(
        total_bytes=total,
        elapsed_s=elapsed,
        bytes_per_second=rate,
        success=True,
    )
