from __future__ import annotations

import socket
import threading
import time
from collections.abc import Callable, Iterator

import pytest

from tcp_workbench.observer import LogEntry
from tcp_workbench.transport.base import ConnectionStatus


def _wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class RecordingObserver:
    """Instance observer that keeps everything it is told."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.entries: list[LogEntry] = []
        self.errors: list[str] = []
        self.status_changes = 0

    def on_log(self, entry: LogEntry) -> None:
        with self._lock:
            self.entries.append(entry)

    def on_status_changed(self) -> None:
        with self._lock:
            self.status_changes += 1

    def on_error(self, message: str) -> None:
        with self._lock:
            self.errors.append(message)

    @property
    def messages(self) -> list[str]:
        with self._lock:
            return [entry.message for entry in self.entries]


class RecordingListener:
    """Connection listener that keeps everything it is told."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.logs: list[str] = []
        self.statuses: list[ConnectionStatus] = []
        self.errors: list[str] = []
        self.chunks: list[bytes] = []

    def connection_log(self, message: str) -> None:
        with self._lock:
            self.logs.append(message)

    def connection_status(self, status: ConnectionStatus) -> None:
        with self._lock:
            self.statuses.append(status)

    def connection_error(self, message: str) -> None:
        with self._lock:
            self.errors.append(message)

    def connection_data(self, data: bytes) -> None:
        with self._lock:
            self.chunks.append(data)

    @property
    def received(self) -> bytes:
        with self._lock:
            return b"".join(self.chunks)

    def logs_containing(self, needle: str) -> list[str]:
        with self._lock:
            return [line for line in self.logs if needle in line]


class SinkServer:
    """Loopback server that accepts connections and collects every byte received."""

    def __init__(self) -> None:
        self._sock = socket.create_server(("127.0.0.1", 0))
        self.port = int(self._sock.getsockname()[1])
        self._lock = threading.Lock()
        self._data = bytearray()
        self.accepted = 0
        self.peers: list[socket.socket] = []
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        self._sock.settimeout(0.05)
        while not self._stop.is_set():
            try:
                conn, _ = self._sock.accept()
            except TimeoutError:
                continue
            except OSError:
                return
            with self._lock:
                self.accepted += 1
                self.peers.append(conn)
            threading.Thread(target=self._drain, args=(conn,), daemon=True).start()

    def _drain(self, conn: socket.socket) -> None:
        conn.settimeout(0.05)
        while not self._stop.is_set():
            try:
                chunk = conn.recv(65536)
            except TimeoutError:
                continue
            except OSError:
                return
            if not chunk:
                return
            with self._lock:
                self._data.extend(chunk)

    @property
    def data(self) -> bytes:
        with self._lock:
            return bytes(self._data)

    def close(self) -> None:
        self._stop.set()
        self._sock.close()
        for peer in self.peers:
            peer.close()
        self._thread.join(timeout=1)


def closed_port() -> int:
    """Return a loopback port that nothing is listening on (best-effort)."""

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    return _wait_until


@pytest.fixture
def recorder() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def sink_server() -> Iterator[SinkServer]:
    server = SinkServer()
    try:
        yield server
    finally:
        server.close()


@pytest.fixture
def unused_port() -> int:
    return closed_port()
