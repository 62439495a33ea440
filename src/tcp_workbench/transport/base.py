from __future__ import annotations

import contextlib
import select
import socket
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Final, Literal, Protocol, TypeAlias

from ..codec import FormatError, hex_dump
from ..config import Transaction

ConnectionStatus: TypeAlias = Literal["disconnected", "connecting", "connected", "listening", "error"]
SendResult: TypeAlias = Literal["sent", "not_connected", "unsupported", "failed"]

READ_BUFFER_SIZE: Final[int] = 4096
POLL_INTERVAL_S: Final[float] = 0.05
ACCEPT_POLL_INTERVAL_S: Final[float] = 0.1
JOIN_TIMEOUT_S: Final[float] = 1.0


class TransportError(Exception):
    """Base class for connection lifecycle errors raised from `start()`."""


class ConnectError(TransportError):
    """Raised when an outbound connect fails."""


class BindError(TransportError):
    """Raised when a listener cannot bind (port in use, permission denied)."""


class ConnectionListener(Protocol):
    """Receiver of a connection's notifications.

    Callbacks may arrive on background threads. Implementations must be fast and must
    not raise.
    """

    def connection_log(self, message: str) -> None:
        """A human-readable log line."""

    def connection_status(self, status: ConnectionStatus) -> None:
        """The status changed (only fired on actual transitions)."""

    def connection_error(self, message: str) -> None:
        """A lifecycle or read failure."""

    def connection_data(self, data: bytes) -> None:
        """Inbound bytes from the peer."""


def peer_label(address: object) -> str:
    if isinstance(address, tuple) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address)


def close_socket(sock: socket.socket) -> None:
    # shutdown() wakes threads blocked on the socket; close() alone does not on Linux.
    with contextlib.suppress(OSError):
        sock.shutdown(socket.SHUT_RDWR)
    with contextlib.suppress(OSError):
        sock.close()


def join_thread(thread: threading.Thread | None) -> None:
    if thread is None or thread is threading.current_thread():
        return
    thread.join(timeout=JOIN_TIMEOUT_S)


class Connection(ABC):
    """One socket lifecycle in a given role (client, server or proxy)."""

    def __init__(self, listener: ConnectionListener) -> None:
        self._listener = listener
        self._status: ConnectionStatus = "disconnected"
        self._status_lock = threading.Lock()

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def bound_port(self) -> int | None:
        """Locally bound listening port, for roles that listen."""

        return None

    def _set_status(self, status: ConnectionStatus) -> None:
        with self._status_lock:
            if self._status == status:
                return
            self._status = status
        self._listener.connection_status(status)

    def _log(self, message: str) -> None:
        self._listener.connection_log(message)

    def _error(self, message: str) -> None:
        self._listener.connection_error(message)

    @abstractmethod
    def start(self) -> None:
        """Allocate sockets and start background work; a no-op while already running.

        Raises:
            TransportError: If the socket cannot be connected or bound. Status is
                `error` and the error notification has already fired.
        """

    @abstractmethod
    def stop(self) -> None:
        """Cancel background work, release sockets and return to `disconnected`."""

    @abstractmethod
    def send(self, transaction: Transaction) -> SendResult:
        """Encode and write one transaction."""

    def _send_on(self, sock: socket.socket, transaction: Transaction) -> SendResult:
        try:
            data = transaction.to_bytes()
            sock.sendall(data)
        except (FormatError, OSError) as exc:
            self._log(f"Send error: {exc}")
            return "failed"
        self._log(f"Sent ({transaction.encoding}) {len(data)} bytes:\n{hex_dump(data)}")
        return "sent"

    def _read_loop(
        self,
        sock: socket.socket,
        cancel: threading.Event,
        is_current: Callable[[], bool],
    ) -> None:
        """Poll `sock` until cancelled, the peer closes, or a read fails.

        A zero-length read is a graceful close (`disconnected`); an exception while the
        socket is still current is a read failure (`error`). Sockets that were replaced
        or closed locally end the loop silently.
        """

        while not cancel.is_set():
            try:
                readable, _, _ = select.select([sock], [], [], POLL_INTERVAL_S)
                if not readable:
                    continue
                data = sock.recv(READ_BUFFER_SIZE)
            except (OSError, ValueError) as exc:
                if cancel.is_set() or not is_current():
                    return
                self._log(f"Read error: {exc}")
                self._set_status("error")
                self._error(f"Read error: {exc}")
                return
            if not data:
                if is_current() and not cancel.is_set():
                    self._log("Remote closed the connection.")
                    self._set_status("disconnected")
                return
            self._listener.connection_data(data)
