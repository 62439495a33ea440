from __future__ import annotations

import socket
import threading

from ..config import Transaction
from .base import (
    ConnectError,
    Connection,
    ConnectionListener,
    SendResult,
    close_socket,
    join_thread,
)


class ClientConnection(Connection):
    """Outbound TCP connection with a background reader."""

    def __init__(
        self,
        host: str,
        port: int,
        listener: ConnectionListener,
        *,
        connect_timeout_s: float = 5.0,
    ) -> None:
        super().__init__(listener)
        self._host = host
        self._port = port
        self._connect_timeout_s = connect_timeout_s
        self._sock: socket.socket | None = None
        self._cancel = threading.Event()
        self._reader: threading.Thread | None = None

    def start(self) -> None:
        if self.status == "connected":
            return
        # A socket left behind by a remote close is released before reconnecting.
        self._release()
        self._cancel = threading.Event()
        self._set_status("connecting")
        try:
            # Blocking connect so the caller learns about failures immediately.
            sock = socket.create_connection(
                (self._host, self._port), timeout=self._connect_timeout_s
            )
        except OSError as exc:
            self._set_status("error")
            self._error(str(exc))
            self._log(f"Failed to connect: {exc}")
            raise ConnectError(f"Failed to connect to {self._host}:{self._port}: {exc}") from exc

        sock.settimeout(None)
        self._sock = sock
        self._set_status("connected")
        self._log("Connected.")
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(sock, self._cancel, lambda: self._sock is sock),
            name=f"client-reader-{self._host}:{self._port}",
            daemon=True,
        )
        self._reader.start()

    def _release(self) -> None:
        self._cancel.set()
        sock, self._sock = self._sock, None
        if sock is not None:
            close_socket(sock)
        join_thread(self._reader)
        self._reader = None

    def stop(self) -> None:
        self._release()
        self._set_status("disconnected")
        self._log("Disconnected.")

    def send(self, transaction: Transaction) -> SendResult:
        sock = self._sock
        if sock is None or self.status != "connected":
            self._log("Cannot send: Not connected.")
            return "not_connected"
        return self._send_on(sock, transaction)
