from __future__ import annotations

import logging
import select
import socket
import threading

from ..config import Transaction
from .base import (
    ACCEPT_POLL_INTERVAL_S,
    BindError,
    Connection,
    ConnectionListener,
    SendResult,
    close_socket,
    join_thread,
    peer_label,
)

logger = logging.getLogger(__name__)


class ServerConnection(Connection):
    """Listening socket serving one client at a time.

    A newly accepted client replaces (and closes) the previous one.
    """

    def __init__(
        self,
        port: int,
        listener: ConnectionListener,
        *,
        bind_host: str = "",
    ) -> None:
        super().__init__(listener)
        self._port = port
        self._bind_host = bind_host
        self._server_sock: socket.socket | None = None
        self._client: socket.socket | None = None
        self._client_lock = threading.Lock()
        self._cancel = threading.Event()
        self._acceptor: threading.Thread | None = None
        self._readers: list[threading.Thread] = []

    @property
    def bound_port(self) -> int | None:
        sock = self._server_sock
        if sock is None:
            return None
        return int(sock.getsockname()[1])

    def start(self) -> None:
        if self._server_sock is not None:
            return
        self._cancel = threading.Event()
        try:
            server_sock = socket.create_server((self._bind_host, self._port))
        except OSError as exc:
            self._set_status("error")
            self._error(str(exc))
            self._log(f"Failed to start server: {exc}")
            raise BindError(f"Failed to listen on port {self._port}: {exc}") from exc

        self._server_sock = server_sock
        self._set_status("listening")
        self._log(f"Listening on port {self.bound_port}...")
        self._acceptor = threading.Thread(
            target=self._accept_loop,
            args=(server_sock, self._cancel),
            name=f"server-accept-{self.bound_port}",
            daemon=True,
        )
        self._acceptor.start()

    def _accept_loop(self, server_sock: socket.socket, cancel: threading.Event) -> None:
        while not cancel.is_set():
            try:
                readable, _, _ = select.select([server_sock], [], [], ACCEPT_POLL_INTERVAL_S)
                if not readable:
                    continue
                client, address = server_sock.accept()
            except (OSError, ValueError) as exc:
                if cancel.is_set():
                    return
                self._log(f"Server accept error: {exc}")
                logger.warning("Accept failed on port %s: %s", self._port, exc)
                cancel.wait(ACCEPT_POLL_INTERVAL_S)
                continue

            client.settimeout(None)
            self._log(f"Accepted connection from {peer_label(address)}")
            with self._client_lock:
                previous, self._client = self._client, client
            if previous is not None:
                close_socket(previous)
            self._set_status("connected")

            reader = threading.Thread(
                target=self._serve_client,
                args=(client, cancel),
                name=f"server-reader-{peer_label(address)}",
                daemon=True,
            )
            self._readers = [t for t in self._readers if t.is_alive()]
            self._readers.append(reader)
            reader.start()

    def _serve_client(self, client: socket.socket, cancel: threading.Event) -> None:
        self._read_loop(client, cancel, lambda: self._client is client)
        with self._client_lock:
            if self._client is client:
                self._client = None
        close_socket(client)

    def stop(self) -> None:
        self._cancel.set()
        with self._client_lock:
            client, self._client = self._client, None
        if client is not None:
            close_socket(client)
        server_sock, self._server_sock = self._server_sock, None
        if server_sock is not None:
            close_socket(server_sock)
        join_thread(self._acceptor)
        self._acceptor = None
        for reader in self._readers:
            join_thread(reader)
        self._readers = []
        self._set_status("disconnected")
        self._log("Server stopped.")

    def send(self, transaction: Transaction) -> SendResult:
        client = self._client
        if client is None:
            self._log("Cannot send: No client connected.")
            return "not_connected"
        return self._send_on(client, transaction)
