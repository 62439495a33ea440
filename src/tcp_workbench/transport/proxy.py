from __future__ import annotations

import logging
import select
import socket
import threading
from collections.abc import Callable
from typing import Final

from ..codec import escape_ascii, to_hex_string
from ..config import Transaction
from .base import (
    ACCEPT_POLL_INTERVAL_S,
    POLL_INTERVAL_S,
    BindError,
    Connection,
    ConnectionListener,
    SendResult,
    close_socket,
    join_thread,
    peer_label,
)

logger = logging.getLogger(__name__)

FORWARD_BUFFER_SIZE: Final[int] = 8192


class ProxyForwarder:
    """Port forwarder: accepts local clients and splices each to a fresh remote connection.

    Every accepted client gets its own tunnel (two copy loops). A tunnel ends as soon as
    either direction finishes, after which both of its sockets are closed. The listener
    keeps accepting until `stop()`.
    """

    def __init__(
        self,
        local_port: int,
        remote_host: str,
        remote_port: int,
        *,
        on_log: Callable[[str], None],
        bind_host: str = "",
        connect_timeout_s: float = 5.0,
    ) -> None:
        self._local_port = local_port
        self._remote_host = remote_host
        self._remote_port = remote_port
        self._on_log = on_log
        self._bind_host = bind_host
        self._connect_timeout_s = connect_timeout_s
        self._server_sock: socket.socket | None = None
        self._cancel = threading.Event()
        self._acceptor: threading.Thread | None = None
        self._sessions: set[threading.Thread] = set()
        self._sessions_lock = threading.Lock()

    @property
    def bound_port(self) -> int | None:
        sock = self._server_sock
        if sock is None:
            return None
        return int(sock.getsockname()[1])

    @property
    def active_sessions(self) -> int:
        with self._sessions_lock:
            return len(self._sessions)

    def start(self) -> None:
        """Bind the local listener and begin accepting.

        Does nothing while already listening.

        Raises:
            OSError: If the local port cannot be bound.
        """

        if self._server_sock is not None:
            return
        self._cancel = threading.Event()
        self._server_sock = socket.create_server((self._bind_host, self._local_port))
        self._on_log(
            f"Proxy started: Listening on {self.bound_port} -> "
            f"{self._remote_host}:{self._remote_port}"
        )
        self._acceptor = threading.Thread(
            target=self._accept_loop,
            args=(self._server_sock, self._cancel),
            name=f"proxy-accept-{self.bound_port}",
            daemon=True,
        )
        self._acceptor.start()

    def stop(self) -> None:
        self._cancel.set()
        server_sock, self._server_sock = self._server_sock, None
        if server_sock is not None:
            close_socket(server_sock)
        join_thread(self._acceptor)
        self._acceptor = None
        with self._sessions_lock:
            sessions = list(self._sessions)
        for session in sessions:
            join_thread(session)
        self._on_log("Proxy stopped.")

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
                self._on_log(f"Proxy Accept Error: {exc}")
                logger.warning("Proxy accept failed on port %s: %s", self._local_port, exc)
                cancel.wait(ACCEPT_POLL_INTERVAL_S)
                continue

            label = peer_label(address)
            self._on_log(f"Accepted connection from {label}")
            session = threading.Thread(
                target=self._run_session,
                args=(client, label, cancel),
                name=f"proxy-session-{label}",
                daemon=True,
            )
            with self._sessions_lock:
                self._sessions.add(session)
            session.start()

    def _run_session(self, local: socket.socket, label: str, cancel: threading.Event) -> None:
        remote: socket.socket | None = None
        try:
            local.settimeout(None)
            remote = socket.create_connection(
                (self._remote_host, self._remote_port), timeout=self._connect_timeout_s
            )
            remote.settimeout(None)
            self._on_log(
                f"Connected to remote {self._remote_host}:{self._remote_port} for client {label}"
            )
            done = threading.Event()
            pumps = [
                threading.Thread(
                    target=self._pump,
                    args=(local, remote, f"[{label} -> Remote]", done, cancel),
                    daemon=True,
                ),
                threading.Thread(
                    target=self._pump,
                    args=(remote, local, f"[Remote -> {label}]", done, cancel),
                    daemon=True,
                ),
            ]
            for pump in pumps:
                pump.start()
            # First direction to finish ends the tunnel.
            done.wait()
            close_socket(local)
            close_socket(remote)
            for pump in pumps:
                join_thread(pump)
        except OSError as exc:
            self._on_log(f"Proxy Error ({label}): {exc}")
        finally:
            close_socket(local)
            if remote is not None:
                close_socket(remote)
            self._on_log(f"Connection closed for {label}")
            with self._sessions_lock:
                self._sessions.discard(threading.current_thread())

    def _pump(
        self,
        source: socket.socket,
        destination: socket.socket,
        prefix: str,
        done: threading.Event,
        cancel: threading.Event,
    ) -> None:
        try:
            while not done.is_set() and not cancel.is_set():
                readable, _, _ = select.select([source], [], [], POLL_INTERVAL_S)
                if not readable:
                    continue
                chunk = source.recv(FORWARD_BUFFER_SIZE)
                if not chunk:
                    break
                destination.sendall(chunk)
                self._on_log(
                    f"{prefix} Forwarded {len(chunk)} bytes: {escape_ascii(chunk)} "
                    f"(Hex: {to_hex_string(chunk)})"
                )
        except (OSError, ValueError) as exc:
            logger.debug("%s stream ended: %s", prefix, exc)
        finally:
            done.set()


class ProxyConnection(Connection):
    """Connection adapter around `ProxyForwarder`; manual sends are not supported."""

    def __init__(
        self,
        local_port: int,
        remote_host: str,
        remote_port: int,
        listener: ConnectionListener,
        *,
        bind_host: str = "",
        connect_timeout_s: float = 5.0,
    ) -> None:
        super().__init__(listener)
        self._forwarder = ProxyForwarder(
            local_port,
            remote_host,
            remote_port,
            on_log=self._log,
            bind_host=bind_host,
            connect_timeout_s=connect_timeout_s,
        )
        self._local_port = local_port
        self._running = False

    @property
    def bound_port(self) -> int | None:
        return self._forwarder.bound_port

    @property
    def active_sessions(self) -> int:
        return self._forwarder.active_sessions

    def start(self) -> None:
        if self._running:
            return
        try:
            self._forwarder.start()
        except OSError as exc:
            self._set_status("error")
            self._error(str(exc))
            self._log(f"Failed to start proxy: {exc}")
            raise BindError(f"Failed to listen on port {self._local_port}: {exc}") from exc
        self._running = True
        self._set_status("listening")

    def stop(self) -> None:
        if self._running:
            self._forwarder.stop()
            self._running = False
        self._set_status("disconnected")

    def send(self, transaction: Transaction) -> SendResult:  # noqa: ARG002
        self._log("Manual send not supported in Proxy mode.")
        return "unsupported"
