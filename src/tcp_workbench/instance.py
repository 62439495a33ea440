from __future__ import annotations

import logging
import random
import threading
from datetime import datetime
from types import TracebackType

from .codec import hex_dump
from .config import ConnectionConfig, Transaction
from .observer import InstanceObserver, LogEntry
from .scheduler import TransactionScheduler
from .transport.base import Connection, ConnectionStatus, SendResult, TransportError
from .transport.client import ClientConnection
from .transport.proxy import ProxyConnection
from .transport.server import ServerConnection

logger = logging.getLogger(__name__)


def build_connection(
    config: ConnectionConfig,
    instance: ConnectionInstance,
    *,
    connect_timeout_s: float = 5.0,
) -> Connection:
    match config.role:
        case "client":
            return ClientConnection(
                config.host, config.port, instance, connect_timeout_s=connect_timeout_s
            )
        case "server":
            return ServerConnection(config.port, instance)
        case "proxy":
            assert config.remote_host is not None and config.remote_port is not None
            return ProxyConnection(
                config.port,
                config.remote_host,
                config.remote_port,
                instance,
                connect_timeout_s=connect_timeout_s,
            )
    raise ValueError(f"Unsupported role: {config.role!r}")


class ConnectionInstance:
    """A connection plus its auto-transaction scheduler and log sink.

    Lifecycle: `start()` opens sockets and begins background work, `stop()` returns to
    `disconnected` (and may be followed by another `start()`), `dispose()` is terminal.

    Sends issued manually and by the scheduler are not serialized against each other;
    concurrent sends on one connection may interleave on the wire.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        *,
        rng: random.Random | None = None,
        connect_timeout_s: float = 5.0,
    ) -> None:
        config.validate()
        self._config = config
        self._observers: list[InstanceObserver] = []
        self._observers_lock = threading.Lock()
        self._dump_lock = threading.Lock()
        self._last_error: str | None = None
        self._disposed = False
        self._connection = build_connection(config, self, connect_timeout_s=connect_timeout_s)
        self._scheduler: TransactionScheduler | None = None
        if config.auto_transactions:
            self._scheduler = TransactionScheduler.from_config(
                config, self._send_automatic, rng=rng
            )

    def __repr__(self) -> str:
        return f"ConnectionInstance(name={self.name!r}, role={self._config.role!r})"

    def __enter__(self) -> ConnectionInstance:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.dispose()

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def status(self) -> ConnectionStatus:
        return self._connection.status

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def bound_port(self) -> int | None:
        return self._connection.bound_port

    @property
    def cursor(self) -> int:
        """Index of the next auto transaction (0 when none are configured)."""

        return 0 if self._scheduler is None else self._scheduler.cursor

    @property
    def scheduler(self) -> TransactionScheduler | None:
        return self._scheduler

    @property
    def connection(self) -> Connection:
        return self._connection

    @property
    def disposed(self) -> bool:
        return self._disposed

    def add_observer(self, observer: InstanceObserver) -> None:
        with self._observers_lock:
            self._observers.append(observer)

    def remove_observer(self, observer: InstanceObserver) -> None:
        with self._observers_lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def _snapshot_observers(self) -> list[InstanceObserver]:
        with self._observers_lock:
            return list(self._observers)

    def _ensure_alive(self) -> None:
        if self._disposed:
            raise RuntimeError(f"Connection instance {self.name!r} has been disposed")

    def start(self) -> None:
        """Open the connection (client) or listener (server/proxy).

        Raises:
            TransportError: Connect or bind failure; `last_error` is set and the error
                notification has fired before this propagates.
        """

        self._ensure_alive()
        try:
            self._connection.start()
        except TransportError as exc:
            self._last_error = str(exc)
            self._log(f"Failed to start: {exc}")
            raise

    def stop(self) -> None:
        self._ensure_alive()
        if self._scheduler is not None:
            self._scheduler.stop()
        self._connection.stop()

    def send_manual(self, transaction: Transaction) -> SendResult:
        self._ensure_alive()
        return self._connection.send(transaction)

    def dispose(self) -> None:
        if self._disposed:
            return
        self.stop()
        self._disposed = True
        with self._observers_lock:
            self._observers.clear()

    def _send_automatic(self, transaction: Transaction) -> None:
        self._connection.send(transaction)

    # ConnectionListener

    def connection_log(self, message: str) -> None:
        self._log(message)

    def connection_status(self, status: ConnectionStatus) -> None:
        scheduler = self._scheduler
        if scheduler is not None:
            if status == "connected":
                if scheduler.start():
                    self._log(f"Auto transactions started ({scheduler.mode}).")
            elif status in ("disconnected", "error") and scheduler.running:
                scheduler.stop()
                self._log("Auto transactions stopped.")
        for observer in self._snapshot_observers():
            observer.on_status_changed()

    def connection_error(self, message: str) -> None:
        self._last_error = message
        for observer in self._snapshot_observers():
            observer.on_error(message)

    def connection_data(self, data: bytes) -> None:
        self._log(f"Received {len(data)} bytes:\n{hex_dump(data)}")
        scheduler = self._scheduler
        if scheduler is not None and scheduler.mode == "on_receive":
            scheduler.on_receive()

    def _log(self, message: str) -> None:
        timestamp = datetime.now()
        dump_path = self._config.dump_file_path
        if dump_path is not None:
            try:
                with self._dump_lock, dump_path.open("a", encoding="utf-8") as f:
                    f.write(f"[{timestamp:%Y-%m-%d %H:%M:%S}] {message}\n")
            except OSError as exc:
                # Reported to subscribers only; writing it to the dump would recurse.
                self._emit(LogEntry(timestamp, self.name, f"Dump Error: {exc}"))
        logger.debug("[%s] %s", self.name, message)
        self._emit(LogEntry(timestamp, self.name, message))

    def _emit(self, entry: LogEntry) -> None:
        for observer in self._snapshot_observers():
            observer.on_log(entry)
