from __future__ import annotations

import json
import logging
import threading
from collections import deque
from collections.abc import Callable
from datetime import datetime
from typing import Final

from .config import ConfigError, ConnectionConfig, dump_app_config, parse_app_config
from .instance import ConnectionInstance
from .observer import LogEntry
from .transport.base import TransportError

logger = logging.getLogger(__name__)

MAX_LOG_COUNT: Final[int] = 50


def format_log_entry(entry: LogEntry) -> str:
    return f"[{entry.timestamp:%H:%M:%S}] [{entry.connection_name}] {entry.message}"


def format_error_line(name: str, message: str, *, now: datetime | None = None) -> str:
    stamp = now or datetime.now()
    return f"[{stamp:%H:%M:%S}] [ERROR] [{name}] {message}"


class _InstanceBridge:
    def __init__(self, workbench: Workbench, instance: ConnectionInstance) -> None:
        self._workbench = workbench
        self._instance = instance

    def on_log(self, entry: LogEntry) -> None:
        self._workbench.add_log(format_log_entry(entry))

    def on_status_changed(self) -> None:
        return None

    def on_error(self, message: str) -> None:
        self._workbench.add_log(format_error_line(self._instance.name, message))


class Workbench:
    """Collection of connection instances with a shared, bounded log view.

    Logs are kept most-recent-first and trimmed to `max_log_count` entries.
    """

    def __init__(
        self,
        *,
        max_log_count: int = MAX_LOG_COUNT,
        on_line: Callable[[str], None] | None = None,
    ) -> None:
        if max_log_count <= 0:
            raise ValueError("max_log_count must be > 0")
        self._instances: list[ConnectionInstance] = []
        self._logs: deque[str] = deque(maxlen=max_log_count)
        self._lock = threading.Lock()
        self._on_line = on_line

    @property
    def instances(self) -> tuple[ConnectionInstance, ...]:
        with self._lock:
            return tuple(self._instances)

    @property
    def logs(self) -> list[str]:
        with self._lock:
            return list(self._logs)

    def add_log(self, line: str) -> None:
        with self._lock:
            self._logs.appendleft(line)
        if self._on_line is not None:
            self._on_line(line)

    def clear_logs(self) -> None:
        with self._lock:
            self._logs.clear()

    def add_instance(self, instance: ConnectionInstance) -> ConnectionInstance:
        instance.add_observer(_InstanceBridge(self, instance))
        with self._lock:
            self._instances.append(instance)
        return instance

    def create_instance(self, config: ConnectionConfig) -> ConnectionInstance:
        return self.add_instance(ConnectionInstance(config))

    def remove_instance(self, instance: ConnectionInstance) -> None:
        instance.dispose()
        with self._lock:
            if instance in self._instances:
                self._instances.remove(instance)

    def export_configuration(self) -> str:
        configs = [instance.config for instance in self.instances]
        return json.dumps(dump_app_config(configs), indent=2)

    def import_configuration(self, text: str) -> list[ConnectionInstance]:
        """Create and start an instance for every connection in a JSON document.

        Start failures are reported through the instances' error channel and the log
        view; they do not abort the import.

        Raises:
            ConfigError: If the document is not valid JSON or a definition is invalid.
        """

        try:
            obj = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON configuration ({exc})") from exc
        created: list[ConnectionInstance] = []
        for config in parse_app_config(obj):
            instance = self.create_instance(config)
            created.append(instance)
            try:
                instance.start()
            except TransportError as exc:
                logger.info("Imported connection %r failed to start: %s", config.name, exc)
        return created

    def close(self) -> None:
        for instance in self.instances:
            self.remove_instance(instance)
