from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True, slots=True)
class LogEntry:
    timestamp: datetime
    connection_name: str
    message: str


class InstanceObserver(Protocol):
    """Subscriber for a connection instance's notifications.

    Used to drive a UI (Rich) or plain collectors. Notifications may be delivered from
    background threads; implementations must be fast and must not raise.
    """

    def on_log(self, entry: LogEntry) -> None:
        """A timestamped log line."""

    def on_status_changed(self) -> None:
        """The status changed. Carries no payload: re-read `instance.status`."""

    def on_error(self, message: str) -> None:
        """A connection failure worth surfacing to the operator."""
