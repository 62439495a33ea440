from __future__ import annotations

from datetime import datetime

from rich.console import Console
from rich.text import Text

from ..instance import ConnectionInstance
from ..observer import InstanceObserver, LogEntry

_STATUS_STYLES: dict[str, str] = {
    "connected": "green",
    "listening": "cyan",
    "connecting": "yellow",
    "error": "red",
    "disconnected": "dim",
}


def _now_ts() -> str:
    return datetime.now().strftime("%H:%M:%S")


class RichLogObserver(InstanceObserver):
    """Streams one instance's notifications to a Rich console.

    Multi-line messages (hex dumps) are printed as-is below the header line.
    """

    def __init__(self, console: Console, instance: ConnectionInstance) -> None:
        self._console = console
        self._instance = instance

    def on_log(self, entry: LogEntry) -> None:
        line = Text()
        line.append(f"[{entry.timestamp:%H:%M:%S}] ", style="dim")
        line.append(f"[{entry.connection_name}] ", style="cyan")
        line.append(entry.message)
        self._console.print(line, highlight=False, soft_wrap=True)

    def on_status_changed(self) -> None:
        status = self._instance.status
        line = Text()
        line.append(f"[{_now_ts()}] ", style="dim")
        line.append(f"[{self._instance.name}] ", style="cyan")
        line.append(f"status={status}", style=_STATUS_STYLES.get(status, "white"))
        self._console.print(line, highlight=False)

    def on_error(self, message: str) -> None:
        line = Text()
        line.append(f"[{_now_ts()}] ", style="dim")
        line.append("[ERROR] ", style="bold red")
        line.append(f"[{self._instance.name}] ", style="cyan")
        line.append(message, style="red")
        self._console.print(line, highlight=False, soft_wrap=True)
