from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console
from rich.table import Table
from rich.text import Text

from ..probes.ports import ScanResult, get_port_description
from ..probes.throughput import ThroughputResult


def format_rate(bytes_per_second: float) -> str:
    value = float(bytes_per_second)
    for unit in ("B/s", "KB/s", "MB/s"):
        if value < 1024.0:
            return f"{value:.1f} {unit}"
        value /= 1024.0
    return f"{value:.1f} GB/s"


def render_scan_results(
    console: Console,
    results: Sequence[ScanResult],
    *,
    host: str,
    open_only: bool = False,
) -> None:
    open_count = sum(1 for r in results if r.is_open)

    console.print()
    console.print(Text("Port Scan", style="bold"))
    console.print(f"host={host} scanned={len(results)} open={open_count}", style="dim")

    table = Table(show_header=True, header_style="bold", box=None)
    table.add_column("Port", style="cyan", justify="right", no_wrap=True)
    table.add_column("State", no_wrap=True)
    table.add_column("Service", style="white")

    for r in results:
        if open_only and not r.is_open:
            continue
        state = Text("open", style="green") if r.is_open else Text("closed", style="dim")
        table.add_row(str(r.port), state, get_port_description(r.port))

    console.print(table)


def render_throughput_result(console: Console, result: ThroughputResult, *, target: str) -> None:
    console.print()
    console.print(Text("Throughput Test", style="bold"))
    if not result.success:
        console.print(f"target={target} failed", style="red")
        return
    console.print(
        f"target={target} bytes={result.total_bytes} "
        f"elapsed={result.elapsed_s:.3f}s rate={format_rate(result.bytes_per_second)}",
        style="dim",
    )
