from __future__ import annotations

import time
from pathlib import Path

import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn

from . import __version__
from .config import ConfigError, load_app_config
from .probes.dns import resolve_host, reverse_lookup
from .probes.packetgen import run_packet_generator
from .probes.ports import DEFAULT_TIMEOUT_MS, ScanResult, scan_range, validate_port_range
from .probes.throughput import run_throughput_test
from .transport.base import TransportError
from .ui.live import RichLogObserver
from .ui.summary import format_rate, render_scan_results, render_throughput_result
from .workbench import Workbench

app = typer.Typer(
    add_completion=False,
    invoke_without_command=True,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        help="Print version and exit.",
        is_eager=True,
    ),
) -> None:
    if version:
        typer.echo(f"tcp-workbench {__version__}")
        raise typer.Exit(0)


@app.command()
def run(
    config_path: Path = typer.Argument(  # noqa: B008
        ...,
        envvar="TCPWB_CONFIG",
        help="JSON file with a `connections` array.",
    ),
    duration: float | None = typer.Option(  # noqa: B008
        None,
        "--duration",
        help="Stop all connections after this many seconds (default: run until Ctrl-C).",
    ),
) -> None:
    """Start every configured connection and stream its log until interrupted."""

    console = Console()
    try:
        configs = load_app_config(config_path)
    except ConfigError as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(2) from exc
    if not configs:
        typer.echo(f"No connections defined in {config_path}", err=True)
        raise typer.Exit(2)

    workbench = Workbench()
    started = 0
    try:
        for config in configs:
            instance = workbench.create_instance(config)
            instance.add_observer(RichLogObserver(console, instance))
            try:
                instance.start()
            except TransportError:
                # Already reported through the observer's error channel.
                continue
            started += 1

        if started == 0:
            typer.echo("No connection could be started.", err=True)
            raise typer.Exit(1)

        deadline = None if duration is None else time.monotonic() + duration
        try:
            while deadline is None or time.monotonic() < deadline:
                time.sleep(0.1)
        except KeyboardInterrupt:
            console.print("Interrupted, stopping connections...", style="dim")
    finally:
        workbench.close()


@app.command()
def scan(
    host: str = typer.Argument(..., help="Target host."),  # noqa: B008
    start: int = typer.Option(1, "--start", help="First port (inclusive)."),  # noqa: B008
    end: int = typer.Option(1024, "--end", help="Last port (inclusive)."),  # noqa: B008
    timeout_ms: int = typer.Option(  # noqa: B008
        DEFAULT_TIMEOUT_MS,
        "--timeout-ms",
        envvar="TCPWB_SCAN_TIMEOUT_MS",
        help="Per-port connect timeout in milliseconds.",
    ),
    open_only: bool = typer.Option(  # noqa: B008
        False,
        "--open-only",
        help="Only list open ports.",
    ),
) -> None:
    """Sweep a TCP port range and list open ports."""

    try:
        validate_port_range(start, end)
    except ConfigError as exc:
        typer.echo(f"Invalid port range: {exc}", err=True)
        raise typer.Exit(2) from exc

    console = Console(stderr=True)
    total = end - start + 1
    with Progress(
        TextColumn("{task.description}"),
        BarColumn(bar_width=None),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
        expand=True,
    ) as progress:
        task = progress.add_task(f"Scanning {host}", total=total)

        def _advance(_result: ScanResult) -> None:
            progress.advance(task)

        results = scan_range(host, start, end, timeout_ms, _advance)

    render_scan_results(Console(), results, host=host, open_only=open_only)


@app.command()
def throughput(
    host: str = typer.Argument(..., help="Target host."),  # noqa: B008
    port: int = typer.Argument(..., help="Target port."),  # noqa: B008
    duration: float = typer.Option(  # noqa: B008
        5.0,
        "--duration",
        help="Test duration in seconds.",
    ),
) -> None:
    """Saturate one connection with random bytes and report the achieved rate."""

    console = Console(stderr=True)
    with console.status(f"Sending to {host}:{port}...") as status:

        def _progress(total: int) -> None:
            status.update(f"Sending to {host}:{port}... {total} bytes")

        result = run_throughput_test(host, port, duration, _progress)

    render_throughput_result(Console(), result, target=f"{host}:{port}")
    if not result.success:
        raise typer.Exit(1)
    rate = format_rate(result.bytes_per_second)
    typer.echo(f"{result.total_bytes} bytes in {result.elapsed_s:.3f}s ({rate})")


@app.command()
def packetgen(
    host: str = typer.Argument(..., help="Target host."),  # noqa: B008
    port: int = typer.Argument(..., help="Target port."),  # noqa: B008
    payload: str = typer.Argument(..., help="Hex payload, e.g. '01 02 ff'."),  # noqa: B008
    iterations: int = typer.Option(1, "--iterations", "-n", help="Packets to send."),  # noqa: B008
    delay_ms: int = typer.Option(  # noqa: B008
        0,
        "--delay-ms",
        help="Delay between packets in milliseconds.",
    ),
) -> None:
    """Replay one hex payload several times over a single connection."""

    if iterations <= 0:
        typer.echo("--iterations must be > 0", err=True)
        raise typer.Exit(2)
    sent = run_packet_generator(
        host,
        port,
        payload,
        iterations,
        delay_ms,
        on_log=lambda line: typer.echo(line, err=True),
    )
    typer.echo(f"sent={sent}/{iterations}")
    if sent < iterations:
        raise typer.Exit(1)


@app.command()
def resolve(
    name: str = typer.Argument(..., help="Host name or address."),  # noqa: B008
) -> None:
    """Resolve a host name (or reverse-resolve an address)."""

    addresses = resolve_host(name)
    if not addresses:
        typer.echo(f"Could not resolve {name!r}", err=True)
        raise typer.Exit(1)
    for address in addresses:
        reverse = reverse_lookup(address)
        typer.echo(f"{address} {reverse}" if reverse else address)
