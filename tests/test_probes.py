from __future__ import annotations

import socket
import threading
import time
from collections.abc import Callable

import pytest
from conftest import SinkServer

from tcp_workbench.probes import dns
from tcp_workbench.probes.dns import resolve_host, reverse_lookup
from tcp_workbench.probes.packetgen import run_packet_generator
from tcp_workbench.probes.throughput import FAILED_RESULT, run_throughput_test


def test_throughput_against_sink(sink_server: SinkServer) -> None:
    progress: list[int] = []
    result = run_throughput_test(
        "127.0.0.1", sink_server.port, 0.2, progress.append, buffer_size=4096
    )

    assert result.success
    assert result.total_bytes > 0
    assert result.total_bytes % 4096 == 0
    assert result.elapsed_s >= 0.2
    assert result.bytes_per_second == pytest.approx(result.total_bytes / result.elapsed_s)
    assert progress == sorted(progress)
    assert progress[-1] == result.total_bytes


def test_throughput_stalled_receiver_ends_at_deadline() -> None:
    # The listener never accepts, so writes stall once the kernel buffers fill.
    with socket.create_server(("127.0.0.1", 0)) as stalled:
        started = time.monotonic()
        result = run_throughput_test("127.0.0.1", stalled.getsockname()[1], 0.3)
        wall = time.monotonic() - started

    assert result.success
    assert result.total_bytes > 0
    assert result.elapsed_s >= 0.25
    assert wall < 1.5


def test_throughput_failure_returns_failed_result(unused_port: int) -> None:
    assert run_throughput_test("127.0.0.1", unused_port, 0.1, connect_timeout_s=1.0) == (
        FAILED_RESULT
    )
    assert not FAILED_RESULT.success


def test_throughput_cancelled_before_first_write(sink_server: SinkServer) -> None:
    cancel = threading.Event()
    cancel.set()
    result = run_throughput_test("127.0.0.1", sink_server.port, 5.0, cancel=cancel)
    assert result.success
    assert result.total_bytes == 0


def test_packet_generator_sends_every_packet(
    sink_server: SinkServer, wait_until: Callable[..., bool]
) -> None:
    lines: list[str] = []
    sent = run_packet_generator("127.0.0.1", sink_server.port, "01 02 ff", 3, 10, lines.append)

    assert sent == 3
    assert wait_until(lambda: sink_server.data == b"\x01\x02\xff" * 3)
    assert sink_server.accepted == 1
    assert lines[0] == f"[PacketGen] Connecting to 127.0.0.1:{sink_server.port}..."
    assert "[PacketGen] Sent packet 3/3 (3 bytes)" in lines
    assert lines[-1] == "[PacketGen] Done."


def test_packet_generator_skips_delay_after_last_packet(sink_server: SinkServer) -> None:
    started = time.monotonic()
    sent = run_packet_generator("127.0.0.1", sink_server.port, "00", 2, 300)
    elapsed = time.monotonic() - started

    assert sent == 2
    assert 0.25 <= elapsed < 0.6


def test_packet_generator_rejects_invalid_hex_before_connecting(
    sink_server: SinkServer,
) -> None:
    lines: list[str] = []
    assert run_packet_generator("127.0.0.1", sink_server.port, "abc", 3, 0, lines.append) == 0
    assert len(lines) == 1
    assert lines[0].startswith("[PacketGen] Invalid hex data:")
    time.sleep(0.1)
    assert sink_server.accepted == 0


def test_packet_generator_reports_connect_failure(unused_port: int) -> None:
    lines: list[str] = []
    sent = run_packet_generator(
        "127.0.0.1", unused_port, "00", 1, 0, lines.append, connect_timeout_s=1.0
    )
    assert sent == 0
    assert lines[-1].startswith("[PacketGen] Error:")


def test_packet_generator_stops_on_cancel(sink_server: SinkServer) -> None:
    cancel = threading.Event()
    lines: list[str] = []

    def _log(line: str) -> None:
        lines.append(line)
        if line.startswith("[PacketGen] Sent packet 1/"):
            cancel.set()

    sent = run_packet_generator(
        "127.0.0.1", sink_server.port, "00", 10, 5_000, _log, cancel=cancel
    )
    assert sent == 1


def test_resolve_numeric_address() -> None:
    assert resolve_host("127.0.0.1") == ["127.0.0.1"]


def test_resolve_failure_returns_empty(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(*_args: object, **_kwargs: object) -> object:
        raise socket.gaierror("no such host")

    monkeypatch.setattr(dns.socket, "getaddrinfo", _fail)
    assert resolve_host("nowhere.invalid") == []


def test_resolve_deduplicates(monkeypatch: pytest.MonkeyPatch) -> None:
    infos = [
        (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("10.0.0.1", 0)),
        (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("10.0.0.1", 0)),
        (socket.AF_INET6, socket.SOCK_STREAM, 6, "", ("fe80::1", 0, 0, 0)),
    ]
    monkeypatch.setattr(dns.socket, "getaddrinfo", lambda *_a, **_k: infos)
    assert resolve_host("multi.example") == ["10.0.0.1", "fe80::1"]


def test_reverse_lookup(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        dns.socket, "gethostbyaddr", lambda address: ("router.lan", [], [address])
    )
    assert reverse_lookup("10.0.0.1") == "router.lan"

    def _fail(_address: str) -> object:
        raise socket.herror("unknown host")

    monkeypatch.setattr(dns.socket, "gethostbyaddr", _fail)
    assert reverse_lookup("10.0.0.1") is None
