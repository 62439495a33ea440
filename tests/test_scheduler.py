from __future__ import annotations

import random
import threading
import time
from collections.abc import Callable

import pytest

from tcp_workbench.config import ConnectionConfig, Transaction
from tcp_workbench.scheduler import TransactionScheduler

_TXS = (Transaction("A"), Transaction("B"), Transaction("C"))


class _Recorder:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sent: list[Transaction] = []

    def __call__(self, tx: Transaction) -> None:
        with self._lock:
            self.sent.append(tx)

    def snapshot(self) -> list[Transaction]:
        with self._lock:
            return list(self.sent)


def test_requires_transactions() -> None:
    with pytest.raises(ValueError):
        TransactionScheduler((), _Recorder())


def test_from_config_picks_mode() -> None:
    fixed = ConnectionConfig("c", "client", port=1, auto_transactions=_TXS, interval_ms=10)
    jittered = ConnectionConfig(
        "c",
        "client",
        port=1,
        auto_transactions=_TXS,
        interval_ms=10,
        jitter_min_ms=1,
        jitter_max_ms=2,
    )
    reactive = ConnectionConfig("c", "client", port=1, auto_transactions=_TXS)

    assert TransactionScheduler.from_config(fixed, _Recorder()).mode == "fixed"
    assert TransactionScheduler.from_config(jittered, _Recorder()).mode == "jittered"
    assert TransactionScheduler.from_config(reactive, _Recorder()).mode == "on_receive"


def test_fixed_mode_cycles_transactions_in_order(wait_until: Callable[..., bool]) -> None:
    send = _Recorder()
    scheduler = TransactionScheduler(_TXS, send, interval_ms=10)
    assert scheduler.start()
    try:
        assert wait_until(lambda: scheduler.sent_count >= 7)
    finally:
        scheduler.stop()

    sent = send.snapshot()
    assert sent == [_TXS[i % 3] for i in range(len(sent))]
    assert scheduler.cursor == len(sent) % 3
    assert scheduler.sent_count == len(sent)


def test_first_send_is_immediate_and_stop_interrupts_wait(
    wait_until: Callable[..., bool],
) -> None:
    send = _Recorder()
    scheduler = TransactionScheduler(_TXS, send, interval_ms=60_000)
    scheduler.start()
    assert wait_until(lambda: len(send.snapshot()) == 1, timeout=1.0)

    started = time.monotonic()
    scheduler.stop()
    assert time.monotonic() - started < 1.0
    assert not scheduler.running
    assert send.snapshot() == [_TXS[0]]


def test_jittered_wait_stays_within_bounds() -> None:
    scheduler = TransactionScheduler(
        _TXS,
        _Recorder(),
        interval_ms=1000,
        jitter_min_ms=100,
        jitter_max_ms=300,
        rng=random.Random(1234),
    )
    waits = [scheduler.compute_wait_ms() for _ in range(500)]
    assert all(700 <= wait <= 900 for wait in waits)
    assert len(set(waits)) > 1


def test_fixed_wait_is_the_interval() -> None:
    scheduler = TransactionScheduler(_TXS, _Recorder(), interval_ms=250)
    assert scheduler.compute_wait_ms() == 250


def test_non_positive_jittered_wait_sends_without_waiting(
    wait_until: Callable[..., bool],
) -> None:
    send = _Recorder()
    scheduler = TransactionScheduler(
        _TXS, send, interval_ms=50, jitter_min_ms=100, jitter_max_ms=100
    )
    assert scheduler.compute_wait_ms() == -50
    scheduler.start()
    try:
        assert wait_until(lambda: scheduler.sent_count >= 20, timeout=1.0)
    finally:
        scheduler.stop()


def test_on_receive_mode_sends_one_per_event() -> None:
    send = _Recorder()
    scheduler = TransactionScheduler(_TXS[:2], send)
    assert not scheduler.on_receive()

    scheduler.start()
    assert send.snapshot() == []
    for _ in range(3):
        assert scheduler.on_receive()
    scheduler.stop()

    assert [tx.data for tx in send.snapshot()] == ["A", "B", "A"]
    assert scheduler.cursor == 1
    assert not scheduler.on_receive()


def test_on_receive_is_ignored_in_timed_modes(wait_until: Callable[..., bool]) -> None:
    send = _Recorder()
    scheduler = TransactionScheduler(_TXS, send, interval_ms=60_000)
    scheduler.start()
    try:
        assert wait_until(lambda: scheduler.sent_count == 1)
        assert not scheduler.on_receive()
    finally:
        scheduler.stop()
    assert len(send.snapshot()) == 1


def test_start_is_idempotent_and_restart_resets_cursor(
    wait_until: Callable[..., bool],
) -> None:
    send = _Recorder()
    scheduler = TransactionScheduler(_TXS, send, interval_ms=60_000)
    assert scheduler.start()
    assert not scheduler.start()
    assert wait_until(lambda: scheduler.sent_count == 1)
    time.sleep(0.05)
    assert scheduler.sent_count == 1
    assert scheduler.cursor == 1
    scheduler.stop()

    assert scheduler.start()
    try:
        assert wait_until(lambda: scheduler.sent_count == 2)
    finally:
        scheduler.stop()
    assert [tx.data for tx in send.snapshot()] == ["A", "A"]
