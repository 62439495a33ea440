from __future__ import annotations

import random
import threading
from collections.abc import Callable, Sequence

from .config import ConnectionConfig, SchedulerMode, Transaction
from .transport.base import join_thread


class TransactionScheduler:
    """Drives automatic sends over a cyclic list of transactions.

    Modes (chosen once from the configuration):

    - `fixed`: send immediately on start, then every `interval_ms`.
    - `jittered`: like `fixed`, but each wait is `interval_ms - randint(jitter_min_ms,
      jitter_max_ms)`; a wait <= 0 sends right away.
    - `on_receive`: no timed sends; each `on_receive()` sends exactly one transaction.

    The cursor advances by one (mod the list length) after every automatic send and is
    reset to 0 whenever the scheduler starts.
    """

    def __init__(
        self,
        transactions: Sequence[Transaction],
        send: Callable[[Transaction], object],
        *,
        interval_ms: int | None = None,
        jitter_min_ms: int | None = None,
        jitter_max_ms: int | None = None,
        rng: random.Random | None = None,
    ) -> None:
        if not transactions:
            raise ValueError("scheduler requires at least one transaction")
        if (jitter_min_ms is None) != (jitter_max_ms is None):
            raise ValueError("jitter bounds must be set together")
        if jitter_min_ms is not None and jitter_max_ms is not None and jitter_min_ms > jitter_max_ms:
            raise ValueError("jitter_min_ms must be <= jitter_max_ms")
        self._transactions = tuple(transactions)
        self._send = send
        self._interval_ms = interval_ms
        self._jitter_min_ms = jitter_min_ms
        self._jitter_max_ms = jitter_max_ms
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._cursor = 0
        self._sent_count = 0
        self._running = False
        self._cancel = threading.Event()
        self._thread: threading.Thread | None = None

    @classmethod
    def from_config(
        cls,
        config: ConnectionConfig,
        send: Callable[[Transaction], object],
        *,
        rng: random.Random | None = None,
    ) -> TransactionScheduler:
        jittered = config.scheduler_mode == "jittered"
        return cls(
            config.auto_transactions,
            send,
            interval_ms=config.interval_ms,
            jitter_min_ms=config.jitter_min_ms if jittered else None,
            jitter_max_ms=config.jitter_max_ms if jittered else None,
            rng=rng,
        )

    @property
    def mode(self) -> SchedulerMode:
        if self._interval_ms is None:
            return "on_receive"
        if self._jitter_min_ms is not None:
            return "jittered"
        return "fixed"

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def sent_count(self) -> int:
        return self._sent_count

    @property
    def running(self) -> bool:
        return self._running

    def compute_wait_ms(self) -> int:
        """Milliseconds to wait before the next timed send (may be <= 0)."""

        if self._interval_ms is None:
            return 0
        wait_ms = self._interval_ms
        if self._jitter_min_ms is not None and self._jitter_max_ms is not None:
            wait_ms -= self._rng.randint(self._jitter_min_ms, self._jitter_max_ms)
        return wait_ms

    def start(self) -> bool:
        """Start the loop; returns False if it was already running."""

        with self._lock:
            if self._running:
                return False
            self._running = True
            self._cursor = 0
            self._cancel = threading.Event()
            if self.mode == "on_receive":
                return True
            self._thread = threading.Thread(
                target=self._run,
                args=(self._cancel,),
                name="auto-transactions",
                daemon=True,
            )
            self._thread.start()
        return True

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._cancel.set()
            thread, self._thread = self._thread, None
        join_thread(thread)

    def on_receive(self) -> bool:
        """Send the next transaction in response to inbound data (`on_receive` mode only)."""

        if not self._running or self.mode != "on_receive":
            return False
        self._send_next()
        return True

    def _send_next(self) -> None:
        tx = self._transactions[self._cursor]
        self._send(tx)
        self._cursor = (self._cursor + 1) % len(self._transactions)
        self._sent_count += 1

    def _run(self, cancel: threading.Event) -> None:
        self._send_next()
        while not cancel.is_set():
            wait_ms = self.compute_wait_ms()
            if wait_ms > 0 and cancel.wait(wait_ms / 1000.0):
                return
            if cancel.is_set():
                return
            self._send_next()
