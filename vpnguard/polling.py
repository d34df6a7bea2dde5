#!/usr/bin/env python3

"""
Shared poll loop and backoff primitives.

Each monitor is one single-threaded loop: run a cycle to completion, then
sleep. The only suspension point is the sleep, so a stop signal never
interrupts a cycle half way; it ends the wait and the loop exits.
"""

import signal
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .logger import get_logger, log_message


@dataclass
class BackoffState:
    """Consecutive-failure counter and next-eligible timestamp for corrective actions.

    Timestamps come from a monotonic clock. When ``max_failures`` consecutive
    failures are recorded, further attempts are suspended for ``cooldown``
    seconds and the counter starts over.
    """
    max_failures: int = 3
    cooldown: float = 300.0
    failures: int = 0
    next_eligible: float = 0.0

    def can_attempt(self, now: float) -> bool:
        return now >= self.next_eligible

    def remaining(self, now: float) -> float:
        return max(0.0, self.next_eligible - now)

    def record_success(self):
        self.failures = 0
        self.next_eligible = 0.0

    def record_failure(self, now: float) -> bool:
        """Count a failed attempt; returns True when a cool-down has just started."""
        self.failures += 1
        if self.failures >= self.max_failures:
            self.next_eligible = now + self.cooldown
            self.failures = 0
            return True
        return False


class PollLoop:
    """Runs ``cycle`` every ``interval`` seconds until stopped.

    Exceptions escaping a cycle are logged with a traceback and the loop
    keeps going.
    """

    def __init__(self, name: str, interval: float, stop_event: Optional[threading.Event] = None):
        self.name = name
        self.interval = interval
        self.stop_event = stop_event or threading.Event()
        self.cycles = 0

    def install_signal_handlers(self):
        """Stop cleanly on SIGINT/SIGTERM from the service manager."""
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def _handle_signal(self, signum, frame):
        log_message(0, f"{self.name} stopping (signal {signum} received)")
        self.stop_event.set()

    def stop(self):
        self.stop_event.set()

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def run(self, cycle: Callable[[], None], max_cycles: Optional[int] = None):
        """Run cycles until stopped (or ``max_cycles`` reached)."""
        log_message(3, f"{self.name} poll loop started (interval {self.interval}s)")
        while not self.stopped:
            started = time.monotonic()
            try:
                cycle()
            except Exception as e:
                get_logger().exception(f"{self.name}: unexpected error in poll cycle: {e}")
            self.cycles += 1
            if max_cycles is not None and self.cycles >= max_cycles:
                break
            elapsed = time.monotonic() - started
            self.stop_event.wait(max(0.0, self.interval - elapsed))
        log_message(0, f"{self.name} poll loop stopped after {self.cycles} cycle(s)")
