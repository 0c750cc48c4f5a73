"""Key generators and rolling-window throughput statistics for benchmarks."""

from __future__ import annotations

import abc
import random
import threading
from collections import deque
from dataclasses import dataclass, replace
from typing import NamedTuple, Optional

STAT_DUMP_INTERVAL = 10.0
"""Seconds between two stat dumps."""

STAT_DUMP_LOOKBACK = 60.0
"""Seconds of history summed in a stat dump."""

REPORT_INTERVAL = 0.1
"""Seconds between two reports of counts from a worker."""

WINDOW_SIZE = 10.0
"""Length of one statistics window in seconds."""

MAX_WINDOWS = 180
"""Number of windows kept before the oldest are dropped."""


class KeyGenerator(abc.ABC):
    """Produces keys for a benchmark workload."""

    @abc.abstractmethod
    def next_key(self) -> bytes:
        """Return the next key."""


class RandomKeyGenerator(KeyGenerator):
    """Generates random keys of a fixed length."""

    def __init__(self, key_len: int, rng: Optional[random.Random] = None) -> None:
        if key_len < 0:
            raise ValueError("key length must not be negative")
        self.key_len = key_len
        self._rng = rng if rng is not None else random.Random()

    def next_key(self) -> bytes:
        return self._rng.randbytes(self.key_len)


class FixedSetKeyGenerator(KeyGenerator):
    """Draws keys at random from a fixed set generated up front."""

    def __init__(
        self, key_len: int, key_count: int, rng: Optional[random.Random] = None
    ) -> None:
        self._rng = rng if rng is not None else random.Random()
        source = RandomKeyGenerator(key_len, self._rng)
        self.keys: list[bytes] = [source.next_key() for _ in range(key_count)]

    def next_key(self) -> bytes:
        if not self.keys:
            raise ValueError("cannot draw a key from an empty key set")
        return self._rng.choice(self.keys)


@dataclass
class Window:
    """Counts of puts and gets during the interval ``[start, end)``."""

    start: float
    end: float
    puts: int = 0
    gets: int = 0


class OperationsSummary(NamedTuple):
    """Puts and gets summed over the interval ``[start, end)``."""

    start: float
    end: float
    puts: int
    gets: int


class StatsRecorder:
    """Thread-safe totals of puts and gets plus a rolling list of windows.

    The newest window is first. Times are seconds on any monotonic clock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._puts = 0
        self._gets = 0
        self._windows: deque[Window] = deque()

    @property
    def puts(self) -> int:
        """Total puts recorded."""
        with self._lock:
            return self._puts

    @property
    def gets(self) -> int:
        """Total gets recorded."""
        with self._lock:
            return self._gets

    @property
    def windows(self) -> list[Window]:
        """Copies of the current windows, newest first."""
        with self._lock:
            return [replace(window) for window in self._windows]

    def _roll(self, now: float) -> Window:
        windows = self._windows
        if not windows:
            windows.appendleft(Window(now, now + WINDOW_SIZE))
            return windows[0]
        front = windows[0]
        while now >= front.end:
            windows.appendleft(Window(front.end, front.end + WINDOW_SIZE))
            while len(windows) > MAX_WINDOWS:
                windows.pop()
            front = windows[0]
        return front

    def record_puts(self, now: float, puts: int) -> None:
        """Add ``puts`` to the window containing ``now`` and to the total."""
        with self._lock:
            self._roll(now).puts += puts
            self._puts += puts

    def record_gets(self, now: float, gets: int) -> None:
        """Add ``gets`` to the window containing ``now`` and to the total."""
        with self._lock:
            self._roll(now).gets += gets
            self._gets += gets

    def operations_since(self, lookback: float) -> Optional[OperationsSummary]:
        """Sum completed windows starting within ``lookback`` of the active one.

        The active window is excluded; its start is the end of the summed
        interval. Returns None when nothing has been recorded.
        """
        with self._lock:
            if not self._windows:
                return None
            active, *completed = self._windows
            end = active.start
            start = end
            puts = gets = 0
            for window in completed:
                if window.start >= end - lookback:
                    puts += window.puts
                    gets += window.gets
                    start = window.start
            return OperationsSummary(start, end, puts, gets)