"""Transfer speed and ETA derived from copy progress.

The tracker keeps a rolling window of ``(bytes_copied, timestamp)`` samples
and measures speed between the oldest and newest sample in the window.
``TransferMonitor`` is the display-side owner: it feeds ``Copying`` states
into a tracker and keeps the speed/ETA strings a front end shows.
"""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from winusb_creator.domain import Copying, CreationState


WINDOW_SECONDS = 10.0
MIN_ELAPSED_SECONDS = 0.3
MAX_ETA_SECONDS = 3600.0


@dataclass(frozen=True)
class Sample:
    bytes_copied: int
    timestamp: float


class TransferStatistics:
    """Rolling-window throughput tracker."""

    def __init__(self, window_seconds: float = WINDOW_SECONDS):
        self.window_seconds = window_seconds
        self._samples: Deque[Sample] = deque()

    @property
    def samples(self) -> list[Sample]:
        return list(self._samples)

    def reset(self) -> None:
        self._samples.clear()

    def record(self, bytes_copied: int, timestamp: float) -> None:
        """Append a sample and drop samples that fell out of the window."""
        self._samples.append(Sample(bytes_copied, timestamp))
        while self._samples and timestamp - self._samples[0].timestamp >= self.window_seconds:
            self._samples.popleft()

    def speed(self) -> Optional[float]:
        """Bytes per second between the oldest and newest sample, if measurable."""
        if len(self._samples) < 2:
            return None
        first = self._samples[0]
        last = self._samples[-1]
        elapsed = last.timestamp - first.timestamp
        delta = last.bytes_copied - first.bytes_copied
        if elapsed <= MIN_ELAPSED_SECONDS or delta <= 0:
            return None
        return delta / elapsed

    def eta_seconds(self, total_bytes: int) -> Optional[float]:
        """Seconds until ``total_bytes`` at the current speed.

        None when speed is unavailable, nothing remains, or the estimate is
        longer than an hour.
        """
        speed = self.speed()
        if speed is None:
            return None
        remaining = total_bytes - self._samples[-1].bytes_copied
        if remaining <= 0:
            return None
        seconds = remaining / speed
        if not math.isfinite(seconds) or seconds <= 0 or seconds > MAX_ETA_SECONDS:
            return None
        return seconds


def format_speed(bytes_per_second: Optional[float]) -> str:
    if bytes_per_second is None:
        return ""
    if bytes_per_second < 1024 * 1024:
        return f"{bytes_per_second / 1024:.0f} KB/s"
    return f"{bytes_per_second / (1024 * 1024):.1f} MB/s"


def format_eta(seconds: Optional[float]) -> str:
    if seconds is None or not math.isfinite(seconds) or seconds > MAX_ETA_SECONDS:
        return ""
    if seconds < 60:
        return "Less than a minute"
    return f"About {math.ceil(seconds / 60)} min"


class TransferMonitor:
    """Speed/ETA text for a front end, driven by the creator's state stream.

    A sample that does not yet give a measurable speed leaves the previous
    text in place; any state other than ``Copying`` clears it.
    """

    def __init__(self, statistics: Optional[TransferStatistics] = None, clock=time.monotonic):
        self.statistics = statistics or TransferStatistics()
        self.clock = clock
        self.speed_text = ""
        self.eta_text = ""

    def start(self) -> None:
        self.statistics.reset()
        self.clear()

    def clear(self) -> None:
        self.speed_text = ""
        self.eta_text = ""

    def update(self, state: CreationState, now: Optional[float] = None) -> None:
        if not isinstance(state, Copying):
            self.clear()
            return

        timestamp = self.clock() if now is None else now
        self.statistics.record(state.bytes_copied, timestamp)

        speed = self.statistics.speed()
        if speed is None:
            return
        self.speed_text = format_speed(speed)
        if state.total_bytes - state.bytes_copied > 0:
            self.eta_text = format_eta(self.statistics.eta_seconds(state.total_bytes))
