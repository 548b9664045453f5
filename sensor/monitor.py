"""Background sampling: one SensorMonitor thread per channel."""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable

from core.contracts import Sample
from core.worker import BaseWorker

from .base import BaseSensorDriver

L = logging.getLogger("line_monitor.sensor.monitor")

# Consecutive read failures before the gap is reported at warning level.
_WARN_AFTER_FAILURES = 10


class SensorMonitor(BaseWorker):
    """Periodically reads a channel and keeps the last value plus a validity flag.

    Readers never block on the driver: `get_value()` returns the cached sample.
    A failed read invalidates the cell until the next successful one.
    """

    def __init__(
        self,
        name: str,
        driver: BaseSensorDriver,
        channel: int,
        *,
        sample_ms: int = 500,
        convert: Callable[[float], float] | None = None,
    ):
        super().__init__(f"SensorMonitor[{name}]")
        self.channel_name = name
        self.driver = driver
        self.channel = int(channel)
        self.sample_s = max(int(sample_ms), 1) / 1000.0
        self._convert = convert
        self._lock = threading.Lock()
        self._sample = Sample(channel=name, valid=False)
        self._failures = 0

    def is_valid(self) -> bool:
        with self._lock:
            return self._sample.valid

    def get_value(self) -> Sample:
        with self._lock:
            s = self._sample
            return Sample(
                channel=s.channel, value=s.value, valid=s.valid, sampled_at=s.sampled_at
            )

    def sample_once(self) -> Sample:
        """Read the driver once and update the cell; used by the thread and tests."""
        now = datetime.now(timezone.utc)
        try:
            raw = self.driver.read_raw(self.channel)
            value = self._convert(raw) if self._convert else float(raw)
        except Exception as e:
            self._failures += 1
            log = L.warning if self._failures == _WARN_AFTER_FAILURES else L.debug
            log(
                "%s read failed (%d in a row): %s",
                self.channel_name,
                self._failures,
                e,
            )
            sample = Sample(channel=self.channel_name, valid=False, sampled_at=now)
        else:
            if self._failures >= _WARN_AFTER_FAILURES:
                L.info("%s readings recovered", self.channel_name)
            self._failures = 0
            sample = Sample(
                channel=self.channel_name, value=value, valid=True, sampled_at=now
            )
        with self._lock:
            self._sample = sample
        return sample

    def run(self):
        next_ts = time.perf_counter()
        while not self._stop_evt.is_set():
            self.sample_once()
            next_ts += self.sample_s
            delay = next_ts - time.perf_counter()
            if delay < 0:
                # Fell behind (slow bus); resync instead of bursting reads.
                next_ts = time.perf_counter()
                delay = 0.0
            self._stop_evt.wait(delay)


__all__ = ["SensorMonitor"]
