# -- coding: utf-8 --

import logging
import threading
import time
from typing import Callable

import numpy as np

from .base import ADC_MAX, BaseSensorDriver, SensorLayout, register_driver

L = logging.getLogger("line_monitor.sensor.sim")


@register_driver("sim")
class SimulatedLineDriver(BaseSensorDriver):
    """Bench stand-in for the line: the arm alternates between both outlets and
    bottles pass the light gate of the active outlet at a fixed period.

    Rotary output follows a hold/move cycle (A, neutral, B, neutral). While the
    arm holds on an outlet, that outlet's gate dips by `dip_counts` for
    `dip_s` every `bottle_period_s`. Gaussian noise with `noise_counts`
    standard deviation is added to every reading. `stall_after_s > 0` freezes
    the arm after that many seconds, which exercises the liveness timeout.
    """

    def __init__(
        self,
        layout: SensorLayout,
        *,
        hold_s: float = 6.0,
        move_s: float = 1.0,
        deg_a: float = 40.0,
        deg_neutral: float = 190.0,
        deg_b: float = 295.0,
        light_baseline: float = 600.0,
        dip_counts: float = 120.0,
        dip_s: float = 0.5,
        bottle_period_s: float = 2.0,
        noise_counts: float = 2.0,
        stall_after_s: float = 0.0,
        seed: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(layout)
        self.hold_s = float(hold_s)
        self.move_s = float(move_s)
        self.deg_a = float(deg_a)
        self.deg_neutral = float(deg_neutral)
        self.deg_b = float(deg_b)
        self.light_baseline = float(light_baseline)
        self.dip_counts = float(dip_counts)
        self.dip_s = float(dip_s)
        self.bottle_period_s = float(bottle_period_s)
        self.noise_counts = float(noise_counts)
        self.stall_after_s = float(stall_after_s)
        self._clock = clock
        self._t0 = clock()
        self._rng = np.random.default_rng(seed)
        self._rng_lock = threading.Lock()
        self._gate_dest = {g.channel: g.destination for g in layout.gates}
        self._validate()

    @property
    def cycle_s(self) -> float:
        return 2.0 * (self.hold_s + self.move_s)

    def read_raw(self, channel: int) -> float:
        t = self._clock() - self._t0
        if self.stall_after_s > 0 and t > self.stall_after_s:
            t = self.stall_after_s
        if channel == self.layout.rotary_channel:
            value = self.arm_degrees(t) * ADC_MAX / 300.0
        elif channel in self._gate_dest:
            value = self.light_level(self._gate_dest[channel], t)
        else:
            raise ValueError(f"sim driver has no channel {channel}")
        return float(np.clip(value + self._noise(), 0, ADC_MAX))

    def arm_degrees(self, t: float) -> float:
        phase = t % self.cycle_s
        if phase < self.hold_s:
            return self.deg_a
        phase -= self.hold_s
        if phase < self.move_s:
            return self.deg_neutral
        phase -= self.move_s
        if phase < self.hold_s:
            return self.deg_b
        return self.deg_neutral

    def active_destination(self, t: float) -> str | None:
        deg = self.arm_degrees(t)
        if deg == self.deg_a:
            return "A"
        if deg == self.deg_b:
            return "B"
        return None

    def light_level(self, destination: str, t: float) -> float:
        if self.active_destination(t) != destination:
            return self.light_baseline
        in_hold = (t % self.cycle_s) % (self.hold_s + self.move_s)
        if (in_hold % self.bottle_period_s) < self.dip_s:
            return self.light_baseline - self.dip_counts
        return self.light_baseline

    def _noise(self) -> float:
        if self.noise_counts <= 0:
            return 0.0
        with self._rng_lock:
            return float(self._rng.normal(0.0, self.noise_counts))

    def _validate(self):
        if self.hold_s <= 0 or self.move_s <= 0:
            raise ValueError("sim hold_s and move_s must be > 0")
        if not (0 < self.dip_s < self.bottle_period_s):
            raise ValueError("sim dip_s must be in (0, bottle_period_s)")
        if self.noise_counts < 0:
            raise ValueError("sim noise_counts must be >= 0")


__all__ = ["SimulatedLineDriver"]
