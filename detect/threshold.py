"""Light-gate detector with a rolling baseline.

The baseline is replaced by the current reading after every evaluated tick, so
the detector reacts to the change between two consecutive samples rather than
to the distance from a fixed reference. Both the leading edge (light drops as a
bottle enters the gate) and the trailing edge (light recovers) can fire, and a
slow drift never fires at all. Changing the sampling cadence changes how much
the signal moves per tick, so `delta_threshold` has to be tuned together with
`sensors.sample_ms` and `runtime.tick_ms`.
"""

import logging

from core.contracts import Sample

from .base import register_detector

L = logging.getLogger("line_monitor.detection.threshold")


@register_detector("threshold")
class ThresholdDetector:
    def __init__(self, delta_threshold: float = 20.0):
        self.delta_threshold = float(delta_threshold)
        self.baseline: float | None = None
        self.armed = True
        if self.delta_threshold <= 0:
            raise ValueError("detect light_delta must be > 0")

    def evaluate(self, sample: Sample) -> bool | None:
        if not sample.valid:
            return None
        value = float(sample.value)
        if self.baseline is None:
            self.baseline = value
            return None

        fired = None
        delta = abs(value - self.baseline)
        if delta > self.delta_threshold:
            if self.armed:
                self.armed = False
                fired = True
                L.debug(
                    "Gate %s fired: delta=%.1f baseline=%.1f value=%.1f",
                    sample.channel,
                    delta,
                    self.baseline,
                    value,
                )
        else:
            self.armed = True
        self.baseline = value
        return fired

    def reset(self) -> None:
        self.baseline = None
        self.armed = True


__all__ = ["ThresholdDetector"]
