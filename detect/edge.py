import logging

from core.contracts import Destination, Sample

from .base import register_detector

L = logging.getLogger("line_monitor.detection.edge")

# Grove rotary angle sensor full travel.
ROTARY_FULL_ANGLE_DEG = 300.0


def classify_rotary(
    degrees: float, low_threshold: float, high_threshold: float
) -> Destination | None:
    """Map an arm position to its band: A below low, B above high, else neutral."""
    if degrees < low_threshold:
        return Destination.A
    if degrees > high_threshold:
        return Destination.B
    return None


@register_detector("edge")
class EdgeDetector:
    """One-shot directional events from the dispensing-arm rotary sensor.

    Only the first tick of an excursion into a band emits. The detector re-arms
    once the arm is back in the neutral band; swinging straight from one band to
    the other starts a new excursion and emits as well.
    """

    def __init__(self, low_threshold: float = 100.0, high_threshold: float = 280.0):
        self.low_threshold = float(low_threshold)
        self.high_threshold = float(high_threshold)
        self._band: Destination | None = None
        self._validate()

    @property
    def armed(self) -> bool:
        return self._band is None

    @property
    def band(self) -> Destination | None:
        return self._band

    def evaluate(self, sample: Sample) -> Destination | None:
        if not sample.valid:
            return None
        band = classify_rotary(sample.value, self.low_threshold, self.high_threshold)
        previous = self._band
        self._band = band
        if band is None or band == previous:
            return None
        L.debug(
            "Rotation toward %s (%.1f deg, prev=%s)",
            band.value,
            sample.value,
            previous.value if previous else "neutral",
        )
        return band

    def reset(self) -> None:
        self._band = None

    def _validate(self):
        if not (0.0 <= self.low_threshold < self.high_threshold):
            raise ValueError("detect rotary thresholds must satisfy 0 <= low < high")
        if self.high_threshold > ROTARY_FULL_ANGLE_DEG:
            raise ValueError(
                f"detect rotary high threshold must be <= {ROTARY_FULL_ANGLE_DEG:g}"
            )


__all__ = ["EdgeDetector", "classify_rotary", "ROTARY_FULL_ANGLE_DEG"]
