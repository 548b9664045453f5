import logging
from typing import Callable, Dict, Protocol, TypeVar

from core.contracts import Sample
from core.registry import register_named, resolve_registered

L = logging.getLogger("line_monitor.detection")

R = TypeVar("R", covariant=True)


class Detector(Protocol[R]):
    def evaluate(self, sample: Sample) -> R | None:
        """Return a one-shot result for this tick, or None when nothing fired."""
        ...

    def reset(self) -> None: ...


_registry: Dict[str, Callable[..., Detector]] = {}


def register_detector(name: str):
    return register_named(_registry, name)


def create_detector(name: str, params: dict) -> Detector:
    factory = resolve_registered(
        _registry,
        name,
        package=__package__ or "detect",
        unknown_label="detector impl",
    )
    return factory(**(params or {}))


def create_detectors_from_loaded_config(cfg):
    """Build the rotary edge detector and one threshold detector per gate."""
    edge = create_detector(
        "edge",
        {
            "low_threshold": cfg.detect.rotary_low_deg,
            "high_threshold": cfg.detect.rotary_high_deg,
        },
    )
    gates = {
        gate.name: create_detector(
            "threshold", {"delta_threshold": cfg.detect.light_delta}
        )
        for gate in cfg.sensors.gates
    }
    return edge, gates


__all__ = [
    "Detector",
    "register_detector",
    "create_detector",
    "create_detectors_from_loaded_config",
]
