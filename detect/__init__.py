from .base import (
    Detector,
    create_detector,
    create_detectors_from_loaded_config,
    register_detector,
)
from .edge import EdgeDetector
from .threshold import ThresholdDetector

__all__ = [
    "Detector",
    "create_detector",
    "create_detectors_from_loaded_config",
    "register_detector",
    "EdgeDetector",
    "ThresholdDetector",
]
