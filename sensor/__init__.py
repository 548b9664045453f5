from .base import (
    ADC_MAX,
    BaseSensorDriver,
    GateLayout,
    SensorLayout,
    SignalSource,
    build_sensor_layout,
    create_driver,
    register_driver,
    rotary_degrees,
)
from .monitor import SensorMonitor

__all__ = [
    "ADC_MAX",
    "BaseSensorDriver",
    "GateLayout",
    "SensorLayout",
    "SignalSource",
    "build_sensor_layout",
    "create_driver",
    "register_driver",
    "rotary_degrees",
    "SensorMonitor",
]
