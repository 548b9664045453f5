# -- coding: utf-8 --

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Protocol, Type

from core.contracts import Sample
from core.registry import register_named, resolve_registered

DriverFactory = Dict[str, Type["BaseSensorDriver"]]
_registry: DriverFactory = {}

# 10-bit ADC full scale shared by the supported front ends.
ADC_MAX = 1023


class SignalSource(Protocol):
    """Readable cell holding the last sample of one channel."""

    def is_valid(self) -> bool: ...

    def get_value(self) -> Sample: ...


@dataclass
class GateLayout:
    name: str
    channel: int
    destination: str


@dataclass
class SensorLayout:
    rotary_name: str = "rotary"
    rotary_channel: int = 1
    gates: list[GateLayout] = field(default_factory=list)


def build_sensor_layout(cfg_block) -> SensorLayout:
    return SensorLayout(
        rotary_name=str(cfg_block.rotary.name),
        rotary_channel=int(cfg_block.rotary.channel),
        gates=[
            GateLayout(
                name=str(g.name),
                channel=int(g.channel),
                destination=str(g.destination),
            )
            for g in cfg_block.gates
        ],
    )


class BaseSensorDriver(ABC):
    """Raw access to the analog front end; one instance serves every channel."""

    def __init__(self, layout: SensorLayout):
        self.layout = layout

    @abstractmethod
    def read_raw(self, channel: int) -> float:
        """Return the raw ADC reading (0..ADC_MAX) for `channel`."""

    @contextmanager
    def session(self):
        """Open/close the hardware bus."""
        yield self


def register_driver(name: str):
    return register_named(_registry, name)


def create_driver(name: str, layout: SensorLayout, params: dict | None = None):
    cls = resolve_registered(
        _registry,
        name,
        package=__package__ or "sensor",
        unknown_label="sensor driver",
    )
    return cls(layout, **(params or {}))


def rotary_degrees(raw: float, full_angle: float = 300.0) -> float:
    """Convert a raw rotary reading into arm degrees."""
    return float(raw) * full_angle / ADC_MAX


__all__ = [
    "ADC_MAX",
    "SignalSource",
    "GateLayout",
    "SensorLayout",
    "build_sensor_layout",
    "BaseSensorDriver",
    "register_driver",
    "create_driver",
    "rotary_degrees",
]
