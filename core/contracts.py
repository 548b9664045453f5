"""Data contracts shared by sensors, detectors, controller, and output channels."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class RunState(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    FAULTED = "faulted"


class StatusKind(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


STATUS_FOR_STATE = {
    RunState.RUNNING: StatusKind.ACTIVE,
    RunState.PAUSED: StatusKind.INACTIVE,
    RunState.FAULTED: StatusKind.ERROR,
}


class Destination(str, Enum):
    A = "A"
    B = "B"


@dataclass(slots=True)
class Sample:
    channel: str = ""
    value: float = 0.0  # degrees for rotary channels, raw ADC counts for light
    valid: bool = False
    sampled_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class DomainEvent:
    seq: int
    destination: Destination
    good: bool | None = None
    detected_at: datetime | None = None
    gate: str = ""


@dataclass(frozen=True, slots=True)
class StatusReport:
    seq: int
    kind: StatusKind
    message: str = ""
    reported_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class OverridePress:
    seq: int
    source: str
    remote: str = "-"
    pressed_at: datetime | None = None


__all__ = [
    "RunState",
    "StatusKind",
    "STATUS_FOR_STATE",
    "Destination",
    "Sample",
    "DomainEvent",
    "StatusReport",
    "OverridePress",
]
