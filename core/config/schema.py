"""Typed config schema blocks shared by loader/validator/runtime."""

from dataclasses import dataclass, field
from typing import Any, Dict, List


class ConfigError(Exception):
    pass


@dataclass
class RuntimeConfig:
    tick_ms: int = 500
    liveness_timeout_ms: int = 15000
    max_runtime_s: float = 0.0
    data_dir: str = "data"
    log_level: str = "info"


@dataclass
class RotaryConfigBlock:
    name: str = "rotary"
    channel: int = 1


@dataclass
class GateConfigBlock:
    name: str = ""
    channel: int = 0
    destination: str = "A"


def _default_gates() -> List[GateConfigBlock]:
    return [
        GateConfigBlock(name="light_right", channel=2, destination="A"),
        GateConfigBlock(name="light_left", channel=0, destination="B"),
    ]


@dataclass
class SensorsConfigBlock:
    type: str = "sim"
    sample_ms: int = 500
    rotary: RotaryConfigBlock = field(default_factory=RotaryConfigBlock)
    gates: List[GateConfigBlock] = field(default_factory=_default_gates)
    driver_params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DetectConfigBlock:
    rotary_low_deg: float = 100.0
    rotary_high_deg: float = 280.0
    light_delta: float = 20.0


@dataclass
class QualityConfigBlock:
    impl: str = "random"
    good_ratio: float = 0.9
    seed: int | None = None


@dataclass
class OverrideGpioConfigBlock:
    enabled: bool = False
    pin: int = 5
    pull_up: bool = True
    bounce_ms: int = 200


@dataclass
class OverrideModbusConfigBlock:
    enabled: bool = False
    poll_ms: int = 50


@dataclass
class OverrideTcpConfigBlock:
    enabled: bool = False
    word: str = "CLICK"


@dataclass
class OverrideWebConfigBlock:
    enabled: bool = True


@dataclass
class OverrideConfigBlock:
    debounce_ms: float = 200.0
    gpio: OverrideGpioConfigBlock = field(default_factory=OverrideGpioConfigBlock)
    modbus: OverrideModbusConfigBlock = field(default_factory=OverrideModbusConfigBlock)
    tcp: OverrideTcpConfigBlock = field(default_factory=OverrideTcpConfigBlock)
    web: OverrideWebConfigBlock = field(default_factory=OverrideWebConfigBlock)


@dataclass
class CommTcpConfigBlock:
    host: str = "0.0.0.0"
    port: int = 9000


@dataclass
class CommModbusConfigBlock:
    host: str = "0.0.0.0"
    port: int = 5020
    coil_offset: int = 800
    di_offset: int = 800
    ir_offset: int = 50
    heartbeat_ms: int = 1000


@dataclass
class CommHttpConfigBlock:
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass
class CommInfluxConfigBlock:
    url: str = "http://localhost:8086"
    org: str = ""
    bucket: str = "production"
    token_env: str = "LINE_MONITOR_INFLUX_TOKEN"
    timeout_ms: int = 5000


@dataclass
class CommConfigBlock:
    tcp: CommTcpConfigBlock = field(default_factory=CommTcpConfigBlock)
    modbus: CommModbusConfigBlock = field(default_factory=CommModbusConfigBlock)
    http: CommHttpConfigBlock = field(default_factory=CommHttpConfigBlock)
    influx: CommInfluxConfigBlock = field(default_factory=CommInfluxConfigBlock)


@dataclass
class OutputCsvConfigBlock:
    enabled: bool = True


@dataclass
class OutputInfluxConfigBlock:
    enabled: bool = False


@dataclass
class OutputModbusConfigBlock:
    enabled: bool = False


@dataclass
class OutputHmiConfigBlock:
    enabled: bool = True
    history_size: int = 20


def _default_labels() -> Dict[str, str]:
    return {"A": "Svizzera", "B": "Italia"}


@dataclass
class OutputConfigBlock:
    csv: OutputCsvConfigBlock = field(default_factory=OutputCsvConfigBlock)
    influx: OutputInfluxConfigBlock = field(default_factory=OutputInfluxConfigBlock)
    modbus: OutputModbusConfigBlock = field(default_factory=OutputModbusConfigBlock)
    hmi: OutputHmiConfigBlock = field(default_factory=OutputHmiConfigBlock)
    destination_labels: Dict[str, str] = field(default_factory=_default_labels)


@dataclass
class LoadedConfig:
    runtime: RuntimeConfig
    sensors: SensorsConfigBlock
    detect: DetectConfigBlock
    quality: QualityConfigBlock
    override: OverrideConfigBlock
    comm: CommConfigBlock
    output: OutputConfigBlock
    paths: Dict[str, str] = field(default_factory=dict)


__all__ = [
    "ConfigError",
    "RuntimeConfig",
    "RotaryConfigBlock",
    "GateConfigBlock",
    "SensorsConfigBlock",
    "DetectConfigBlock",
    "QualityConfigBlock",
    "OverrideConfigBlock",
    "OverrideGpioConfigBlock",
    "OverrideModbusConfigBlock",
    "OverrideTcpConfigBlock",
    "OverrideWebConfigBlock",
    "CommConfigBlock",
    "CommHttpConfigBlock",
    "CommInfluxConfigBlock",
    "CommModbusConfigBlock",
    "CommTcpConfigBlock",
    "OutputConfigBlock",
    "OutputCsvConfigBlock",
    "OutputHmiConfigBlock",
    "OutputInfluxConfigBlock",
    "OutputModbusConfigBlock",
    "LoadedConfig",
]
