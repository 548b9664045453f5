"""Runtime config value validation."""

from __future__ import annotations

from typing import Any

from core.contracts import Destination

from .schema import ConfigError, LoadedConfig

_DESTINATIONS = {d.value for d in Destination}


def validate_config(cfg: LoadedConfig) -> None:
    # runtime
    _require_int("runtime.tick_ms", cfg.runtime.tick_ms, min_v=1)
    _require_int(
        "runtime.liveness_timeout_ms", cfg.runtime.liveness_timeout_ms, min_v=1
    )
    _require_float("runtime.max_runtime_s", cfg.runtime.max_runtime_s, min_v=0.0)
    if cfg.runtime.liveness_timeout_ms <= cfg.runtime.tick_ms:
        raise ConfigError("runtime.liveness_timeout_ms must be > runtime.tick_ms")

    # sensors
    _require_int("sensors.sample_ms", cfg.sensors.sample_ms, min_v=1)
    _require_int("sensors.rotary.channel", cfg.sensors.rotary.channel, min_v=0)
    names = {str(cfg.sensors.rotary.name)}
    for i, gate in enumerate(cfg.sensors.gates):
        _require_int(f"sensors.gates[{i}].channel", gate.channel, min_v=0)
        if not gate.name:
            raise ConfigError(f"sensors.gates[{i}].name must not be empty")
        if gate.name in names:
            raise ConfigError(f"sensors.gates[{i}].name '{gate.name}' is duplicated")
        names.add(gate.name)
        if str(gate.destination) not in _DESTINATIONS:
            raise ConfigError(
                f"sensors.gates[{i}].destination must be one of {sorted(_DESTINATIONS)}"
            )

    # detect
    low = _require_float("detect.rotary_low_deg", cfg.detect.rotary_low_deg, min_v=0.0)
    high = _require_float(
        "detect.rotary_high_deg", cfg.detect.rotary_high_deg, max_v=300.0
    )
    if low >= high:
        raise ConfigError("detect.rotary_low_deg must be < detect.rotary_high_deg")
    light_delta = _require_float("detect.light_delta", cfg.detect.light_delta)
    if light_delta <= 0:
        raise ConfigError("detect.light_delta must be > 0")

    # quality
    _require_float(
        "quality.good_ratio", cfg.quality.good_ratio, min_v=0.0, max_v=1.0
    )

    # override
    _require_float("override.debounce_ms", cfg.override.debounce_ms, min_v=0.0)
    _require_int("override.gpio.pin", cfg.override.gpio.pin, min_v=0)
    _require_int("override.gpio.bounce_ms", cfg.override.gpio.bounce_ms, min_v=0)
    _require_int("override.modbus.poll_ms", cfg.override.modbus.poll_ms, min_v=1)
    if cfg.override.tcp.enabled and not str(cfg.override.tcp.word or "").strip():
        raise ConfigError("override.tcp.word must not be empty")

    # comm
    _require_port("comm.http.port", cfg.comm.http.port)
    _require_port("comm.tcp.port", cfg.comm.tcp.port)
    _require_port("comm.modbus.port", cfg.comm.modbus.port)
    _require_int("comm.modbus.coil_offset", cfg.comm.modbus.coil_offset, min_v=0)
    _require_int("comm.modbus.di_offset", cfg.comm.modbus.di_offset, min_v=0)
    _require_int("comm.modbus.ir_offset", cfg.comm.modbus.ir_offset, min_v=0)
    _require_int("comm.modbus.heartbeat_ms", cfg.comm.modbus.heartbeat_ms, min_v=1)
    _require_int("comm.influx.timeout_ms", cfg.comm.influx.timeout_ms, min_v=1)
    if cfg.output.influx.enabled:
        if not str(cfg.comm.influx.bucket or "").strip():
            raise ConfigError("comm.influx.bucket must not be empty")
        if not str(cfg.comm.influx.token_env or "").strip():
            raise ConfigError("comm.influx.token_env must name an environment variable")

    # output
    _require_int("output.hmi.history_size", cfg.output.hmi.history_size, min_v=1)
    for dest in _DESTINATIONS:
        if not str(cfg.output.destination_labels.get(dest) or "").strip():
            raise ConfigError(f"output.destination_labels.{dest} must not be empty")


def _require_int(
    name: str, value: Any, *, min_v: int | None = None, max_v: int | None = None
) -> int:
    try:
        iv = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer") from e
    if min_v is not None and iv < min_v:
        op = ">=" if min_v != 1 else ">"
        threshold = min_v if min_v != 1 else 0
        raise ConfigError(f"{name} must be {op} {threshold}")
    if max_v is not None and iv > max_v:
        raise ConfigError(f"{name} must be <= {max_v}")
    return iv


def _require_float(
    name: str, value: Any, *, min_v: float | None = None, max_v: float | None = None
) -> float:
    try:
        fv = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number") from e
    if min_v is not None and fv < min_v:
        raise ConfigError(f"{name} must be >= {min_v:g}")
    if max_v is not None and fv > max_v:
        raise ConfigError(f"{name} must be <= {max_v:g}")
    return fv


def _require_port(name: str, value: Any) -> int:
    return _require_int(name, value, min_v=1, max_v=65535)


__all__ = ["validate_config"]
