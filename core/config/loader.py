"""YAML loader and section builders for runtime configuration."""

from __future__ import annotations

import glob
import os
from typing import Any

import yaml

from .schema import (
    CommConfigBlock,
    CommHttpConfigBlock,
    CommInfluxConfigBlock,
    CommModbusConfigBlock,
    CommTcpConfigBlock,
    ConfigError,
    DetectConfigBlock,
    GateConfigBlock,
    LoadedConfig,
    OutputConfigBlock,
    OutputCsvConfigBlock,
    OutputHmiConfigBlock,
    OutputInfluxConfigBlock,
    OutputModbusConfigBlock,
    OverrideConfigBlock,
    OverrideGpioConfigBlock,
    OverrideModbusConfigBlock,
    OverrideTcpConfigBlock,
    OverrideWebConfigBlock,
    QualityConfigBlock,
    RotaryConfigBlock,
    RuntimeConfig,
    SensorsConfigBlock,
)


def load_config(config_dir: str = "config") -> LoadedConfig:
    main_path = _find_main_config(config_dir)
    main_data = _read_yaml(main_path)
    _validate_allowed_keys(
        main_data,
        {"runtime", "sensors", "detect", "quality", "override", "comm", "output"},
        "<root>",
        main_path,
    )

    return LoadedConfig(
        runtime=_build_dataclass(
            RuntimeConfig, main_data.get("runtime"), main_path, section="runtime"
        ),
        sensors=_build_sensors_config(main_data.get("sensors"), main_path),
        detect=_build_dataclass(
            DetectConfigBlock, main_data.get("detect"), main_path, section="detect"
        ),
        quality=_build_dataclass(
            QualityConfigBlock, main_data.get("quality"), main_path, section="quality"
        ),
        override=_build_override_config(main_data.get("override"), main_path),
        comm=_build_comm_config(main_data.get("comm"), main_path),
        output=_build_output_config(main_data.get("output"), main_path),
        paths={"main": main_path},
    )


def _find_main_config(config_dir: str) -> str:
    patterns = [
        os.path.join(config_dir, "main_*.yaml"),
        os.path.join(config_dir, "main_*.yml"),
    ]
    candidates: list[str] = []
    for pattern in patterns:
        candidates.extend(glob.glob(pattern))
    if len(candidates) == 0:
        raise ConfigError(f"No main_*.yaml found under {config_dir}")
    if len(candidates) > 1:
        raise ConfigError(
            f"Expected exactly one main_*.yaml, found: {', '.join(sorted(candidates))}"
        )
    return candidates[0]


def _read_yaml(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"YAML root must be a mapping: {path}")
    return data


def _require_mapping(data: Any, section: str, main_path: str) -> dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"'{section}' must be a mapping in {main_path}")
    return data


def _build_dataclass(cls, data: Any, main_path: str, section: str):
    obj = cls()
    fields = cls.__dataclass_fields__
    for k, v in _require_mapping(data, section, main_path).items():
        if k in fields:
            setattr(obj, k, v)
        else:
            raise ConfigError(f"Unknown field {section}.{k} in {main_path}")
    return obj


def _validate_allowed_keys(
    data: dict[str, Any], allowed_keys: set[str], section: str, main_path: str
) -> None:
    for key in data.keys():
        if key not in allowed_keys:
            raise ConfigError(f"Unknown field {section}.{key} in {main_path}")


def _apply_scalar_fields(cfg: Any, data: dict[str, Any], keys: tuple[str, ...]) -> None:
    for key in keys:
        if key in data:
            setattr(cfg, key, data[key])


def _apply_subblock_dataclasses(
    cfg: Any,
    data: dict[str, Any],
    main_path: str,
    *,
    parent_section: str,
    block_classes: dict[str, Any],
) -> None:
    for key, cls in block_classes.items():
        if data.get(key) is None:
            continue
        setattr(
            cfg,
            key,
            _build_dataclass(cls, data[key], main_path, section=f"{parent_section}.{key}"),
        )


def _build_sensors_config(data: Any, main_path: str) -> SensorsConfigBlock:
    data = _require_mapping(data, "sensors", main_path)
    cfg = SensorsConfigBlock()
    if "type" in data:
        cfg.type = str(data.get("type") or cfg.type)
    selected_type = str(cfg.type or "").strip()

    # Driver-specific parameters live under `sensors.<type>`; blocks for other
    # driver types are tolerated so one file can carry several setups.
    for key, value in data.items():
        if key in {"type", "sample_ms", "rotary", "gates"}:
            continue
        if isinstance(value, dict):
            continue
        raise ConfigError(
            f"sensors.{key} must be nested under sensors.{selected_type} in {main_path}"
        )

    _apply_scalar_fields(cfg, data, ("sample_ms",))
    _apply_subblock_dataclasses(
        cfg,
        data,
        main_path,
        parent_section="sensors",
        block_classes={"rotary": RotaryConfigBlock},
    )

    gates = data.get("gates")
    if gates is not None:
        if not isinstance(gates, list) or not gates:
            raise ConfigError(f"'sensors.gates' must be a non-empty list in {main_path}")
        cfg.gates = [
            _build_dataclass(GateConfigBlock, item, main_path, section=f"sensors.gates[{i}]")
            for i, item in enumerate(gates)
        ]

    cfg.driver_params = dict(
        _require_mapping(data.get(selected_type), f"sensors.{selected_type}", main_path)
    )
    return cfg


def _build_override_config(data: Any, main_path: str) -> OverrideConfigBlock:
    data = _require_mapping(data, "override", main_path)
    cfg = OverrideConfigBlock()
    _validate_allowed_keys(
        data, {"debounce_ms", "gpio", "modbus", "tcp", "web"}, "override", main_path
    )
    _apply_scalar_fields(cfg, data, ("debounce_ms",))
    _apply_subblock_dataclasses(
        cfg,
        data,
        main_path,
        parent_section="override",
        block_classes={
            "gpio": OverrideGpioConfigBlock,
            "modbus": OverrideModbusConfigBlock,
            "tcp": OverrideTcpConfigBlock,
            "web": OverrideWebConfigBlock,
        },
    )
    return cfg


def _build_comm_config(data: Any, main_path: str) -> CommConfigBlock:
    data = _require_mapping(data, "comm", main_path)
    cfg = CommConfigBlock()
    _validate_allowed_keys(data, {"tcp", "modbus", "http", "influx"}, "comm", main_path)
    _apply_subblock_dataclasses(
        cfg,
        data,
        main_path,
        parent_section="comm",
        block_classes={
            "tcp": CommTcpConfigBlock,
            "modbus": CommModbusConfigBlock,
            "http": CommHttpConfigBlock,
            "influx": CommInfluxConfigBlock,
        },
    )
    return cfg


def _build_output_config(data: Any, main_path: str) -> OutputConfigBlock:
    data = _require_mapping(data, "output", main_path)
    cfg = OutputConfigBlock()
    _validate_allowed_keys(
        data,
        {"csv", "influx", "modbus", "hmi", "destination_labels"},
        "output",
        main_path,
    )
    _apply_subblock_dataclasses(
        cfg,
        data,
        main_path,
        parent_section="output",
        block_classes={
            "csv": OutputCsvConfigBlock,
            "influx": OutputInfluxConfigBlock,
            "modbus": OutputModbusConfigBlock,
            "hmi": OutputHmiConfigBlock,
        },
    )
    labels = data.get("destination_labels")
    if labels is not None:
        labels = _require_mapping(labels, "output.destination_labels", main_path)
        merged = dict(cfg.destination_labels)
        merged.update({str(k): str(v) for k, v in labels.items()})
        cfg.destination_labels = merged
    return cfg


__all__ = ["load_config"]
