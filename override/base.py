# -- coding: utf-8 --

from abc import ABC, abstractmethod
from typing import Callable, Dict, Type

from core.registry import register_named, resolve_registered

OverrideFactory = Dict[str, Type["BaseOverride"]]
_registry: OverrideFactory = {}

# Called with the press source ("GPIO", "MODBUS", ...) and an optional peer.
PressCallback = Callable[..., bool]


class BaseOverride(ABC):
    """A physical or remote input that reports operator presses."""

    source = ""

    def __init__(self, on_press: PressCallback):
        self.on_press = on_press

    @abstractmethod
    def start(self):
        pass

    @abstractmethod
    def stop(self):
        pass

    def raise_if_failed(self):
        return None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()


def register_override(name: str):
    return register_named(_registry, name)


def create_override(name: str, on_press: PressCallback, **kwargs) -> BaseOverride:
    cls = resolve_registered(
        _registry,
        name,
        package=__package__ or "override",
        unknown_label="override input",
    )
    return cls(on_press, **kwargs)


__all__ = ["BaseOverride", "PressCallback", "register_override", "create_override"]
