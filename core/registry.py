from __future__ import annotations

import importlib
from collections.abc import MutableMapping
from typing import TypeVar

T = TypeVar("T")


def register_named(registry: MutableMapping[str, T], name: str):
    """Decorator storing a driver/channel/policy class under `name`."""

    def decorator(obj: T) -> T:
        registry[name] = obj
        return obj

    return decorator


def resolve_registered(
    registry: MutableMapping[str, T],
    name: str,
    *,
    package: str,
    unknown_label: str,
) -> T:
    """Look up `name`, importing `<package>.<name>` on first use.

    Hardware drivers pull in optional libraries (spidev, RPi.GPIO), so their
    modules are only imported when a config actually selects them.
    """
    import_err: Exception | None = None
    if name not in registry:
        try:
            importlib.import_module(f"{package}.{name}")
        except ImportError as e:
            import_err = e
    if name not in registry:
        hint = f" (import failed: {import_err})" if import_err else ""
        raise ValueError(
            f"Unknown {unknown_label} '{name}'. "
            f"Available: {', '.join(sorted(registry.keys())) or 'none'}{hint}"
        )
    return registry[name]


__all__ = ["register_named", "resolve_registered"]
