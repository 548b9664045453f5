"""Quality judgment policies called once per accepted gate event."""

import logging
import random
from typing import Callable, Dict, Protocol

from core.registry import register_named, resolve_registered

L = logging.getLogger("line_monitor.quality")


class QualityJudge(Protocol):
    def judge(self) -> bool:
        """Return True for a good item, False for a reject."""
        ...


_registry: Dict[str, Callable[..., QualityJudge]] = {}


def register_judge(name: str):
    return register_named(_registry, name)


@register_judge("random")
class RandomJudge:
    """Stand-in for a downstream quality sensor: good with a fixed probability."""

    def __init__(self, good_ratio: float = 0.9, seed: int | None = None):
        if not (0.0 <= float(good_ratio) <= 1.0):
            raise ValueError("quality good_ratio must be in [0, 1]")
        self.good_ratio = float(good_ratio)
        self._rng = random.Random(seed)

    def judge(self) -> bool:
        return self._rng.random() < self.good_ratio


@register_judge("always_good")
class AlwaysGoodJudge:
    def __init__(self, **_ignored):
        pass

    def judge(self) -> bool:
        return True


def create_judge(name: str, **params) -> QualityJudge:
    factory = resolve_registered(
        _registry,
        name,
        package="core.quality",
        unknown_label="quality judge",
    )
    judge = factory(**params)
    L.debug("Quality judge=%s params=%s", name, params)
    return judge


__all__ = [
    "QualityJudge",
    "RandomJudge",
    "AlwaysGoodJudge",
    "register_judge",
    "create_judge",
]
