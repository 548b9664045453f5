from .base import BaseOverride, create_override, register_override
from .gateway import OverrideGateway

__all__ = [
    "BaseOverride",
    "register_override",
    "create_override",
    "OverrideGateway",
]
