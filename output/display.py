# -- coding: utf-8 --
"""Operator display: current text plus a colour indicator."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone

L = logging.getLogger("line_monitor.output.display")

NEUTRAL_RGB = (0, 0, 0)
ALERT_RGB = (255, 0, 0)


@dataclass(frozen=True)
class DisplayState:
    text: str = ""
    rgb: tuple[int, int, int] = NEUTRAL_RGB
    alert: bool = False
    updated_at: datetime | None = None


class PanelDisplay:
    """Holds what the operator panel shows; the HMI page and dashboard render it."""

    def __init__(self):
        self._lock = threading.Lock()
        self._state = DisplayState()

    def show_message(self, text: str) -> None:
        self._set(text, NEUTRAL_RGB, alert=False)
        L.info("Display: %s", text)

    def show_error(self, text: str) -> None:
        self._set(text, ALERT_RGB, alert=True)
        L.warning("Display [ERROR]: %s", text)

    def current(self) -> DisplayState:
        with self._lock:
            return self._state

    def _set(self, text: str, rgb: tuple[int, int, int], *, alert: bool) -> None:
        with self._lock:
            self._state = DisplayState(
                text=str(text),
                rgb=rgb,
                alert=alert,
                updated_at=datetime.now(timezone.utc),
            )


__all__ = ["PanelDisplay", "DisplayState", "NEUTRAL_RGB", "ALERT_RGB"]
