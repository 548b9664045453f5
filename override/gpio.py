# -- coding: utf-8 --
"""Panel push button on a Raspberry Pi GPIO pin (BCM numbering)."""

import logging

import RPi.GPIO as GPIO

from override.base import BaseOverride, register_override

L = logging.getLogger("line_monitor.override.gpio")


@register_override("gpio")
class GpioOverride(BaseOverride):
    source = "GPIO"

    def __init__(self, on_press, *, pin: int = 5, pull_up: bool = True, bounce_ms: int = 200):
        super().__init__(on_press)
        self.pin = int(pin)
        self.pull_up = bool(pull_up)
        self.bounce_ms = max(int(bounce_ms), 1)
        self._started = False

    def start(self):
        if self._started:
            return
        GPIO.setmode(GPIO.BCM)
        GPIO.setwarnings(False)
        pud = GPIO.PUD_UP if self.pull_up else GPIO.PUD_DOWN
        GPIO.setup(self.pin, GPIO.IN, pull_up_down=pud)
        # Pressed pulls the line toward the opposite rail of the resistor.
        edge = GPIO.FALLING if self.pull_up else GPIO.RISING
        GPIO.add_event_detect(self.pin, edge, callback=self._on_edge, bouncetime=self.bounce_ms)
        self._started = True
        L.info("GPIO override listening on pin %d (pull_up=%s)", self.pin, self.pull_up)

    def stop(self):
        if not self._started:
            return
        self._started = False
        GPIO.remove_event_detect(self.pin)
        GPIO.cleanup(self.pin)
        L.info("GPIO override stopped")

    def _on_edge(self, channel):
        try:
            self.on_press(self.source, remote=f"pin{channel}")
        except Exception:
            # RPi.GPIO swallows callback errors silently; surface them in the log.
            L.exception("GPIO override callback failed")
