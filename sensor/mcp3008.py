# -- coding: utf-8 --

import logging
import threading
from contextlib import contextmanager

import spidev  # MCP3008 SPI

from .base import BaseSensorDriver, SensorLayout, register_driver

L = logging.getLogger("line_monitor.sensor.mcp3008")


@register_driver("mcp3008")
class Mcp3008Driver(BaseSensorDriver):
    """MCP3008 8-channel 10-bit ADC on the SPI bus."""

    def __init__(
        self,
        layout: SensorLayout,
        *,
        bus: int = 0,
        device: int = 0,
        max_speed_hz: int = 1350000,
    ):
        super().__init__(layout)
        self.bus = int(bus)
        self.device = int(device)
        self.max_speed_hz = int(max_speed_hz)
        self._spi = None
        # Monitors for different channels share one SPI handle.
        self._lock = threading.Lock()

    @contextmanager
    def session(self):
        spi = spidev.SpiDev()
        spi.open(self.bus, self.device)
        spi.max_speed_hz = self.max_speed_hz
        self._spi = spi
        L.info("MCP3008 opened bus=%s device=%s", self.bus, self.device)
        try:
            yield self
        finally:
            self._spi = None
            spi.close()
            L.info("MCP3008 closed")

    def read_raw(self, channel: int) -> float:
        if channel < 0 or channel > 7:
            raise ValueError("MCP3008 channel must be 0..7")
        with self._lock:
            spi = self._spi
            if spi is None:
                raise RuntimeError("MCP3008 session not open")
            adc = spi.xfer2([1, (8 + channel) << 4, 0])
        return float(((adc[1] & 3) << 8) + adc[2])


__all__ = ["Mcp3008Driver"]
