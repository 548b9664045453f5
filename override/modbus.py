# -- coding: utf-8 --

import asyncio
import logging

from core.lifecycle import AsyncTaskOwner, LoopRunner, task_failure
from core.modbus_io import ModbusIO
from override.base import BaseOverride, register_override

L = logging.getLogger("line_monitor.override.modbus")

COIL_OVERRIDE = 0
COIL_RESET_COUNTERS = 1


@register_override("modbus")
class ModbusOverride(BaseOverride):
    """Polls the PLC command coils; each toggle of a coil is one command."""

    source = "MODBUS"

    def __init__(
        self,
        on_press,
        *,
        modbus_io: ModbusIO,
        poll_ms: int = 50,
        on_reset=None,
        loop_runner: LoopRunner,
    ):
        super().__init__(on_press)
        self._io = modbus_io
        self._poll_ms = max(int(poll_ms), 5)
        self._on_reset = on_reset
        self._tasks = AsyncTaskOwner(owner_name="modbus_override", loop_runner=loop_runner)
        self._task = None
        self._last_cmd_override = None
        self._last_cmd_reset = None

    def start(self):
        if self._task:
            return
        self._task = self._tasks.spawn(self._poll_loop())

    def stop(self):
        task = self._task
        self._task = None
        if task is None:
            return
        self._tasks.cancel_and_clear()
        L.info("Modbus override stopped")

    def raise_if_failed(self):
        err = task_failure(self._task)
        if err is not None:
            raise RuntimeError(
                f"ModbusOverride stopped unexpectedly ({type(err).__name__})"
            ) from err

    def poll_once(self):
        """Read both command coils and act on any toggle since the last poll."""
        try:
            cmds = self._io.read_coils(COIL_OVERRIDE, 2)
        except Exception as exc:
            raise RuntimeError("ModbusOverride poll failed stage=read_coils") from exc
        override_val, reset_val = int(cmds[0]), int(cmds[1])
        if self._last_cmd_override is None:
            self._last_cmd_override = override_val
            self._last_cmd_reset = reset_val
            return

        if override_val != self._last_cmd_override:
            self._last_cmd_override = override_val
            try:
                self.on_press(self.source)
            except Exception as exc:
                raise RuntimeError("ModbusOverride poll failed stage=on_press") from exc

        if reset_val != self._last_cmd_reset:
            self._last_cmd_reset = reset_val
            if self._on_reset:
                try:
                    self._on_reset()
                except Exception as exc:
                    raise RuntimeError("ModbusOverride poll failed stage=on_reset") from exc

    async def _poll_loop(self):
        interval_s = self._poll_ms / 1000.0
        try:
            while True:
                await asyncio.sleep(interval_s)
                self.poll_once()
        except asyncio.CancelledError:
            raise
        except Exception:
            L.exception("Modbus override poll loop failed")
            raise
