# -- coding: utf-8 --
"""Modbus TCP server exposing line counters and run state to a PLC.

Address map (relative to the configured offsets):
  coils  0 CMD_OVERRIDE toggle, 1 CMD_RESET_COUNTERS toggle
  DI     0 heartbeat toggle, 1 override accepted toggle, 2 item event toggle,
         3 running, 4 paused, 5 faulted
  IR     0 count A, 1 good A, 2 count B, 3 good B, 4 last event seq,
         5 run state code (1 running, 2 paused, 3 faulted), 6 fault count
"""

import asyncio
import importlib
import logging
import threading
from collections.abc import Iterable
from typing import Any, Sequence

from pymodbus.datastore import ModbusSequentialDataBlock, ModbusServerContext
from pymodbus.server import ModbusTcpServer

from core.contracts import RunState
from core.lifecycle import AsyncTaskOwner, LoopRunner, run_async_cleanup, task_failure

L = logging.getLogger("line_monitor.modbus.io")

DI_HEARTBEAT = 0
DI_OVERRIDE_ACCEPTED = 1
DI_EVENT = 2
DI_STATE_BASE = 3

STATE_CODES = {RunState.RUNNING: 1, RunState.PAUSED: 2, RunState.FAULTED: 3}

_FC_COILS = 1
_FC_DI = 2
_FC_IR = 4


def _device_context_cls():
    # pymodbus 3.9 renamed ModbusSlaveContext to ModbusDeviceContext.
    datastore = importlib.import_module("pymodbus.datastore")
    for attr in ("ModbusDeviceContext", "ModbusSlaveContext"):
        cls = getattr(datastore, attr, None)
        if cls is not None:
            return cls
    raise ImportError("pymodbus.datastore has no device/slave context class")


def _server_context(device_ctx: Any) -> ModbusServerContext:
    try:
        return ModbusServerContext(devices=device_ctx, single=True)
    except TypeError:
        return ModbusServerContext(slaves=device_ctx, single=True)


def _is_exception_response(value: object) -> bool:
    try:
        from pymodbus.pdu import ExceptionResponse
    except ImportError:
        return False
    return isinstance(value, ExceptionResponse)


def _require_values(values: object, count: int, label: str) -> list[int]:
    if _is_exception_response(values):
        raise RuntimeError(f"Modbus read failed for {label}: {values!r}")
    if not isinstance(values, Iterable):
        raise RuntimeError(f"Modbus read returned non-iterable for {label}: {values!r}")
    vals = [int(v) for v in values]
    if len(vals) < count:
        vals += [0] * (count - len(vals))
    return vals


class ModbusIO:
    def __init__(
        self,
        host: str,
        port: int,
        coil_offset: int,
        di_offset: int,
        ir_offset: int,
        heartbeat_ms: int,
        *,
        loop_runner: LoopRunner,
    ):
        self.host = host
        self.port = port
        self.coil_offset = max(int(coil_offset), 0)
        self.di_offset = max(int(di_offset), 0)
        self.ir_offset = max(int(ir_offset), 0)
        self.heartbeat_ms = max(int(heartbeat_ms), 100)
        self._state_lock = threading.Lock()
        self._lock = threading.Lock()
        self._started = False
        self._server: ModbusTcpServer | None = None
        self._serve_task = None
        self._tasks = AsyncTaskOwner(owner_name="modbus_io", loop_runner=loop_runner)

        # pymodbus adds +1 to the request address internally.
        self._device_ctx = _device_context_cls()(
            di=ModbusSequentialDataBlock(self.di_offset + 1, [0] * 8),
            co=ModbusSequentialDataBlock(self.coil_offset + 1, [0] * 8),
            ir=ModbusSequentialDataBlock(self.ir_offset + 1, [0] * 8),
            hr=None,
        )
        self._context = _server_context(self._device_ctx)

    def start(self):
        with self._state_lock:
            if self._started:
                return
            self._started = True
            self._tasks.cancel_and_clear()
            self._serve_task = self._tasks.spawn(self._serve())
            self._tasks.spawn(self._heartbeat_loop())

    def stop(self):
        with self._state_lock:
            if not self._started:
                return
            self._started = False
            self._serve_task = None
        self._tasks.cancel_and_clear()

        async def _cleanup():
            server = self._server
            if server is not None:
                await server.shutdown()

        run_async_cleanup(_cleanup(), timeout=0.5, loop_runner=self._tasks.loop_runner)
        self._server = None
        L.info("Modbus TCP server stopped")

    def raise_if_failed(self):
        err = task_failure(self._serve_task)
        if err is not None:
            raise RuntimeError(
                f"Modbus server stopped unexpectedly ({type(err).__name__})"
            ) from err

    def read_coils(self, offset: int, count: int) -> list[int]:
        with self._lock:
            values = self._device_ctx.getValues(
                _FC_COILS, self.coil_offset + int(offset), int(count)
            )
            return _require_values(values, count, "coils")

    def toggle_di(self, idx: int):
        with self._lock:
            self._toggle_di_locked(idx)

    def write_counters(self, counts: dict[str, dict[str, int]], last_seq: int):
        a = counts.get("A", {})
        b = counts.get("B", {})
        values = [
            int(a.get("count", 0)),
            int(a.get("good", 0)),
            int(b.get("count", 0)),
            int(b.get("good", 0)),
            int(last_seq),
        ]
        with self._lock:
            self._set_values_locked(
                _FC_IR, self.ir_offset, [v & 0xFFFF for v in values], "ir_counters"
            )
            self._toggle_di_locked(DI_EVENT)

    def write_state(self, state: RunState, fault_count: int):
        bits = [int(state is s) for s in (RunState.RUNNING, RunState.PAUSED, RunState.FAULTED)]
        with self._lock:
            self._set_values_locked(
                _FC_DI, self.di_offset + DI_STATE_BASE, bits, "di_state"
            )
            self._set_values_locked(
                _FC_IR,
                self.ir_offset + 5,
                [STATE_CODES[state], int(fault_count) & 0xFFFF],
                "ir_state",
            )

    def reset_outputs(self):
        with self._lock:
            self._set_values_locked(_FC_DI, self.di_offset, [0] * 6, "di_reset")
            self._set_values_locked(_FC_IR, self.ir_offset, [0] * 7, "ir_reset")

    async def _serve(self):
        server = ModbusTcpServer(self._context, address=(self.host, self.port))
        self._server = server
        L.info("Modbus TCP server listening on %s:%d", self.host, self.port)
        try:
            await server.serve_forever()
        except asyncio.CancelledError:
            return
        finally:
            if self._server is server:
                self._server = None

    async def _heartbeat_loop(self):
        interval_s = self.heartbeat_ms / 1000.0
        while True:
            await asyncio.sleep(interval_s)
            with self._lock:
                self._toggle_di_locked(DI_HEARTBEAT)

    def _set_values_locked(
        self, func_code: int, address: int, values: Sequence[int], label: str
    ):
        res = self._device_ctx.setValues(func_code, address, list(values))
        if _is_exception_response(res):
            raise RuntimeError(f"Modbus write failed for {label}: {res!r}")

    def _toggle_di_locked(self, idx: int):
        addr = self.di_offset + int(idx)
        cur = _require_values(self._device_ctx.getValues(_FC_DI, addr, 1), 1, "di")
        self._set_values_locked(_FC_DI, addr, [0 if cur[0] else 1], "di")


__all__ = ["ModbusIO", "STATE_CODES"]
