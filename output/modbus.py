# -- coding: utf-8 --

from typing import Callable

from core.contracts import DomainEvent, RunState, StatusKind, StatusReport
from core.modbus_io import ModbusIO

_STATE_FOR_STATUS = {
    StatusKind.ACTIVE: RunState.RUNNING,
    StatusKind.INACTIVE: RunState.PAUSED,
    StatusKind.ERROR: RunState.FAULTED,
}


class ModbusOutput:
    name = "modbus"

    def __init__(self, modbus_io: ModbusIO, stats_fn: Callable[[], dict]):
        self.io = modbus_io
        self._stats_fn = stats_fn
        self._fault_count = 0

    def start(self):
        self.io.start()

    def stop(self):
        self.io.stop()

    def publish_event(self, event: DomainEvent):
        # Counters already include this event; the store is updated first.
        stats = self._stats_fn()
        self.io.write_counters(stats.get("destinations", {}), event.seq)

    def publish_status(self, report: StatusReport):
        state = _STATE_FOR_STATUS[report.kind]
        if state is RunState.FAULTED:
            self._fault_count += 1
        self.io.write_state(state, self._fault_count)

    def publish_heartbeat(self, ts: float | None = None):
        # ModbusIO runs its own heartbeat loop.
        _ = ts
        return None

    def raise_if_failed(self):
        self.io.raise_if_failed()


__all__ = ["ModbusOutput"]
