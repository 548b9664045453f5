"""AcquisitionController: run state, detectors, and liveness on a fixed tick."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol, Sequence

from core.contracts import (
    STATUS_FOR_STATE,
    Destination,
    DomainEvent,
    RunState,
    StatusKind,
)
from core.liveness import LivenessTimer
from core.quality import QualityJudge
from detect.edge import EdgeDetector
from detect.threshold import ThresholdDetector
from sensor.base import SignalSource

L = logging.getLogger("line_monitor.controller")

MSG_WAITING = "Waiting for production..."
MSG_RUNNING = "In production..."
MSG_PAUSED = "Idle..."
MSG_TIMEOUT = "Timeout: no production"


class EventSink(Protocol):
    def report_event(self, event: DomainEvent) -> None: ...

    def report_status(self, kind: StatusKind, message: str = "") -> None: ...


class Display(Protocol):
    def show_message(self, text: str) -> None: ...

    def show_error(self, text: str) -> None: ...


@dataclass
class GateBinding:
    name: str
    source: SignalSource
    detector: ThresholdDetector
    destination: Destination


class AcquisitionController:
    """Turns sampled sensor values into production events under a run state.

    `tick()` runs on the runtime thread; `handle_override()` arrives from input
    threads. Both hold the same lock, so a state change is applied as a whole
    and is seen by the next tick.
    """

    def __init__(
        self,
        *,
        rotary_source: SignalSource,
        edge_detector: EdgeDetector,
        gates: Sequence[GateBinding],
        sink: EventSink,
        display: Display,
        judge: QualityJudge,
        liveness_timeout_s: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if liveness_timeout_s <= 0:
            raise ValueError("liveness_timeout_s must be > 0")
        self.rotary_source = rotary_source
        self.edge_detector = edge_detector
        self.gates = list(gates)
        self.sink = sink
        self.display = display
        self.judge = judge
        self.liveness_timeout_s = float(liveness_timeout_s)
        self._clock = clock
        self._timer = LivenessTimer(clock)
        self._lock = threading.RLock()
        self._state = RunState.RUNNING
        self._event_seq = 0
        self._edge_count = 0
        self._fault_count = 0
        self._last_direction: Destination | None = None
        self._last_error = ""

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def timer(self) -> LivenessTimer:
        return self._timer

    # ---- lifecycle hooks ----

    def announce_start(self) -> None:
        """Report a successful startup; detection begins in RUNNING."""
        with self._lock:
            self._state = RunState.RUNNING
            self._timer.reset()
            self._last_error = ""
            L.info("Machine started: %s", MSG_WAITING)
            self.sink.report_status(StatusKind.ACTIVE, "Machine started: wait activation")
            self.display.show_message(MSG_WAITING)

    def fail_startup(self, err: BaseException) -> None:
        """Enter FAULTED because a collaborator could not be brought up."""
        message = f"Startup failed: {err}"
        with self._lock:
            self._state = RunState.FAULTED
            self._last_error = message
            L.error(message)
            try:
                self.display.show_error(message)
            except Exception:
                # The display may be the collaborator that failed.
                L.exception("Display unavailable while reporting startup failure")

    # ---- main loop ----

    def tick(self) -> list[DomainEvent]:
        with self._lock:
            if self._state is not RunState.RUNNING:
                return []
            now = self._clock()
            if self._timer.expired(self.liveness_timeout_s, now):
                self._enter_liveness_fault(now)
                return []

            self._evaluate_rotary(now)
            events = []
            for gate in self.gates:
                event = self._evaluate_gate(gate)
                if event is not None:
                    events.append(event)
            return events

    def _evaluate_rotary(self, now: float) -> None:
        if not self.rotary_source.is_valid():
            return
        direction = self.edge_detector.evaluate(self.rotary_source.get_value())
        if direction is None:
            return
        self._timer.reset(now)
        self._edge_count += 1
        self._last_direction = direction
        L.info("Arm rotated toward %s", direction.value)

    def _evaluate_gate(self, gate: GateBinding) -> DomainEvent | None:
        if not gate.source.is_valid():
            return None
        if not gate.detector.evaluate(gate.source.get_value()):
            return None
        self._event_seq += 1
        event = DomainEvent(
            seq=self._event_seq,
            destination=gate.destination,
            good=bool(self.judge.judge()),
            detected_at=datetime.now(timezone.utc),
            gate=gate.name,
        )
        L.info(
            "[%5d] item passed gate=%s dest=%s good=%s",
            event.seq,
            gate.name,
            gate.destination.value,
            event.good,
        )
        self.sink.report_event(event)
        return event

    def _enter_liveness_fault(self, now: float) -> None:
        elapsed = self._timer.elapsed_since(now)
        self._state = RunState.FAULTED
        self._fault_count += 1
        self._last_error = MSG_TIMEOUT
        L.warning(
            "No arm movement for %.1fs (limit %.1fs); line FAULTED",
            elapsed,
            self.liveness_timeout_s,
        )
        self.sink.report_status(StatusKind.ERROR, MSG_TIMEOUT)
        self.display.show_error("Error")

    # ---- manual override ----

    def handle_override(self) -> RunState:
        """Operator press: RUNNING<->PAUSED, or clear a fault back to RUNNING."""
        with self._lock:
            prev = self._state
            if prev is RunState.RUNNING:
                new, message = RunState.PAUSED, "Paused by operator"
            elif prev is RunState.PAUSED:
                new, message = RunState.RUNNING, "Resumed by operator"
            else:
                new, message = RunState.RUNNING, "Fault cleared by operator"
            self._state = new
            if new is RunState.RUNNING:
                # Liveness counts from the resume moment; detector state is kept.
                self._timer.reset()
                self._last_error = ""
            L.info("Override: %s -> %s", prev.value, new.value)
            self.sink.report_status(STATUS_FOR_STATE[new], message)
            self.display.show_message(
                MSG_RUNNING if new is RunState.RUNNING else MSG_PAUSED
            )
            return new

    # ---- read API ----

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            state = self._state
            remaining = None
            if state is RunState.RUNNING:
                remaining = max(
                    0.0, self.liveness_timeout_s - self._timer.elapsed_since()
                )
            return {
                "state": state.value,
                "status": STATUS_FOR_STATE[state].value,
                "last_direction": (
                    self._last_direction.value if self._last_direction else None
                ),
                "edge_count": self._edge_count,
                "event_count": self._event_seq,
                "fault_count": self._fault_count,
                "liveness_remaining_s": remaining,
                "liveness_timeout_s": self.liveness_timeout_s,
                "last_error": self._last_error,
            }


__all__ = [
    "AcquisitionController",
    "Display",
    "EventSink",
    "GateBinding",
    "MSG_PAUSED",
    "MSG_RUNNING",
    "MSG_TIMEOUT",
    "MSG_WAITING",
]
