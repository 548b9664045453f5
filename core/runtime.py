"""Core runtime: SystemRuntime orchestration and runtime assembly."""

from __future__ import annotations

import logging
import queue
import threading
import time
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, TYPE_CHECKING

from core.contracts import Destination, DomainEvent, RunState, StatusReport
from core.controller import AcquisitionController, GateBinding
from core.lifecycle import LoopRunner
from core.quality import QualityJudge, create_judge
from detect import create_detectors_from_loaded_config
from output.display import PanelDisplay
from output.manager import EventStore, OutputManager
from override import OverrideGateway, create_override
from sensor import (
    BaseSensorDriver,
    SensorMonitor,
    build_sensor_layout,
    create_driver,
    rotary_degrees,
)

if TYPE_CHECKING:  # pragma: no cover
    from core.modbus_io import ModbusIO
    from override.base import BaseOverride

L = logging.getLogger("line_monitor.runtime")

HEARTBEAT_INTERVAL_S = 1.0
OVERRIDE_QUEUE_SIZE = 8


class StartupError(RuntimeError):
    """A collaborator could not be brought up; the line was never monitored."""


class OverrideHandle(Protocol):
    def start(self) -> None: ...
    def stop(self) -> None: ...
    def raise_if_failed(self) -> None: ...


class ResultReadApi(Protocol):
    @property
    def latest_events(self) -> list[DomainEvent]: ...

    @property
    def max_records(self) -> int: ...

    @property
    def labels(self) -> dict[str, str]: ...

    def last_status(self) -> StatusReport | None: ...

    def stats(self) -> dict[str, Any]: ...

    def heartbeat_seq(self) -> int | None: ...


@dataclass
class AppContext:
    controller: AcquisitionController
    display: PanelDisplay
    results: ResultReadApi
    override_gateway: OverrideGateway
    modbus_io: Optional["ModbusIO"] = None


class SystemRuntime:
    """Coordinates sensor sampling, the control tick, outputs and override inputs."""

    def __init__(
        self,
        app_context: AppContext,
        *,
        driver: BaseSensorDriver,
        monitors: list[SensorMonitor],
        output_mgr: OutputManager,
        loop_runner: LoopRunner,
        tick_s: float = 0.5,
    ):
        self.app_context = app_context
        self.driver = driver
        self.monitors = list(monitors)
        self.output_mgr = output_mgr
        self.loop_runner = loop_runner
        self.tick_s = float(tick_s)
        self.overrides: list[OverrideHandle] = []

        self._stop_evt = threading.Event()
        self._reset_evt = threading.Event()
        self._sensor_session_stack: ExitStack | None = None
        self._started = False
        self._stopped = False

    @property
    def controller(self) -> AcquisitionController:
        return self.app_context.controller

    def start(self, overrides: Optional[list[OverrideHandle]] = None):
        if self._started:
            raise RuntimeError(
                "SystemRuntime is single-use; start() may only be called once"
            )
        if self._stopped:
            raise RuntimeError("SystemRuntime is stopped and cannot be started again")
        self._started = True
        self.overrides = list(overrides or [])
        try:
            self._enter_sensor_session()

            for mon in self.monitors:
                mon.start()

            modbus_io = self.app_context.modbus_io
            if modbus_io is not None:
                modbus_io.start()

            self.output_mgr.start()

            for o in list(self.overrides):
                o.start()
        except Exception as err:
            L.exception("Runtime start failed; rolling back partial startup")
            self.controller.fail_startup(err)
            try:
                self.stop()
            except Exception:
                L.exception("Runtime rollback stop failed")
            raise StartupError(f"Startup failed: {err}") from err
        self.controller.announce_start()

    def request_stop(self):
        self._stop_evt.set()

    def run(self, runtime_limit_s: float | None = None):
        if not self._started:
            raise RuntimeError("SystemRuntime.run() requires start() first")
        start_ts = time.perf_counter()
        next_heartbeat_ts = start_ts + HEARTBEAT_INTERVAL_S
        try:
            while not self._stop_evt.wait(self.tick_s):
                self.apply_pending_commands()
                self.controller.tick()
                now_ts = time.perf_counter()
                if now_ts >= next_heartbeat_ts:
                    self.output_mgr.tick()
                    next_heartbeat_ts = now_ts + HEARTBEAT_INTERVAL_S
                self._raise_if_monitor_stopped()
                self._raise_if_override_stopped()
                self._raise_if_output_stopped()
                if (
                    runtime_limit_s is not None
                    and (now_ts - start_ts) >= runtime_limit_s
                ):
                    L.info(
                        "Runtime limit reached (%ss); shutting down service",
                        runtime_limit_s,
                    )
                    self.request_stop()
        finally:
            self.stop()

    def apply_pending_commands(self):
        """Apply queued override presses and counter resets on the calling thread."""
        press_queue = self.app_context.override_gateway.press_queue
        while True:
            try:
                press = press_queue.get_nowait()
            except queue.Empty:
                break
            new_state = self.controller.handle_override()
            L.info(
                "Override applied source=%s seq=%d state=%s",
                press.source,
                press.seq,
                new_state.value,
            )
        if self._reset_evt.is_set():
            self._reset_evt.clear()
            self.reset_counters()

    def _raise_if_monitor_stopped(self):
        for mon in self.monitors:
            mon.raise_if_failed()

    def _raise_if_override_stopped(self):
        for o in self.overrides:
            o.raise_if_failed()

    def _raise_if_output_stopped(self):
        self.output_mgr.raise_if_failed()
        modbus_io = self.app_context.modbus_io
        if modbus_io is not None:
            modbus_io.raise_if_failed()

    def stop(self):
        if self._stopped:
            return
        self._stopped = True
        stop_t0 = time.perf_counter()
        stage_t0 = stop_t0

        def _log_stage(name: str):
            nonlocal stage_t0
            now = time.perf_counter()
            L.debug("Shutdown stage=%s elapsed=%.1fms", name, (now - stage_t0) * 1000)
            stage_t0 = now

        def _run_stage(name: str, fn: Callable[[], None]):
            try:
                fn()
            except Exception:
                L.exception("Shutdown stage failed: %s", name)
            finally:
                _log_stage(name)

        def _stop_overrides():
            for o in list(self.overrides):
                try:
                    o.stop()
                except Exception:
                    L.exception("Override input stop failed: %r", o)

        def _stop_monitors():
            for mon in self.monitors:
                if mon.has_started:
                    mon.stop()

        def _stop_modbus_io():
            modbus_io = self.app_context.modbus_io
            if modbus_io is not None:
                modbus_io.stop()

        _run_stage("overrides", _stop_overrides)
        _run_stage("sensor_monitors", _stop_monitors)
        _run_stage("output_manager", self.output_mgr.stop)
        _run_stage("modbus_io", _stop_modbus_io)
        _run_stage("async_loop", self.loop_runner.shutdown_loop)
        _run_stage("sensor_session", self._exit_sensor_session)
        L.debug(
            "Shutdown stage=total elapsed=%.1fms",
            (time.perf_counter() - stop_t0) * 1000,
        )

    def request_reset_counters(self):
        """Ask the runtime thread to zero the counters before its next tick."""
        self._reset_evt.set()

    def reset_counters(self):
        """Zero production counters and history.

        Event sequence numbers are not reset: they stay monotonic for the
        life of the process, so `since_seq` polling keeps working and the next
        event written to the Modbus `last_seq` register carries on from the
        last one.
        """
        self.output_mgr.reset()
        modbus_io = self.app_context.modbus_io
        if modbus_io:
            modbus_io.reset_outputs()
            snap = self.controller.snapshot()
            modbus_io.write_state(RunState(snap["state"]), snap["fault_count"])
        L.info("Production counters reset")

    def _enter_sensor_session(self):
        if self._sensor_session_stack is not None:
            return
        stack = ExitStack()
        stack.enter_context(self.driver.session())
        self._sensor_session_stack = stack

    def _exit_sensor_session(self):
        stack = self._sensor_session_stack
        if stack is None:
            return
        self._sensor_session_stack = None
        stack.close()


def _build_monitors(cfg, driver: BaseSensorDriver, layout):
    sample_ms = int(cfg.sensors.sample_ms)
    rotary = SensorMonitor(
        layout.rotary_name,
        driver,
        layout.rotary_channel,
        sample_ms=sample_ms,
        convert=rotary_degrees,
    )
    gates = {
        g.name: SensorMonitor(g.name, driver, g.channel, sample_ms=sample_ms)
        for g in layout.gates
    }
    return rotary, gates


def _build_output_manager(cfg) -> OutputManager:
    store = EventStore(
        base_dir=cfg.runtime.data_dir,
        labels=cfg.output.destination_labels,
        max_records=cfg.output.hmi.history_size,
        write_csv=bool(cfg.output.csv.enabled),
    )
    return OutputManager(store)


def _build_modbus_io(cfg, *, loop_runner: LoopRunner):
    if not (cfg.override.modbus.enabled or cfg.output.modbus.enabled):
        return None
    from core.modbus_io import ModbusIO

    return ModbusIO(
        cfg.comm.modbus.host,
        cfg.comm.modbus.port,
        coil_offset=cfg.comm.modbus.coil_offset,
        di_offset=cfg.comm.modbus.di_offset,
        ir_offset=cfg.comm.modbus.ir_offset,
        heartbeat_ms=cfg.comm.modbus.heartbeat_ms,
        loop_runner=loop_runner,
    )


def _wire_output_channels(
    cfg,
    *,
    app_context: AppContext,
    output_mgr: OutputManager,
    loop_runner: LoopRunner,
):
    if cfg.output.influx.enabled:
        from output.influx import InfluxOutput

        influx = cfg.comm.influx
        output_mgr.add_channel(
            InfluxOutput(
                influx.url,
                influx.org,
                influx.bucket,
                token_env=influx.token_env,
                labels=cfg.output.destination_labels,
                timeout_ms=influx.timeout_ms,
            )
        )

    if cfg.output.modbus.enabled and app_context.modbus_io is not None:
        from output.modbus import ModbusOutput

        output_mgr.add_channel(ModbusOutput(app_context.modbus_io, output_mgr.stats))

    if cfg.output.hmi.enabled:
        from output.hmi import HmiOutput, default_index_path

        output_mgr.add_channel(
            HmiOutput(
                cfg.comm.http.host,
                cfg.comm.http.port,
                app_context,
                index_path=default_index_path(),
                allow_override=bool(cfg.override.web.enabled),
                loop_runner=loop_runner,
            )
        )


def build_runtime(
    cfg,
    *,
    driver: BaseSensorDriver | None = None,
    judge: QualityJudge | None = None,
    loop_runner: LoopRunner | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> SystemRuntime:
    loop_runner = loop_runner or LoopRunner()
    layout = build_sensor_layout(cfg.sensors)
    if driver is None:
        driver = create_driver(cfg.sensors.type, layout, cfg.sensors.driver_params)
    rotary_monitor, gate_monitors = _build_monitors(cfg, driver, layout)
    edge_detector, gate_detectors = create_detectors_from_loaded_config(cfg)
    if judge is None:
        judge = create_judge(
            cfg.quality.impl,
            good_ratio=cfg.quality.good_ratio,
            seed=cfg.quality.seed,
        )

    output_mgr = _build_output_manager(cfg)
    display = PanelDisplay()
    controller = AcquisitionController(
        rotary_source=rotary_monitor,
        edge_detector=edge_detector,
        gates=[
            GateBinding(
                name=g.name,
                source=gate_monitors[g.name],
                detector=gate_detectors[g.name],
                destination=Destination(g.destination),
            )
            for g in layout.gates
        ],
        sink=output_mgr,
        display=display,
        judge=judge,
        liveness_timeout_s=cfg.runtime.liveness_timeout_ms / 1000.0,
        clock=clock,
    )

    modbus_io = _build_modbus_io(cfg, loop_runner=loop_runner)

    def on_override_accepted(_press):
        if modbus_io is not None:
            from core.modbus_io import DI_OVERRIDE_ACCEPTED

            modbus_io.toggle_di(DI_OVERRIDE_ACCEPTED)

    app_context = AppContext(
        controller=controller,
        display=display,
        results=output_mgr,
        override_gateway=OverrideGateway(
            queue.Queue(maxsize=OVERRIDE_QUEUE_SIZE),
            debounce_ms=cfg.override.debounce_ms,
            on_accepted=on_override_accepted,
        ),
        modbus_io=modbus_io,
    )
    _wire_output_channels(
        cfg, app_context=app_context, output_mgr=output_mgr, loop_runner=loop_runner
    )
    return SystemRuntime(
        app_context,
        driver=driver,
        monitors=[rotary_monitor, *gate_monitors.values()],
        output_mgr=output_mgr,
        loop_runner=loop_runner,
        tick_s=cfg.runtime.tick_ms / 1000.0,
    )


def build_overrides(cfg, runtime: SystemRuntime) -> list["BaseOverride"]:
    """Create the enabled override inputs, all feeding the runtime's gateway."""
    gateway = runtime.app_context.override_gateway
    ov = cfg.override
    overrides = []
    if ov.gpio.enabled:
        overrides.append(
            create_override(
                "gpio",
                gateway.report_press,
                pin=ov.gpio.pin,
                pull_up=ov.gpio.pull_up,
                bounce_ms=ov.gpio.bounce_ms,
            )
        )
    if ov.modbus.enabled:
        modbus_io = runtime.app_context.modbus_io
        if modbus_io is None:
            raise RuntimeError("Modbus override enabled but Modbus IO missing")
        overrides.append(
            create_override(
                "modbus",
                gateway.report_press,
                modbus_io=modbus_io,
                poll_ms=ov.modbus.poll_ms,
                on_reset=runtime.request_reset_counters,
                loop_runner=runtime.loop_runner,
            )
        )
    if ov.tcp.enabled:
        overrides.append(
            create_override(
                "tcp",
                gateway.report_press,
                host=cfg.comm.tcp.host,
                port=cfg.comm.tcp.port,
                word=ov.tcp.word,
                loop_runner=runtime.loop_runner,
            )
        )
    return overrides


__all__ = [
    "AppContext",
    "ResultReadApi",
    "StartupError",
    "SystemRuntime",
    "build_overrides",
    "build_runtime",
]
