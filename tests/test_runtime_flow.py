import asyncio
import os
import threading
import time
import unittest
from contextlib import contextmanager

from aiohttp.test_utils import AioHTTPTestCase

from core.config import load_config
from core.contracts import RunState, StatusKind
from core.runtime import StartupError, build_overrides, build_runtime
from output.hmi import HmiOutput, build_status_payload, default_index_path
from sensor import BaseSensorDriver, build_sensor_layout

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
TEST_CONFIG_DIR = os.path.join(REPO_ROOT, "config", "tests")


class BusErrorDriver(BaseSensorDriver):
    @contextmanager
    def session(self):
        raise OSError("SPI bus not available")
        yield self  # pragma: no cover

    def read_raw(self, channel):
        raise AssertionError("never read")


def _load_test_config():
    if not os.path.isdir(TEST_CONFIG_DIR):
        raise AssertionError(f"missing test config dir: {TEST_CONFIG_DIR}")
    return load_config(TEST_CONFIG_DIR)


class SlowStatusChannel:
    """Output channel whose status writes block, like a sink with a slow server."""

    name = "slow"

    def __init__(self):
        self.delay_s = 0.0
        self.done = threading.Event()

    def start(self):
        return None

    def stop(self):
        return None

    def publish_event(self, event):
        _ = event

    def publish_status(self, report):
        _ = report
        if self.delay_s:
            time.sleep(self.delay_s)
            self.done.set()

    def publish_heartbeat(self, ts=None):
        _ = ts

    def raise_if_failed(self):
        return None


def _tick_until(runtime, predicate, timeout_s: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        time.sleep(runtime.tick_s)
        runtime.apply_pending_commands()
        runtime.controller.tick()
        if predicate():
            return True
    return False


class TestRuntimeFlow(unittest.TestCase):
    def test_sim_line_produces_events(self):
        cfg = _load_test_config()
        runtime = build_runtime(cfg)
        overrides = build_overrides(cfg, runtime)
        self.assertEqual(overrides, [])

        runtime.start(overrides)
        runtime.run(runtime_limit_s=cfg.runtime.max_runtime_s)

        ctrl = runtime.controller
        self.assertIs(ctrl.state, RunState.RUNNING)
        snap = ctrl.snapshot()
        self.assertGreater(snap["edge_count"], 0)
        stats = runtime.output_mgr.stats()
        self.assertGreater(stats["total"], 0)
        self.assertEqual(stats["good"], stats["total"])

        payload = build_status_payload(runtime.app_context)
        self.assertEqual(payload["controller"]["state"], "running")
        self.assertTrue(payload["full_snapshot"])
        self.assertEqual(payload["latest_seq"], payload["events"][0]["seq"])
        self.assertIn(payload["events"][0]["where"], ("Svizzera", "Italia"))
        newer = build_status_payload(runtime.app_context, since_seq=payload["latest_seq"])
        self.assertEqual(newer["events"], [])
        self.assertFalse(newer["full_snapshot"])

    def test_stalled_arm_faults_line(self):
        cfg = _load_test_config()
        cfg.runtime.liveness_timeout_ms = 300
        cfg.sensors.driver_params["stall_after_s"] = 0.05
        runtime = build_runtime(cfg)
        runtime.start()
        runtime.run(runtime_limit_s=0.8)

        self.assertIs(runtime.controller.state, RunState.FAULTED)
        last = runtime.output_mgr.last_status()
        self.assertIs(last.kind, StatusKind.ERROR)
        disp = runtime.app_context.display.current()
        self.assertEqual(disp.text, "Error")
        self.assertEqual(disp.rgb, (255, 0, 0))

    def test_override_through_gateway(self):
        cfg = _load_test_config()
        runtime = build_runtime(cfg)
        runtime.start()
        try:
            gw = runtime.app_context.override_gateway
            self.assertTrue(gw.report_press("TEST"))
            # Applied by the runtime thread, not by the input.
            self.assertIs(runtime.controller.state, RunState.RUNNING)
            runtime.apply_pending_commands()
            self.assertIs(runtime.controller.state, RunState.PAUSED)
            self.assertEqual(runtime.output_mgr.last_status().kind, StatusKind.INACTIVE)
        finally:
            runtime.stop()

    def test_press_from_loop_does_not_stall_loop(self):
        cfg = _load_test_config()
        runtime = build_runtime(cfg)
        slow = SlowStatusChannel()
        runtime.output_mgr.add_channel(slow)
        runtime.start()
        slow.delay_s = 1.0
        gw = runtime.app_context.override_gateway
        loop_runner = runtime.loop_runner

        async def longest_loop_gap(stop_evt):
            worst, last = 0.0, time.perf_counter()
            while not stop_evt.is_set():
                await asyncio.sleep(0.05)
                now = time.perf_counter()
                worst = max(worst, now - last)
                last = now
            return worst

        async def web_press():
            return gw.report_press("WEB", remote="127.0.0.1")

        stop_watch = threading.Event()
        watcher = loop_runner.spawn_background_task(longest_loop_gap(stop_watch))
        worker = threading.Thread(target=runtime.run, kwargs={"runtime_limit_s": 5.0})
        worker.start()
        try:
            self.assertTrue(loop_runner.run_async(web_press(), timeout=1.0))
            self.assertTrue(slow.done.wait(3.0))
            stop_watch.set()
            worst = watcher.result(timeout=1.0)
        finally:
            stop_watch.set()
            runtime.request_stop()
            worker.join(timeout=5.0)
        self.assertFalse(worker.is_alive())
        self.assertLess(worst, 0.3)
        self.assertIs(runtime.controller.state, RunState.PAUSED)

    def test_counter_reset_keeps_event_seq_monotonic(self):
        cfg = _load_test_config()
        runtime = build_runtime(cfg)
        runtime.start()
        try:
            store = runtime.output_mgr
            self.assertTrue(_tick_until(runtime, lambda: store.stats()["total"] > 0))
            before = build_status_payload(runtime.app_context)
            last_seq = before["latest_seq"]

            runtime.request_reset_counters()
            self.assertGreater(store.stats()["total"], 0)
            runtime.apply_pending_commands()
            self.assertEqual(store.stats()["total"], 0)
            self.assertEqual(store.latest_events, [])
            self.assertEqual(runtime.controller.snapshot()["event_count"], last_seq)

            self.assertTrue(_tick_until(runtime, lambda: store.stats()["total"] > 0))
            after = build_status_payload(runtime.app_context, since_seq=last_seq)
            self.assertTrue(after["events"])
            self.assertTrue(all(ev["seq"] > last_seq for ev in after["events"]))
            self.assertEqual(len(store.latest_events), store.stats()["total"])
        finally:
            runtime.stop()

    def test_counter_reset_keeps_debounce_window(self):
        cfg = _load_test_config()
        cfg.override.debounce_ms = 5000
        runtime = build_runtime(cfg)
        gw = runtime.app_context.override_gateway
        self.assertTrue(gw.report_press("MODBUS"))
        runtime.request_reset_counters()
        runtime.apply_pending_commands()
        self.assertFalse(gw.report_press("MODBUS"))
        self.assertEqual(gw.stats(), {"accepted": 1, "dropped": 1})

    def test_startup_failure_faults_and_raises(self):
        cfg = _load_test_config()
        driver = BusErrorDriver(build_sensor_layout(cfg.sensors))
        runtime = build_runtime(cfg, driver=driver)
        with self.assertLogs("line_monitor.runtime", level="ERROR"):
            with self.assertRaises(StartupError):
                runtime.start()
        self.assertIs(runtime.controller.state, RunState.FAULTED)
        disp = runtime.app_context.display.current()
        self.assertTrue(disp.alert)
        self.assertIn("SPI bus not available", disp.text)

    def test_runtime_is_single_use(self):
        runtime = build_runtime(_load_test_config())
        runtime.start()
        runtime.stop()
        with self.assertRaises(RuntimeError):
            runtime.start()


class _HmiAppCase(AioHTTPTestCase):
    allow_override = True

    async def get_application(self):
        self.runtime = build_runtime(_load_test_config())
        self.runtime.controller.announce_start()
        hmi = HmiOutput(
            "127.0.0.1",
            0,
            self.runtime.app_context,
            index_path=default_index_path(),
            allow_override=self.allow_override,
            loop_runner=self.runtime.loop_runner,
        )
        return hmi.server.app


class TestHmiOverride(_HmiAppCase):
    async def test_post_override_queues_one_press(self):
        resp = await self.client.request("POST", "/override")
        self.assertEqual(resp.status, 200)
        self.assertEqual(await resp.json(), {"accepted": True})
        resp = await self.client.request("POST", "/override")
        self.assertEqual(await resp.json(), {"accepted": False})

        self.assertIs(self.runtime.controller.state, RunState.RUNNING)
        self.runtime.apply_pending_commands()
        self.assertIs(self.runtime.controller.state, RunState.PAUSED)

        resp = await self.client.request("GET", "/status")
        self.assertEqual(resp.status, 200)
        payload = await resp.json()
        self.assertEqual(payload["controller"]["state"], "paused")
        self.assertEqual(payload["last_status"]["type"], "inactive")


class TestHmiOverrideDisabled(_HmiAppCase):
    allow_override = False

    async def test_override_route_missing(self):
        resp = await self.client.request("POST", "/override")
        self.assertEqual(resp.status, 404)
        self.assertEqual(self.runtime.app_context.override_gateway.stats()["accepted"], 0)

    async def test_status_still_served(self):
        resp = await self.client.request("GET", "/status")
        self.assertEqual(resp.status, 200)
        self.assertEqual((await resp.json())["controller"]["state"], "running")


if __name__ == "__main__":
    unittest.main()
