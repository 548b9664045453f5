import threading
import time
import unittest

from core.contracts import Destination, RunState, Sample, StatusKind
from core.controller import (
    MSG_PAUSED,
    MSG_RUNNING,
    MSG_TIMEOUT,
    MSG_WAITING,
    AcquisitionController,
    GateBinding,
)
from detect import EdgeDetector, ThresholdDetector


class FakeClock:
    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


class FakeSource:
    def __init__(self, name: str, value: float = 0.0, valid: bool = True):
        self.name = name
        self.value = value
        self.valid = valid

    def is_valid(self) -> bool:
        return self.valid

    def get_value(self) -> Sample:
        return Sample(channel=self.name, value=self.value, valid=self.valid)


class RecordingSink:
    def __init__(self):
        self.events = []
        self.statuses = []

    def report_event(self, event):
        self.events.append(event)

    def report_status(self, kind, message=""):
        self.statuses.append((StatusKind(kind), message))


class RecordingDisplay:
    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    def show_message(self, text):
        self.calls.append(("message", text))

    def show_error(self, text):
        if self.fail:
            raise OSError("lcd unplugged")
        self.calls.append(("error", text))


class SequenceJudge:
    def __init__(self, results):
        self._results = list(results)

    def judge(self) -> bool:
        return self._results.pop(0)


class TestAcquisitionController(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock(0.0)
        self.rotary = FakeSource("rotary", 190.0)
        self.light_r = FakeSource("light_right", 600.0)
        self.light_l = FakeSource("light_left", 600.0)
        self.edge = EdgeDetector(100, 280)
        self.sink = RecordingSink()
        self.display = RecordingDisplay()
        self.ctrl = self._make(judge=SequenceJudge([True] * 20))

    def _make(self, *, judge, display=None):
        return AcquisitionController(
            rotary_source=self.rotary,
            edge_detector=self.edge,
            gates=[
                GateBinding("light_right", self.light_r, ThresholdDetector(20), Destination.A),
                GateBinding("light_left", self.light_l, ThresholdDetector(20), Destination.B),
            ],
            sink=self.sink,
            display=display or self.display,
            judge=judge,
            liveness_timeout_s=15.0,
            clock=self.clock,
        )

    def _tick(self, dt: float = 0.5):
        self.clock.t += dt
        return self.ctrl.tick()

    def test_announce_start(self):
        self.ctrl.announce_start()
        self.assertIs(self.ctrl.state, RunState.RUNNING)
        self.assertEqual(
            self.sink.statuses, [(StatusKind.ACTIVE, "Machine started: wait activation")]
        )
        self.assertEqual(self.display.calls, [("message", MSG_WAITING)])

    def test_gate_event_routed_to_destination(self):
        self.ctrl.announce_start()
        self._tick()  # seeds light baselines
        self.light_r.value = 480.0
        events = self._tick()
        self.assertEqual(len(events), 1)
        ev = events[0]
        self.assertIs(ev.destination, Destination.A)
        self.assertEqual(ev.gate, "light_right")
        self.assertEqual(ev.seq, 1)
        self.assertTrue(ev.good)
        self.assertEqual(self.sink.events, [ev])

    def test_both_gates_evaluated_in_one_tick(self):
        self.ctrl.announce_start()
        self._tick()
        self.light_r.value = 480.0
        self.light_l.value = 480.0
        events = self._tick()
        self.assertEqual([e.destination for e in events], [Destination.A, Destination.B])
        self.assertEqual([e.seq for e in events], [1, 2])

    def test_judge_result_recorded(self):
        ctrl = self._make(judge=SequenceJudge([False]))
        self.ctrl = ctrl
        ctrl.announce_start()
        self._tick()
        self.light_l.value = 400.0
        (ev,) = self._tick()
        self.assertFalse(ev.good)

    def test_liveness_timeout_faults_once(self):
        self.ctrl.announce_start()
        for _ in range(29):
            self._tick()
        self.assertIs(self.ctrl.state, RunState.RUNNING)
        self._tick()  # t = 15.0
        self.assertIs(self.ctrl.state, RunState.FAULTED)
        for _ in range(10):
            self._tick()
        errors = [s for s in self.sink.statuses if s[0] is StatusKind.ERROR]
        self.assertEqual(errors, [(StatusKind.ERROR, MSG_TIMEOUT)])
        self.assertEqual(self.display.calls[-1], ("error", "Error"))
        self.assertEqual(self.ctrl.snapshot()["fault_count"], 1)

    def test_arm_movement_resets_liveness(self):
        self.ctrl.announce_start()
        for _ in range(20):
            self._tick()
        self.rotary.value = 20.0
        self._tick()
        self.assertEqual(self.ctrl.snapshot()["last_direction"], "A")
        for _ in range(25):
            self._tick()
        self.assertIs(self.ctrl.state, RunState.RUNNING)

    def test_no_events_while_paused(self):
        self.ctrl.announce_start()
        self._tick()
        self.assertIs(self.ctrl.handle_override(), RunState.PAUSED)
        self.light_r.value = 300.0
        self.rotary.value = 20.0
        self.assertEqual(self._tick(), [])
        self.assertEqual(self.sink.events, [])
        self.assertIsNone(self.ctrl.snapshot()["last_direction"])

    def test_paused_never_times_out(self):
        self.ctrl.announce_start()
        self.ctrl.handle_override()
        for _ in range(100):
            self._tick()
        self.assertIs(self.ctrl.state, RunState.PAUSED)

    def test_override_transitions_and_messages(self):
        self.ctrl.announce_start()
        self.assertIs(self.ctrl.handle_override(), RunState.PAUSED)
        self.assertEqual(self.sink.statuses[-1][0], StatusKind.INACTIVE)
        self.assertEqual(self.display.calls[-1], ("message", MSG_PAUSED))
        self.assertIs(self.ctrl.handle_override(), RunState.RUNNING)
        self.assertEqual(self.sink.statuses[-1][0], StatusKind.ACTIVE)
        self.assertEqual(self.display.calls[-1], ("message", MSG_RUNNING))

    def test_override_clears_fault(self):
        self.ctrl.announce_start()
        self._tick(16.0)
        self.assertIs(self.ctrl.state, RunState.FAULTED)
        self.assertIs(self.ctrl.handle_override(), RunState.RUNNING)
        self.assertEqual(self.sink.statuses[-1], (StatusKind.ACTIVE, "Fault cleared by operator"))
        self.assertEqual(self.ctrl.snapshot()["last_error"], "")
        self._tick(14.0)
        self.assertIs(self.ctrl.state, RunState.RUNNING)

    def test_resume_keeps_detector_state_and_resets_timer(self):
        self.ctrl.announce_start()
        self.rotary.value = 20.0
        self._tick()
        self.ctrl.handle_override()
        self._tick(60.0)
        self.ctrl.handle_override()
        self.assertAlmostEqual(self.ctrl.timer.elapsed_since(), 0.0)
        # Arm still in band A: the excursion was already reported.
        self._tick()
        self.assertEqual(self.ctrl.snapshot()["edge_count"], 1)

    def test_invalid_sources_skipped(self):
        self.ctrl.announce_start()
        self.light_r.valid = False
        self.rotary.valid = False
        self.assertEqual(self._tick(), [])
        self.light_r.valid = True
        self._tick()
        self.light_r.value = 400.0
        self.assertEqual(len(self._tick()), 1)

    def test_fail_startup(self):
        self.ctrl.fail_startup(RuntimeError("spi bus busy"))
        self.assertIs(self.ctrl.state, RunState.FAULTED)
        self.assertEqual(self.display.calls, [("error", "Startup failed: spi bus busy")])
        self.assertEqual(self._tick(), [])

    def test_fail_startup_survives_display_failure(self):
        ctrl = self._make(judge=SequenceJudge([]), display=RecordingDisplay(fail=True))
        ctrl.fail_startup(RuntimeError("boom"))
        self.assertIs(ctrl.state, RunState.FAULTED)

    def test_display_failure_during_tick_propagates(self):
        ctrl = self._make(judge=SequenceJudge([]), display=RecordingDisplay(fail=True))
        self.clock.t += 20.0
        with self.assertRaises(OSError):
            ctrl.tick()

    def test_snapshot(self):
        self.ctrl.announce_start()
        self._tick(5.0)
        snap = self.ctrl.snapshot()
        self.assertEqual(snap["state"], "running")
        self.assertEqual(snap["status"], "active")
        self.assertAlmostEqual(snap["liveness_remaining_s"], 10.0)
        self.ctrl.handle_override()
        self.assertIsNone(self.ctrl.snapshot()["liveness_remaining_s"])

    def test_rejects_non_positive_timeout(self):
        with self.assertRaises(ValueError):
            AcquisitionController(
                rotary_source=self.rotary,
                edge_detector=self.edge,
                gates=[],
                sink=self.sink,
                display=self.display,
                judge=SequenceJudge([]),
                liveness_timeout_s=0,
            )


class FlickeringSource(FakeSource):
    """Light reading that drops and recovers every other read, so its gate keeps firing."""

    PATTERN = (300.0, 300.0, 600.0, 600.0)

    def __init__(self, name: str):
        super().__init__(name, 600.0)
        self._reads = 0

    def get_value(self) -> Sample:
        self.value = self.PATTERN[self._reads % len(self.PATTERN)]
        self._reads += 1
        return super().get_value()


class StateCheckingSink(RecordingSink):
    def __init__(self):
        super().__init__()
        self.ctrl = None
        self.states_at_event = []

    def report_event(self, event):
        self.states_at_event.append(self.ctrl.state)
        super().report_event(event)


class AlwaysGood:
    def judge(self) -> bool:
        return True


class TestOverrideAtomicity(unittest.TestCase):
    TOGGLES = 200

    def test_override_and_tick_from_two_threads(self):
        sink = StateCheckingSink()
        ctrl = AcquisitionController(
            rotary_source=FakeSource("rotary", 190.0),
            edge_detector=EdgeDetector(100, 280),
            gates=[
                GateBinding(
                    "light_right",
                    FlickeringSource("light_right"),
                    ThresholdDetector(20),
                    Destination.A,
                ),
            ],
            sink=sink,
            display=RecordingDisplay(),
            judge=AlwaysGood(),
            liveness_timeout_s=15.0,
            clock=FakeClock(0.0),
        )
        sink.ctrl = ctrl
        ctrl.announce_start()
        done = threading.Event()

        def toggle():
            try:
                for _ in range(self.TOGGLES):
                    ctrl.handle_override()
                    time.sleep(0)
            finally:
                done.set()

        def ticker():
            while not done.is_set():
                ctrl.tick()

        threads = [threading.Thread(target=toggle), threading.Thread(target=ticker)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10.0)
        self.assertFalse(any(t.is_alive() for t in threads))

        self.assertTrue(all(s is RunState.RUNNING for s in sink.states_at_event))
        kinds = [kind for kind, _msg in sink.statuses]
        self.assertEqual(len(kinds), self.TOGGLES + 1)
        expected = [StatusKind.ACTIVE] + [
            StatusKind.INACTIVE if i % 2 == 0 else StatusKind.ACTIVE
            for i in range(self.TOGGLES)
        ]
        self.assertEqual(kinds, expected)

        self.assertIs(ctrl.state, RunState.RUNNING)
        for _ in range(4):
            ctrl.tick()
        self.assertTrue(sink.events)
        ctrl.handle_override()
        before = len(sink.events)
        for _ in range(4):
            self.assertEqual(ctrl.tick(), [])
        self.assertEqual(len(sink.events), before)


if __name__ == "__main__":
    unittest.main()
