import csv
import os
import tempfile
import unittest
from datetime import datetime, timezone

from core.contracts import Destination, DomainEvent, StatusKind
from output.manager import EventStore, OutputManager

LABELS = {"A": "Svizzera", "B": "Italia"}
TS = datetime(2024, 5, 6, 7, 8, 9, 123000, tzinfo=timezone.utc)


def _event(seq: int, dest: Destination, good=True) -> DomainEvent:
    return DomainEvent(seq=seq, destination=dest, good=good, detected_at=TS, gate="g")


class RecordingChannel:
    name = "recording"

    def __init__(self):
        self.events = []
        self.statuses = []
        self.heartbeats = 0
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def publish_event(self, event):
        self.events.append(event)

    def publish_status(self, report):
        self.statuses.append(report)

    def publish_heartbeat(self, ts=None):
        self.heartbeats += 1

    def raise_if_failed(self):
        return None


class BrokenChannel(RecordingChannel):
    name = "broken"

    def publish_event(self, event):
        raise ConnectionError("database down")

    def publish_status(self, report):
        raise ConnectionError("database down")

    def stop(self):
        raise RuntimeError("stop failed")


class TestOutputManager(unittest.TestCase):
    def setUp(self):
        self.store = EventStore(base_dir="unused", labels=LABELS, max_records=3, write_csv=False)
        self.mgr = OutputManager(self.store)

    def test_counts_per_destination_and_quality(self):
        self.mgr.report_event(_event(1, Destination.A, True))
        self.mgr.report_event(_event(2, Destination.A, False))
        self.mgr.report_event(_event(3, Destination.B, True))
        stats = self.mgr.stats()
        self.assertEqual(stats["total"], 3)
        self.assertEqual(stats["good"], 2)
        self.assertEqual(stats["rejected"], 1)
        self.assertAlmostEqual(stats["good_rate"], 2 / 3)
        self.assertEqual(
            stats["destinations"]["A"],
            {"count": 2, "good": 1, "rejected": 1, "label": "Svizzera"},
        )
        self.assertEqual(stats["destinations"]["B"]["count"], 1)

    def test_history_is_newest_first_and_bounded(self):
        for seq in range(1, 6):
            self.mgr.report_event(_event(seq, Destination.A))
        self.assertEqual([e.seq for e in self.mgr.latest_events], [5, 4, 3])
        self.assertEqual(self.mgr.max_records, 3)

    def test_status_reports_are_sequenced(self):
        r1 = self.mgr.report_status(StatusKind.ACTIVE, "Machine started: wait activation")
        r2 = self.mgr.report_status("error", "Timeout: no production")
        self.assertEqual((r1.seq, r2.seq), (1, 2))
        self.assertIs(r2.kind, StatusKind.ERROR)
        self.assertEqual(self.mgr.last_status(), r2)

    def test_channel_failure_is_logged_and_skipped(self):
        good = RecordingChannel()
        self.mgr.add_channel(BrokenChannel())
        self.mgr.add_channel(good)
        with self.assertLogs("line_monitor.output.manager", level="ERROR"):
            self.mgr.report_event(_event(1, Destination.B))
            self.mgr.report_status(StatusKind.ERROR, "x")
        self.assertEqual(len(good.events), 1)
        self.assertEqual(len(good.statuses), 1)
        self.assertEqual(self.mgr.stats()["total"], 1)
        self.assertEqual(self.mgr.stats()["sink_failures"], {"broken": 2})

    def test_lifecycle_and_heartbeat(self):
        ch = RecordingChannel()
        broken = BrokenChannel()
        self.mgr.add_channel(ch)
        self.mgr.add_channel(broken)
        self.mgr.start()
        self.assertTrue(ch.started)
        self.assertIsNone(self.mgr.heartbeat_seq())
        self.mgr.tick()
        self.mgr.tick()
        self.assertEqual(self.mgr.heartbeat_seq(), 2)
        self.assertEqual(ch.heartbeats, 2)
        with self.assertLogs("line_monitor.output.manager", level="ERROR"):
            self.mgr.stop()
        self.assertTrue(ch.stopped)

    def test_reset_clears_counts(self):
        self.mgr.report_event(_event(1, Destination.A))
        self.mgr.reset()
        self.assertEqual(self.mgr.stats()["total"], 0)
        self.assertEqual(self.mgr.latest_events, [])


class TestEventStoreCsv(unittest.TestCase):
    def test_writes_daily_csv_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            store = EventStore(base_dir=tmp, labels=LABELS, write_csv=True)
            mgr = OutputManager(store)
            mgr.report_event(_event(1, Destination.A, True))
            mgr.report_event(_event(2, Destination.B, None))
            mgr.report_status(StatusKind.ERROR, "Timeout, no production")
            mgr.stop()

            day_dir = os.path.join(tmp, "2024-05-06")
            with open(os.path.join(day_dir, "events.csv"), encoding="utf-8") as f:
                rows = list(csv.DictReader(f))
            self.assertEqual(len(rows), 2)
            self.assertEqual(rows[0]["where"], "Svizzera")
            self.assertEqual(rows[0]["time"], "07:08:09.123Z")
            self.assertEqual(rows[0]["good"], "1")
            self.assertEqual(rows[1]["good"], "")

            status_files = [
                os.path.join(root, "status.csv")
                for root, _dirs, files in os.walk(tmp)
                if "status.csv" in files
            ]
            self.assertEqual(len(status_files), 1)
            with open(status_files[0], encoding="utf-8") as f:
                (row,) = list(csv.DictReader(f))
            self.assertEqual(row["type"], "error")
            self.assertEqual(row["message"], "Timeout; no production")


if __name__ == "__main__":
    unittest.main()
