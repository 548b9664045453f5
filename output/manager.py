# -- coding: utf-8 --
"""OutputManager: the event sink; keeps counters and fans out to output channels."""

import logging
import os
import queue
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Protocol

from core.contracts import Destination, DomainEvent, StatusKind, StatusReport

L = logging.getLogger("line_monitor.output.manager")


class OutputChannel(Protocol):
    name: str

    def start(self): ...
    def stop(self): ...
    def publish_event(self, event: DomainEvent): ...
    def publish_status(self, report: StatusReport): ...
    def publish_heartbeat(self, ts: float | None = None): ...
    def raise_if_failed(self): ...


class EventStore:
    """In-memory counters and recent history, with optional daily CSV files."""

    _STOP_SENTINEL = None

    def __init__(
        self,
        base_dir: str,
        labels: dict[str, str],
        max_records: int = 20,
        write_csv: bool = True,
    ):
        self.base_dir = base_dir
        self.labels = dict(labels)
        self._max_records = max_records
        self._events: deque[DomainEvent] = deque(maxlen=max_records)
        self._last_status: StatusReport | None = None
        self._lock = threading.Lock()
        self._counts: dict[Destination, dict[str, int]] = {}
        self._reset_counts_locked()
        self._write_queue: queue.Queue[DomainEvent | StatusReport | None] | None = (
            queue.Queue() if write_csv else None
        )
        self._writer_thread = (
            threading.Thread(target=self._writer_loop, name="csv_writer", daemon=True)
            if write_csv
            else None
        )
        if write_csv:
            os.makedirs(self.base_dir, exist_ok=True)
        # Each run starts from zero; earlier CSV files are never read back.
        if self._writer_thread:
            self._writer_thread.start()

    def stop(self):
        thread = self._writer_thread
        q = self._write_queue
        if thread is None or q is None:
            return
        q.put(self._STOP_SENTINEL)
        thread.join()
        self._writer_thread = None
        self._write_queue = None

    def raise_if_failed(self):
        if self._writer_thread is not None and not self._writer_thread.is_alive():
            raise RuntimeError("CSV writer thread stopped unexpectedly")

    def submit_event(self, event: DomainEvent):
        with self._lock:
            self._events.appendleft(event)
            bucket = self._counts[event.destination]
            bucket["count"] += 1
            if event.good is True:
                bucket["good"] += 1
            elif event.good is False:
                bucket["rejected"] += 1
        if self._write_queue is not None:
            self._write_queue.put(event)

    def submit_status(self, report: StatusReport):
        with self._lock:
            self._last_status = report
        if self._write_queue is not None:
            self._write_queue.put(report)

    def reset(self):
        with self._lock:
            self._events.clear()
            self._reset_counts_locked()

    def _reset_counts_locked(self):
        self._counts = {
            d: {"count": 0, "good": 0, "rejected": 0} for d in Destination
        }

    @property
    def latest_events(self) -> list[DomainEvent]:
        with self._lock:
            return list(self._events)

    @property
    def max_records(self) -> int:
        return self._max_records

    def last_status(self) -> StatusReport | None:
        with self._lock:
            return self._last_status

    def stats(self):
        with self._lock:
            per_dest = {d.value: dict(c) for d, c in self._counts.items()}
        total = sum(c["count"] for c in per_dest.values())
        good = sum(c["good"] for c in per_dest.values())
        rejected = sum(c["rejected"] for c in per_dest.values())
        for dest, c in per_dest.items():
            c["label"] = self.labels.get(dest, dest)
        return {
            "total": total,
            "good": good,
            "rejected": rejected,
            "good_rate": (good / total) if total else 0.0,
            "destinations": per_dest,
        }

    def _writer_loop(self):
        queue_ref = self._write_queue
        if queue_ref is None:
            raise RuntimeError("writer queue missing")
        while True:
            item = queue_ref.get()
            try:
                if item is None:
                    break
                if isinstance(item, DomainEvent):
                    self._append_event_csv(item)
                else:
                    self._append_status_csv(item)
            except OSError:
                L.exception("CSV write failed")
            finally:
                queue_ref.task_done()

    def _append_event_csv(self, event: DomainEvent):
        path = self._csv_path("events.csv", event.detected_at)
        write_header = not os.path.exists(path)
        t_date, t_time = _fmt_date_time(event.detected_at)
        good = "" if event.good is None else int(bool(event.good))
        with open(path, "a", encoding="utf-8") as f:
            if write_header:
                f.write("seq,date,time,destination,where,gate,good\n")
            f.write(
                f"{event.seq},{t_date},{t_time},{event.destination.value},"
                f"{self.labels.get(event.destination.value, '')},{event.gate},{good}\n"
            )

    def _append_status_csv(self, report: StatusReport):
        path = self._csv_path("status.csv", report.reported_at)
        write_header = not os.path.exists(path)
        t_date, t_time = _fmt_date_time(report.reported_at)
        message = report.message.replace(",", ";").replace("\n", " ")
        with open(path, "a", encoding="utf-8") as f:
            if write_header:
                f.write("seq,date,time,type,message\n")
            f.write(f"{report.seq},{t_date},{t_time},{report.kind.value},{message}\n")

    def _csv_path(self, filename: str, ts: datetime | None) -> str:
        day_dir = os.path.join(self.base_dir, _to_utc(ts).date().isoformat())
        os.makedirs(day_dir, exist_ok=True)
        return os.path.join(day_dir, filename)


def _fmt_date_time(dt: datetime | None) -> tuple[str, str]:
    ref = _to_utc(dt)
    return ref.date().isoformat(), ref.strftime("%H:%M:%S.%f")[:-3] + "Z"


def _to_utc(dt: datetime | None) -> datetime:
    ref = dt or datetime.now(timezone.utc)
    if ref.tzinfo is None:
        ref = ref.replace(tzinfo=timezone.utc)
    return ref.astimezone(timezone.utc)


class OutputManager:
    """Event sink used by the controller.

    A channel that fails while publishing is logged and skipped: losing one
    time-series point must not stop production monitoring.
    """

    def __init__(self, store: EventStore):
        self._store = store
        self._channels: list[OutputChannel] = []
        self._status_seq = 0
        self._heartbeat_seq = 0
        self._failures: dict[str, int] = {}
        self._lock = threading.Lock()

    # ---- EventSink ----

    def report_event(self, event: DomainEvent):
        self._store.submit_event(event)
        for ch in self._channels:
            self._guarded(ch, "event", ch.publish_event, event)

    def report_status(self, kind: StatusKind, message: str = ""):
        with self._lock:
            self._status_seq += 1
            seq = self._status_seq
        report = StatusReport(
            seq=seq,
            kind=StatusKind(kind),
            message=str(message or ""),
            reported_at=datetime.now(timezone.utc),
        )
        self._store.submit_status(report)
        for ch in self._channels:
            self._guarded(ch, "status", ch.publish_status, report)
        return report

    def _guarded(self, ch: OutputChannel, what: str, fn, item):
        try:
            fn(item)
        except Exception:
            name = getattr(ch, "name", type(ch).__name__)
            with self._lock:
                self._failures[name] = self._failures.get(name, 0) + 1
            L.exception("Sink write failed channel=%s kind=%s; continuing", name, what)

    # ---- lifecycle ----

    def add_channel(self, channel: OutputChannel):
        self._channels.append(channel)

    @property
    def channels(self) -> list[OutputChannel]:
        return list(self._channels)

    def start(self):
        for ch in self._channels:
            ch.start()

    def stop(self):
        for ch in reversed(self._channels):
            try:
                ch.stop()
            except Exception:
                L.exception("Output channel stop failed: %s", getattr(ch, "name", ch))
        self._store.stop()

    def raise_if_failed(self):
        self._store.raise_if_failed()
        for ch in self._channels:
            ch.raise_if_failed()

    def reset(self):
        self._store.reset()

    def tick(self):
        ts = time.time()
        self._heartbeat_seq += 1
        for ch in self._channels:
            ch.publish_heartbeat(ts)

    # ---- Read API for HMI / Modbus ----

    @property
    def latest_events(self) -> list[DomainEvent]:
        return self._store.latest_events

    @property
    def max_records(self) -> int:
        return self._store.max_records

    @property
    def labels(self) -> dict[str, str]:
        return dict(self._store.labels)

    def last_status(self) -> StatusReport | None:
        return self._store.last_status()

    def stats(self):
        stats = self._store.stats()
        with self._lock:
            stats["sink_failures"] = dict(self._failures)
        return stats

    def heartbeat_seq(self) -> int | None:
        return self._heartbeat_seq or None


__all__ = ["EventStore", "OutputManager", "OutputChannel"]
