# -- coding: utf-8 --
"""InfluxDB v2 channel: one point per item and per status change."""

import logging
import os

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS

from core.contracts import DomainEvent, StatusReport

L = logging.getLogger("line_monitor.output.influx")

EVENT_MEASUREMENT = "beer"
STATUS_MEASUREMENT = "status"


class InfluxOutput:
    name = "influx"

    def __init__(
        self,
        url: str,
        org: str,
        bucket: str,
        *,
        token_env: str,
        labels: dict[str, str],
        timeout_ms: int = 5000,
        client_factory=InfluxDBClient,
    ):
        self.url = url
        self.org = org
        self.bucket = bucket
        self.token_env = token_env
        self.labels = dict(labels)
        self.timeout_ms = int(timeout_ms)
        self._client_factory = client_factory
        self._client = None
        self._write_api = None

    def start(self):
        token = os.environ.get(self.token_env, "")
        if not token:
            raise RuntimeError(f"InfluxDB token missing: set ${self.token_env}")
        client = self._client_factory(
            url=self.url, token=token, org=self.org, timeout=self.timeout_ms
        )
        if not client.ping():
            client.close()
            raise ConnectionError(f"InfluxDB connection failed: {self.url}")
        self._client = client
        self._write_api = client.write_api(write_options=SYNCHRONOUS)
        L.info("InfluxDB connected url=%s bucket=%s", self.url, self.bucket)

    def stop(self):
        client = self._client
        self._client = None
        self._write_api = None
        if client is not None:
            client.close()
            L.info("InfluxDB client closed")

    def publish_event(self, event: DomainEvent):
        point = (
            Point(EVENT_MEASUREMENT)
            .tag("where", self.labels.get(event.destination.value, event.destination.value))
            .tag("gate", event.gate)
            .field("count", 1)
        )
        if event.good is not None:
            point = point.field("good", bool(event.good))
        if event.detected_at is not None:
            point = point.time(event.detected_at, WritePrecision.NS)
        self._write(point)

    def publish_status(self, report: StatusReport):
        point = (
            Point(STATUS_MEASUREMENT)
            .tag("type", report.kind.value)
            .field("message", report.message)
        )
        if report.reported_at is not None:
            point = point.time(report.reported_at, WritePrecision.NS)
        self._write(point)

    def publish_heartbeat(self, ts: float | None = None):
        _ = ts
        return None

    def raise_if_failed(self):
        return None

    def _write(self, point: Point):
        write_api = self._write_api
        if write_api is None:
            raise RuntimeError("InfluxDB channel not started")
        L.debug("Sending point: %s", point.to_line_protocol())
        write_api.write(bucket=self.bucket, org=self.org, record=point)


__all__ = ["InfluxOutput", "EVENT_MEASUREMENT", "STATUS_MEASUREMENT"]
