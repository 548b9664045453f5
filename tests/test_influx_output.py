import os
import unittest
from datetime import datetime, timezone
from unittest import mock

from core.contracts import Destination, DomainEvent, StatusKind, StatusReport
from output.influx import InfluxOutput

TOKEN_ENV = "LINE_MONITOR_TEST_INFLUX_TOKEN"
TS = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class FakeWriteApi:
    def __init__(self):
        self.records = []

    def write(self, bucket, org, record):
        self.records.append((bucket, org, record.to_line_protocol()))


class FakeClient:
    ping_ok = True

    def __init__(self, url, token, org, timeout):
        self.kwargs = dict(url=url, token=token, org=org, timeout=timeout)
        self.api = FakeWriteApi()
        self.closed = False

    def ping(self):
        return self.ping_ok

    def write_api(self, write_options=None):
        return self.api

    def close(self):
        self.closed = True


class TestInfluxOutput(unittest.TestCase):
    def _make(self, factory=FakeClient):
        return InfluxOutput(
            "http://influx:8086",
            "line",
            "production",
            token_env=TOKEN_ENV,
            labels={"A": "Svizzera", "B": "Italia"},
            client_factory=factory,
        )

    def test_missing_token_fails_start(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(RuntimeError):
                self._make().start()

    def test_unreachable_server_fails_start(self):
        class DownClient(FakeClient):
            ping_ok = False

        with mock.patch.dict(os.environ, {TOKEN_ENV: "secret"}):
            with self.assertRaises(ConnectionError):
                self._make(DownClient).start()

    def test_points_written(self):
        out = self._make()
        with mock.patch.dict(os.environ, {TOKEN_ENV: "secret"}):
            out.start()
        client = out._client
        self.assertEqual(client.kwargs["token"], "secret")
        out.publish_event(
            DomainEvent(seq=1, destination=Destination.A, good=False, detected_at=TS, gate="light_right")
        )
        out.publish_status(
            StatusReport(seq=1, kind=StatusKind.ERROR, message="Timeout: no production", reported_at=TS)
        )
        (ev_bucket, ev_org, ev_line), (_b, _o, st_line) = client.api.records
        self.assertEqual((ev_bucket, ev_org), ("production", "line"))
        self.assertTrue(ev_line.startswith("beer,gate=light_right,where=Svizzera "))
        self.assertIn("count=1i", ev_line)
        self.assertIn("good=false", ev_line)
        self.assertTrue(st_line.startswith("status,type=error message="))
        out.stop()
        self.assertTrue(client.closed)

    def test_publish_before_start_raises(self):
        with self.assertRaises(RuntimeError):
            self._make().publish_status(StatusReport(seq=1, kind=StatusKind.ACTIVE))


if __name__ == "__main__":
    unittest.main()
