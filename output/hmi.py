# -- coding: utf-8 --
from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol

from aiohttp import web

from core.contracts import DomainEvent, StatusReport
from core.lifecycle import LoopRunner, run_async_cleanup

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from core.runtime import ResultReadApi


class AppContextLike(Protocol):
    @property
    def controller(self) -> Any: ...

    @property
    def display(self) -> Any: ...

    @property
    def results(self) -> "ResultReadApi": ...

    @property
    def override_gateway(self) -> Any: ...


L = logging.getLogger("line_monitor.output.hmi")


def _to_unix_ms(val: datetime | None) -> int | None:
    if not isinstance(val, datetime):
        return None
    ref = (
        val.astimezone(timezone.utc)
        if val.tzinfo
        else val.replace(tzinfo=timezone.utc)
    )
    return int(ref.timestamp() * 1000.0)


def serialize_event(ev: DomainEvent, labels: dict[str, str]) -> dict[str, Any]:
    return {
        "seq": int(ev.seq),
        "destination": ev.destination.value,
        "where": labels.get(ev.destination.value, ev.destination.value),
        "gate": ev.gate,
        "good": ev.good,
        "detected_at_ms": _to_unix_ms(ev.detected_at),
    }


def serialize_status(report: StatusReport | None) -> dict[str, Any] | None:
    if report is None:
        return None
    return {
        "seq": int(report.seq),
        "type": report.kind.value,
        "message": report.message,
        "reported_at_ms": _to_unix_ms(report.reported_at),
    }


def _parse_since_seq(raw: str | None) -> int | None:
    if not raw:
        return None
    try:
        val = int(raw)
    except ValueError:
        return None
    return val if val >= 0 else None


def build_status_payload(ctx: AppContextLike, since_seq: int | None = None) -> dict:
    store = ctx.results
    labels = getattr(store, "labels", {}) or {}
    latest = store.latest_events
    latest_seq = int(latest[0].seq) if latest else None
    full_snapshot = since_seq is None
    if since_seq is None:
        filtered = latest
    elif latest_seq is not None and latest_seq < since_seq:
        # Sequence went backwards (service restart); force client resync.
        filtered = latest
        full_snapshot = True
    else:
        filtered = [ev for ev in latest if int(ev.seq) > int(since_seq)]

    disp = ctx.display.current()
    return {
        "controller": ctx.controller.snapshot(),
        "display": {
            "text": disp.text,
            "rgb": list(disp.rgb),
            "alert": disp.alert,
            "updated_at_ms": _to_unix_ms(disp.updated_at),
        },
        "events": [serialize_event(ev, labels) for ev in filtered],
        "stats": store.stats(),
        "last_status": serialize_status(store.last_status()),
        "latest_seq": latest_seq,
        "full_snapshot": full_snapshot,
        "heartbeat_seq": store.heartbeat_seq(),
        "server_time_ms": _to_unix_ms(datetime.now(timezone.utc)),
    }


class _ApiServer:
    def __init__(
        self,
        host: str,
        port: int,
        context: AppContextLike,
        index_path: str,
        *,
        allow_override: bool,
        loop_runner: LoopRunner,
    ):
        self.host = host
        self.port = port
        self.context = context
        self.index_path = index_path
        self.allow_override = allow_override
        self.app = web.Application()
        self._setup_routes()
        self._runner = None
        self._site = None
        self._started = False
        self._loop_runner = loop_runner

    def _setup_routes(self):
        app = self.app
        ctx = self.context
        index_path = self.index_path

        async def index(_request):
            return web.FileResponse(index_path)

        async def status(request):
            since_seq = _parse_since_seq(request.query.get("since_seq"))
            # The snapshot waits on the controller lock; keep it off the loop.
            payload = await asyncio.get_running_loop().run_in_executor(
                None, build_status_payload, ctx, since_seq
            )
            return web.json_response(payload)

        async def override(request):
            gateway = ctx.override_gateway
            accepted = bool(gateway.report_press("WEB", remote=request.remote))
            return web.json_response({"accepted": accepted})

        app.router.add_get("/", index)
        app.router.add_get("/index.html", index)
        app.router.add_get("/status", status)
        if self.allow_override:
            app.router.add_post("/override", override)

    def start(self):
        if self._started:
            return
        try:
            self._loop_runner.run_async(self._serve(), timeout=1.0)
        except Exception:
            self.stop()
            raise
        self._started = True

    async def _serve(self):
        self._runner = web.AppRunner(self.app, access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        L.info("HMI web service running @ http://%s:%d", self.host, self.port)

    def stop(self):
        async def _cleanup():
            if self._runner:
                await self._runner.cleanup()
            self._runner = None
            self._site = None

        run_async_cleanup(_cleanup(), timeout=0.5, loop_runner=self._loop_runner)
        self._started = False
        L.info("HMI web service stopped")

    def raise_if_failed(self):
        if not self._started:
            return
        if self._runner is None or self._site is None:
            raise RuntimeError("HMI web service stopped unexpectedly")


class HmiOutput:
    name = "hmi"

    def __init__(
        self,
        host: str,
        port: int,
        context: AppContextLike,
        index_path: str,
        *,
        allow_override: bool = True,
        loop_runner: LoopRunner,
    ):
        self.server = _ApiServer(
            host,
            port,
            context,
            index_path=index_path,
            allow_override=allow_override,
            loop_runner=loop_runner,
        )

    def start(self):
        self.server.start()

    def stop(self):
        self.server.stop()

    def publish_event(self, event: DomainEvent):
        # HMI pulls data via /status; no push needed.
        _ = event
        return None

    def publish_status(self, report: StatusReport):
        _ = report
        return None

    def publish_heartbeat(self, ts: float | None = None):
        _ = ts
        return None

    def raise_if_failed(self):
        self.server.raise_if_failed()


def default_index_path() -> str:
    return os.path.join(os.path.dirname(__file__), "web", "index.html")


__all__ = ["HmiOutput", "build_status_payload", "default_index_path"]
