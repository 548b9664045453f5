# -- coding: utf-8 --

import asyncio
import logging
import threading

from core.lifecycle import AsyncTaskOwner, LoopRunner, run_async_cleanup, task_failure
from override.base import BaseOverride, register_override

L = logging.getLogger("line_monitor.override.tcp")


def _ensure_bytes(word) -> bytes:
    if isinstance(word, bytes):
        return word
    return str(word).encode("utf-8")


@register_override("tcp")
class TcpOverride(BaseOverride):
    """Accepts a press when a client sends the configured word."""

    source = "TCP"

    def __init__(
        self,
        on_press,
        *,
        host: str = "0.0.0.0",
        port: int = 9000,
        word="CLICK",
        loop_runner: LoopRunner,
    ):
        super().__init__(on_press)
        self.host = host
        self.port = int(port)
        self.word = _ensure_bytes(word)
        self._server = None
        self._serve_task = None
        self._started = False
        self._state_lock = threading.Lock()
        self._tasks = AsyncTaskOwner(owner_name="tcp_override", loop_runner=loop_runner)

    def start(self):
        with self._state_lock:
            if self._started:
                return
            self._started = True
        try:
            self._tasks.loop_runner.run_async(self._start_server(), timeout=1.0)
        except Exception:
            self.stop()
            raise

    def stop(self):
        with self._state_lock:
            self._started = False
        self._serve_task = None
        self._tasks.cancel_and_clear()

        async def _cleanup():
            if self._server:
                self._server.close()
                await self._server.wait_closed()
            self._server = None

        run_async_cleanup(_cleanup(), timeout=0.5, loop_runner=self._tasks.loop_runner)
        L.info("TCP override socket stopped")

    @property
    def bound_port(self) -> int | None:
        """Listening port; differs from `port` when 0 asked the OS to pick one."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    def raise_if_failed(self):
        err = task_failure(self._serve_task)
        if err is not None:
            raise RuntimeError(
                f"TcpOverride stopped unexpectedly ({type(err).__name__})"
            ) from err

    async def _start_server(self):
        self._server = await asyncio.start_server(
            self._handle_client, self.host, self.port, reuse_address=True
        )
        L.info("TCP override listening on %s:%d word=%r", self.host, self.bound_port, self.word)
        self._serve_task = self._tasks.register(
            asyncio.create_task(self._serve_forever(), name="tcp_override.serve_forever")
        )

    async def _serve_forever(self):
        if self._server is None:
            return
        async with self._server:
            await self._server.serve_forever()

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        try:
            data = await reader.read(32)
            if data and data.strip() == self.word:
                accepted = self.on_press(self.source, remote=writer.get_extra_info("peername"))
                writer.write(b"OK\n" if accepted else b"BUSY\n")
                await writer.drain()
        finally:
            writer.close()
            await writer.wait_closed()
