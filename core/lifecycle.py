"""Shared background asyncio loop and sync bridge helpers."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Coroutine
from concurrent.futures import TimeoutError
from typing import Any, Callable, TypeVar

L = logging.getLogger("line_monitor.lifecycle")


T = TypeVar("T")


class LoopRunner:
    """Owns one asyncio loop on a daemon thread for the aiohttp/pymodbus/TCP services."""

    def __init__(self, *, logger: logging.Logger | None = None):
        self._logger = logger or L
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._stopped = False
        self._lock = threading.Lock()
        self._loop_thread_ident: int | None = None

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._stopped:
                raise RuntimeError("Async loop already stopped")
            if self._loop and self._thread and self._thread.is_alive():
                return self._loop
            loop = asyncio.new_event_loop()
            ready = threading.Event()

            def _runner():
                asyncio.set_event_loop(loop)
                self._loop_thread_ident = threading.get_ident()
                ready.set()
                loop.run_forever()

            self._loop = loop
            self._thread = threading.Thread(
                target=_runner, name="line_monitor.loop", daemon=True
            )
            self._thread.start()
            ready.wait(timeout=0.5)
            return loop

    def _in_loop_thread(self) -> bool:
        return (
            self._loop_thread_ident is not None
            and threading.get_ident() == self._loop_thread_ident
        )

    def run_async(self, coro: Coroutine[Any, Any, T], timeout: float | None = 0.5) -> T:
        """Run `coro` on the shared loop from another thread and wait for it."""
        loop = self._ensure_loop()
        if self._in_loop_thread():
            raise RuntimeError(
                "run_async must not be called from the loop thread; await directly"
            )
        fut = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return fut.result(timeout=timeout)
        except TimeoutError:
            fut.cancel()
            self._logger.warning("run_async timeout after %.2fs", timeout or 0)
            raise

    def spawn_background_task(self, coro: Coroutine[Any, Any, Any], *, name: str = ""):
        loop = self._ensure_loop()
        if self._in_loop_thread():
            return loop.create_task(coro, name=name or None)
        return asyncio.run_coroutine_threadsafe(coro, loop)

    def shutdown_loop(self, timeout: float = 1.0):
        """Cancel pending tasks, stop the loop, and join its thread."""
        if self._in_loop_thread():
            raise RuntimeError("shutdown_loop must not be called from the loop thread")
        with self._lock:
            loop = self._loop
            thread = self._thread
            self._stopped = True
            if not loop or not thread or loop.is_closed():
                return

        async def _shutdown():
            current = asyncio.current_task()
            tasks = [
                t for t in asyncio.all_tasks() if t is not current and not t.done()
            ]
            self._logger.debug("shutdown_loop pending_tasks=%d", len(tasks))
            for t in tasks:
                t.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            await loop.shutdown_asyncgens()

        fut = asyncio.run_coroutine_threadsafe(_shutdown(), loop)
        try:
            fut.result(timeout=timeout)
        except TimeoutError:
            fut.cancel()
            raise
        finally:
            loop.call_soon_threadsafe(loop.stop)
            if thread.is_alive():
                thread.join(timeout=timeout)
            if not loop.is_closed() and not loop.is_running():
                loop.close()
            self._loop = None
            self._thread = None
            self._loop_thread_ident = None


class AsyncTaskOwner:
    """Tracks tasks a service spawned on the shared loop so it can cancel them."""

    def __init__(self, *, loop_runner: LoopRunner, owner_name: str = "async_service"):
        self._loop_runner = loop_runner
        self._owner_name = owner_name
        self._tasks: list[Any] = []

    def spawn(self, coro: Coroutine[Any, Any, Any]):
        task = self._loop_runner.spawn_background_task(coro, name=self._owner_name)
        return self.register(task)

    def register(self, task: Any):
        if task is not None:
            self._tasks.append(task)
        return task

    def cancel_and_clear(self):
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()

    @property
    def loop_runner(self) -> LoopRunner:
        return self._loop_runner


def run_async_cleanup(
    coro: Coroutine[Any, Any, Any],
    *,
    loop_runner: LoopRunner,
    timeout: float = 0.5,
):
    """Run async cleanup from sync code with a bounded wait."""
    loop_runner.run_async(coro, timeout=timeout)


def task_failure(task: Any) -> BaseException | None:
    """Return the exception a finished task/future died with, if any."""
    if task is None or not hasattr(task, "done") or not task.done():
        return None
    if task.cancelled():
        return None
    return task.exception()


__all__ = [
    "LoopRunner",
    "AsyncTaskOwner",
    "run_async_cleanup",
    "task_failure",
]
