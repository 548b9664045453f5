import logging
import threading

L = logging.getLogger("line_monitor.workers")


class BaseWorker:
    """Single-use daemon thread with stop event and last-error capture."""

    def __init__(self, name: str = ""):
        self.name = name or self.__class__.__name__
        self._stop_evt = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_error: Exception | None = None

    def start(self):
        if self._thread is not None:
            raise RuntimeError(
                f"{self.name} is single-use; start() may only be called once"
            )
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0):
        self._stop_evt.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                L.warning("%s worker thread did not exit cleanly", self.name)

    def _run(self):
        try:
            self.run()
        except Exception as e:
            self._last_error = e
            L.exception("%s worker error", self.name)

    @property
    def is_alive(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    @property
    def has_started(self) -> bool:
        return self._thread is not None

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    def raise_if_failed(self):
        if self.has_started and not self.is_alive and not self._stop_evt.is_set():
            err = self._last_error
            if err is not None:
                raise RuntimeError(
                    f"{self.name} stopped unexpectedly ({type(err).__name__})"
                ) from err
            raise RuntimeError(f"{self.name} stopped unexpectedly")

    def run(self):
        raise NotImplementedError


__all__ = ["BaseWorker"]
