import logging
import queue
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from core.contracts import OverridePress

L = logging.getLogger("line_monitor.override.gateway")


class OverrideGateway:
	"""Single entry point for operator presses from every input.

	Presses closer together than `debounce_ms` (from any source) are dropped,
	so a bouncing contact or a double click toggles the line once. Accepted
	presses are only queued; the runtime thread applies them to the controller
	before its next tick, so inputs on the shared loop never wait on it.
	"""

	def __init__(
		self,
		press_queue: queue.Queue,
		debounce_ms: float = 200.0,
		on_accepted: Optional[Callable[[OverridePress], None]] = None,
		clock: Callable[[], float] = time.monotonic,
	):
		self.press_queue = press_queue
		self.debounce_ms = max(float(debounce_ms), 0.0)
		self.on_accepted = on_accepted
		self._clock = clock
		self._last_accept_ts: float | None = None
		self._seq = 0
		self._accepted = 0
		self._dropped = 0
		self._lock = threading.Lock()

	def report_press(self, source: str, remote: object | None = None) -> bool:
		now = self._clock()
		with self._lock:
			last = self._last_accept_ts
			if last is not None and self.debounce_ms and (now - last) * 1000 < self.debounce_ms:
				self._dropped += 1
				L.debug("Debounce drop from %s", source)
				return False
			self._seq += 1
			press = OverridePress(
				seq=self._seq,
				source=source,
				remote=self._peer(remote),
				pressed_at=datetime.now(timezone.utc),
			)
			try:
				self.press_queue.put_nowait(press)
			except queue.Full:
				self._dropped += 1
				L.warning("Override queue full; press from %s dropped", source)
				return False
			self._last_accept_ts = now
			self._accepted += 1
		L.info("Override press queued source=%s remote=%s seq=%d", source, press.remote, press.seq)
		if self.on_accepted is not None:
			self.on_accepted(press)
		return True

	def stats(self) -> dict:
		with self._lock:
			return {"accepted": self._accepted, "dropped": self._dropped}

	@staticmethod
	def _peer(remote: object) -> str:
		if isinstance(remote, tuple) and remote:
			return str(remote[0])
		return str(remote) if remote is not None else "-"


__all__ = ["OverrideGateway"]
