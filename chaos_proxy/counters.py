import asyncio
import logging
import threading
from typing import Dict

logger = logging.getLogger("uvicorn.error")


class MethodCounters:
    """
    Per-HTTP-method request counters.

    Every proxied request adds to its method's count on the hot path; a
    background task dumps the counts to the log at a fixed interval. A single
    lock guards the map so callers on any thread or task are safe.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Dict[str, int] = {}

    def add(self, method: str, delta: int = 1) -> None:
        with self._lock:
            self._counts[method] = self._counts.get(method, 0) + delta

    def get(self, method: str) -> int:
        with self._lock:
            return self._counts.get(method, 0)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def print_counters(self) -> None:
        """Log every method count; logs nothing while no request was counted."""
        with self._lock:
            if not self._counts:
                return
            dump = " ".join(
                f"{method}={count}" for method, count in sorted(self._counts.items())
            )
        logger.info(f"[Counters] {dump}")

    async def report_periodically(self, interval: float = 10.0) -> None:
        """Dump the counters every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            self.print_counters()
