import threading
import time
from typing import Callable, Dict, List, Optional, Tuple


class RateLimiter:
    """Per-client sliding window request counter, process local.

    Clients with no request inside the window are dropped on the next hit,
    so the map only holds recently active clients.
    """

    def __init__(self, window_sec: float, max_requests: int, clock: Optional[Callable[[], float]] = None):
        self.window_sec = window_sec
        self.max_requests = max_requests
        self._clock = clock or time.monotonic
        self._hits: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def _sweep(self, now: float) -> None:
        expired = [cid for cid, hits in self._hits.items() if not hits or now - hits[-1] >= self.window_sec]
        for cid in expired:
            del self._hits[cid]

    def hit(self, client_id: Optional[str]) -> Tuple[bool, int]:
        """Count a request; returns (limited, requests in window)."""
        if not client_id:
            return False, 0
        now = self._clock()
        with self._lock:
            self._sweep(now)
            recent = [ts for ts in self._hits.get(client_id, []) if now - ts < self.window_sec]
            if len(recent) >= self.max_requests:
                self._hits[client_id] = recent
                return True, len(recent)
            recent.append(now)
            self._hits[client_id] = recent
            return False, len(recent)

    def retry_after(self, client_id: str) -> int:
        with self._lock:
            hits = self._hits.get(client_id) or []
        if not hits:
            return 0
        return max(int(self.window_sec - (self._clock() - hits[0])) + 1, 1)

    @property
    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._hits)
