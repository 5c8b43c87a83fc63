import json
import threading
import time
from typing import Callable, Dict, List, Optional, Union

import requests
from pydantic import TypeAdapter, ValidationError

from bibscrip.config import (
    ANALYTICS_FLUSH_INTERVAL_SEC,
    ANALYTICS_FLUSH_THRESHOLD,
    ANALYTICS_TIMEOUT_SEC,
)
from bibscrip.events import log_event
from bibscrip.models import (
    AIRequestEvent,
    AIRequestMetadata,
    AnalyticsEvent,
    AnalyticsSummary,
    CacheOperationEvent,
    CacheOperationMetadata,
    CacheStats,
    ProviderStats,
    RateLimitEvent,
    RateLimitMetadata,
    TimeWindowStats,
    TokenUsage,
)
from bibscrip.storage import KeyValueStore, StorageError

# USD per 1000 tokens
COST_PER_1K_TOKENS = {
    "openai-gpt4": {"input": 0.01, "output": 0.03},
    "openai-gpt35": {"input": 0.0015, "output": 0.002},
    "mistral-large": {"input": 0.0025, "output": 0.008},
    "claude-opus": {"input": 0.015, "output": 0.075},
    "claude-sonnet": {"input": 0.003, "output": 0.015},
}
PROVIDER_COST_PROFILES = {
    "openai": "openai-gpt4",
    "claude": "claude-sonnet",
    "mistral": "mistral-large",
}
DEFAULT_COST_PROFILE = "openai-gpt35"
UNKNOWN_PROVIDER = "unknown"

EVENTS_KEY_PREFIX = "bibscrip_analytics_events_"
COSTS_KEY = "bibscrip_analytics_costs"
CACHE_STATS_KEY = "bibscrip_analytics_cache"

DAY_MS = 24 * 60 * 60 * 1000

_EVENTS_ADAPTER = TypeAdapter(List[AnalyticsEvent])


def calculate_cost(provider: str, input_tokens: int, output_tokens: int) -> float:
    profile = COST_PER_1K_TOKENS[PROVIDER_COST_PROFILES.get(provider, DEFAULT_COST_PROFILE)]
    return (input_tokens / 1000) * profile["input"] + (output_tokens / 1000) * profile["output"]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _batch_timestamp(key: str) -> int:
    try:
        return int(key.rsplit("_", 1)[-1])
    except ValueError:
        return 0


class FlushScheduler:
    """Single entry point for the periodic and the threshold-driven flush.

    Threshold flushes run on a worker thread so recording never waits on
    storage or the network; at most one worker runs at a time.
    """

    def __init__(self, flush: Callable[[str], bool], interval_sec: float, threshold: int):
        self._flush = flush
        self.interval_sec = interval_sec
        self.threshold = threshold
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._worker: Optional[threading.Thread] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._schedule()

    def _schedule(self) -> None:
        if self.interval_sec <= 0:
            return
        timer = threading.Timer(self.interval_sec, self._on_timer)
        timer.daemon = True
        timer.start()
        self._timer = timer

    def _on_timer(self) -> None:
        self._flush("interval")
        with self._lock:
            if self._running:
                self._schedule()

    def stop(self) -> None:
        with self._lock:
            self._running = False
            timer = self._timer
            self._timer = None
        if timer is not None:
            timer.cancel()
            # an interval flush may already be running
            if timer is not threading.current_thread():
                timer.join()
        self.wait()

    def notify(self, buffered: int) -> None:
        if buffered < self.threshold:
            return
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            worker = threading.Thread(target=self._flush, args=("threshold",), daemon=True)
            self._worker = worker
        worker.start()

    def flush_now(self) -> bool:
        return self._flush("manual")

    def wait(self, timeout: Optional[float] = None) -> None:
        worker = self._worker
        if worker is not None:
            worker.join(timeout)


class AnalyticsRecorder:
    """Best-effort recorder for AI usage, cache and rate-limit events.

    Events are buffered in memory and flushed either to ``store`` (batches
    keyed by flush time, replayed by the next ``init``) or, when
    ``collector_url`` is set, POSTed to a remote collector. Nothing raised by
    storage or the network escapes ``record_*``: a failed flush is logged and
    the batch is dropped.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        collector_url: Optional[str] = None,
        flush_threshold: int = ANALYTICS_FLUSH_THRESHOLD,
        flush_interval_sec: float = ANALYTICS_FLUSH_INTERVAL_SEC,
        timeout: float = ANALYTICS_TIMEOUT_SEC,
        clock: Optional[Callable[[], int]] = None,
    ):
        self._store = store
        self._collector_url = collector_url
        self._timeout = timeout
        self._clock = clock or _now_ms
        self._lock = threading.RLock()
        self._flush_lock = threading.Lock()
        self._events: List[Union[AIRequestEvent, CacheOperationEvent, RateLimitEvent]] = []
        self._cost_estimates: Dict[str, float] = {}
        self._cache_stats = CacheStats()
        self.scheduler = FlushScheduler(self._flush, flush_interval_sec, flush_threshold)

    # lifecycle

    def init(self) -> None:
        if self._store is not None:
            self._load_persistent_data()
        self.scheduler.start()
        self.scheduler.notify(len(self._events))

    def shutdown(self) -> None:
        self.scheduler.stop()
        self._flush("shutdown")

    # recording

    def record_ai_request(
        self,
        provider: str,
        from_cache: bool = False,
        token_usage: Optional[Union[TokenUsage, dict]] = None,
        latency_ms: int = 0,
        status: str = "success",
        query: Optional[str] = None,
        error_type: Optional[str] = None,
        cache_key: Optional[str] = None,
        cache_age: Optional[int] = None,
        path: Optional[str] = None,
    ) -> None:
        try:
            metadata = AIRequestMetadata(
                path=path,
                provider=provider,
                from_cache=from_cache,
                token_usage=token_usage,
                latency_ms=latency_ms,
                status=status,
                query=query,
                error_type=error_type,
                cache_key=cache_key,
                cache_age=cache_age,
            )
        except ValidationError:
            log_event("analytics_invalid_event", {"event": "ai_request"})
            return
        usage = metadata.token_usage
        with self._lock:
            if status == "success" and not from_cache and usage and provider and provider != UNKNOWN_PROVIDER:
                metadata.cost = calculate_cost(provider, usage.input, usage.output)
                self._cost_estimates[provider] = self._cost_estimates.get(provider, 0.0) + metadata.cost
            if from_cache and usage:
                saved = calculate_cost(provider or "openai", usage.input, usage.output)
                self._cache_stats.estimated_savings += saved
            self._append(AIRequestEvent(timestamp=self._clock(), metadata=metadata))

    def record_cache_operation(
        self,
        operation: str,
        key: str,
        latency_ms: Optional[int] = None,
        size: Optional[int] = None,
        ttl: Optional[int] = None,
    ) -> None:
        try:
            metadata = CacheOperationMetadata(
                operation=operation, key=key, latency_ms=latency_ms, size=size, ttl=ttl
            )
        except ValidationError:
            log_event("analytics_invalid_event", {"event": "cache_operation"})
            return
        with self._lock:
            stats = self._cache_stats
            if operation == "hit":
                stats.hits += 1
            elif operation == "miss":
                stats.misses += 1
            total = stats.hits + stats.misses
            if total:
                stats.hit_ratio = stats.hits / total
            self._append(CacheOperationEvent(timestamp=self._clock(), metadata=metadata))

    def record_rate_limit(self, provider: str, limit_type: str, current_count: int, limit: int) -> None:
        try:
            metadata = RateLimitMetadata(
                provider=provider, limit_type=limit_type, current_count=current_count, limit=limit
            )
        except ValidationError:
            log_event("analytics_invalid_event", {"event": "rate_limit"})
            return
        with self._lock:
            self._append(RateLimitEvent(timestamp=self._clock(), metadata=metadata))

    def _append(self, event) -> None:
        self._events.append(event)
        self.scheduler.notify(len(self._events))

    # derived state

    def calculate_cost(self, provider: str, input_tokens: int, output_tokens: int) -> float:
        return calculate_cost(provider, input_tokens, output_tokens)

    @property
    def events(self) -> list:
        with self._lock:
            return list(self._events)

    @property
    def cache_stats(self) -> CacheStats:
        with self._lock:
            return self._cache_stats.model_copy()

    @property
    def cost_estimates(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._cost_estimates)

    def get_summary(self, now_ms: Optional[int] = None) -> AnalyticsSummary:
        now = now_ms if now_ms is not None else self._clock()
        with self._lock:
            ai_events = [e for e in self._events if e.event_type == "ai_request"]

        total = len(ai_events)
        cached = sum(1 for e in ai_events if e.metadata.from_cache)
        breakdown: Dict[str, ProviderStats] = {}
        total_cost = 0.0
        savings = 0.0
        for event in ai_events:
            meta = event.metadata
            stats = breakdown.setdefault(meta.provider, ProviderStats())
            stats.count += 1
            if meta.cost and not meta.from_cache:
                stats.cost += meta.cost
                total_cost += meta.cost
            if meta.from_cache and meta.token_usage:
                savings += calculate_cost(
                    meta.provider or "openai", meta.token_usage.input, meta.token_usage.output
                )

        return AnalyticsSummary(
            total_requests=total,
            cached_requests=cached,
            cache_hit_ratio=cached / total if total else 0.0,
            total_cost=total_cost,
            estimated_savings=savings,
            provider_breakdown=breakdown,
            time_window_stats=TimeWindowStats(
                today=sum(1 for e in ai_events if e.timestamp > now - DAY_MS),
                this_week=sum(1 for e in ai_events if e.timestamp > now - 7 * DAY_MS),
                this_month=sum(1 for e in ai_events if e.timestamp > now - 30 * DAY_MS),
            ),
        )

    # flushing

    def flush(self) -> bool:
        return self.scheduler.flush_now()

    def _flush(self, trigger: str) -> bool:
        if not self._flush_lock.acquire(blocking=False):
            return False
        try:
            with self._lock:
                batch = list(self._events)
            if not batch:
                return False
            ok = self._write_batch(batch)
            with self._lock:
                # events recorded during the write stay buffered
                del self._events[: len(batch)]
            log_event(
                "analytics_flush" if ok else "analytics_flush_failed",
                {"trigger": trigger, "count": len(batch)},
            )
            return ok
        finally:
            self._flush_lock.release()

    def _write_batch(self, batch: list) -> bool:
        if self._collector_url:
            try:
                res = requests.post(
                    self._collector_url,
                    json={"events": [e.model_dump(mode="json") for e in batch]},
                    timeout=self._timeout,
                )
                res.raise_for_status()
            except requests.RequestException:
                return False
            return True
        if self._store is None:
            return True
        with self._lock:
            costs = json.dumps(self._cost_estimates)
            cache = self._cache_stats.model_dump_json()
        try:
            key = f"{EVENTS_KEY_PREFIX}{self._clock()}"
            while self._store.get(key) is not None:
                key = f"{EVENTS_KEY_PREFIX}{_batch_timestamp(key) + 1}"
            self._store.set(key, _EVENTS_ADAPTER.dump_json(batch).decode("utf-8"))
            self._store.set(COSTS_KEY, costs)
            self._store.set(CACHE_STATS_KEY, cache)
        except StorageError:
            return False
        return True

    def _load_persistent_data(self) -> None:
        loaded = []
        try:
            raw_costs = self._store.get(COSTS_KEY)
            raw_cache = self._store.get(CACHE_STATS_KEY)
            keys = sorted(self._store.keys(EVENTS_KEY_PREFIX), key=_batch_timestamp)
            for key in keys:
                raw = self._store.get(key)
                try:
                    if raw:
                        loaded.extend(_EVENTS_ADAPTER.validate_json(raw))
                except ValidationError:
                    log_event("analytics_replay_failed", {"key": key})
                self._store.delete(key)
        except StorageError:
            log_event("storage_error", {"op": "load_analytics"})
            return

        with self._lock:
            if raw_costs:
                try:
                    self._cost_estimates = {k: float(v) for k, v in json.loads(raw_costs).items()}
                except (ValueError, AttributeError):
                    log_event("analytics_replay_failed", {"key": COSTS_KEY})
            if raw_cache:
                try:
                    self._cache_stats = CacheStats.model_validate_json(raw_cache)
                except ValidationError:
                    log_event("analytics_replay_failed", {"key": CACHE_STATS_KEY})
            self._events = sorted(loaded + self._events, key=lambda e: e.timestamp)
        if loaded:
            log_event("analytics_replay", {"count": len(loaded)})
