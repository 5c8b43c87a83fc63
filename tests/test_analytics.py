import json
import threading
import time

import pytest
import requests

import bibscrip.analytics as analytics_mod
from bibscrip.analytics import (
    CACHE_STATS_KEY,
    COSTS_KEY,
    DAY_MS,
    EVENTS_KEY_PREFIX,
    AnalyticsRecorder,
    FlushScheduler,
    calculate_cost,
)
from bibscrip.storage import KeyValueStore, StorageError

NOW = 1_700_000_000_000
USAGE = {"input": 1000, "output": 1000, "total": 2000}


class FakeClock:
    def __init__(self, start=NOW):
        self.now = start

    def __call__(self):
        self.now += 1
        return self.now


class FailingKV(KeyValueStore):
    def __init__(self):
        super().__init__(url=None)

    def set(self, key, value):
        raise StorageError("disk full")


def _recorder(store=None, **kwargs):
    kwargs.setdefault("flush_threshold", 1000)
    kwargs.setdefault("flush_interval_sec", 0)
    kwargs.setdefault("clock", FakeClock())
    return AnalyticsRecorder(store=store, **kwargs)


def test_calculate_cost_uses_provider_profile():
    assert calculate_cost("openai", 1000, 1000) == pytest.approx(0.04)
    assert calculate_cost("claude", 1000, 1000) == pytest.approx(0.018)
    assert calculate_cost("mistral", 2000, 0) == pytest.approx(0.005)
    # unknown providers use the cheapest default profile
    assert calculate_cost("local", 1000, 1000) == pytest.approx(0.0035)


def test_cost_attached_only_to_uncached_success():
    recorder = _recorder()
    recorder.record_ai_request("openai", token_usage=USAGE, latency_ms=120)
    recorder.record_ai_request("openai", from_cache=True, token_usage=USAGE)
    recorder.record_ai_request("openai", token_usage=USAGE, status="error", error_type="timeout")
    recorder.record_ai_request("openai")

    costs = [e.metadata.cost for e in recorder.events]
    assert costs[0] == pytest.approx(0.04)
    assert costs[1:] == [None, None, None]
    assert recorder.cost_estimates == {"openai": pytest.approx(0.04)}
    assert recorder.cache_stats.estimated_savings == pytest.approx(0.04)


def test_cache_operations_update_hit_ratio():
    recorder = _recorder()
    recorder.record_cache_operation("hit", "ask:john316")
    recorder.record_cache_operation("hit", "ask:rom828")
    recorder.record_cache_operation("miss", "ask:ps23")
    recorder.record_cache_operation("set", "ask:ps23", size=512, ttl=3600)

    stats = recorder.cache_stats
    assert (stats.hits, stats.misses) == (2, 1)
    assert stats.hit_ratio == pytest.approx(2 / 3)
    assert len(recorder.events) == 4


def test_rate_limit_event_recorded():
    recorder = _recorder()
    recorder.record_rate_limit("gateway", "requests_per_minute", 11, 10)
    event = recorder.events[0]
    assert event.event_type == "rate_limit"
    assert event.metadata.current_count == 11


def test_invalid_input_is_logged_not_raised(_event_log):
    recorder = _recorder()
    recorder.record_cache_operation("flushed", "k")
    recorder.record_rate_limit("gateway", "requests_per_day", 1, 1)
    recorder.record_ai_request("openai", token_usage={"input": "many"})

    assert recorder.events == []
    lines = [json.loads(l) for l in _event_log.read_text(encoding="utf-8").splitlines()]
    assert [l["event_type"] for l in lines] == ["analytics_invalid_event"] * 3


def test_summary_is_derived_from_buffer():
    clock = FakeClock()
    recorder = _recorder(clock=clock)
    recorder.record_ai_request("openai", token_usage=USAGE)
    recorder.record_ai_request("claude", token_usage=USAGE)
    recorder.record_ai_request("claude", from_cache=True, token_usage=USAGE)
    recorder.record_cache_operation("hit", "k")

    summary = recorder.get_summary(now_ms=clock.now)

    assert summary.total_requests == 3
    assert summary.cached_requests == 1
    assert summary.cache_hit_ratio == pytest.approx(1 / 3)
    assert summary.total_cost == pytest.approx(0.04 + 0.018)
    assert summary.estimated_savings == pytest.approx(0.018)
    assert summary.provider_breakdown["claude"].count == 2
    assert summary.provider_breakdown["claude"].cost == pytest.approx(0.018)
    assert summary.time_window_stats.today == 3


def test_summary_time_windows():
    clock = FakeClock(start=NOW - 10 * DAY_MS)
    recorder = _recorder(clock=clock)
    recorder.record_ai_request("openai")
    clock.now = NOW - 2 * DAY_MS
    recorder.record_ai_request("openai")
    clock.now = NOW - 1000
    recorder.record_ai_request("openai")

    windows = recorder.get_summary(now_ms=NOW).time_window_stats
    assert (windows.today, windows.this_week, windows.this_month) == (1, 2, 3)


def test_empty_summary():
    summary = _recorder().get_summary(now_ms=NOW)
    assert summary.total_requests == 0
    assert summary.cache_hit_ratio == 0.0
    assert summary.provider_breakdown == {}


def test_flush_writes_batch_and_clears_buffer():
    kv = KeyValueStore(url=None)
    recorder = _recorder(store=kv)
    recorder.record_ai_request("openai", token_usage=USAGE)
    recorder.record_cache_operation("miss", "k")

    assert recorder.flush() is True
    assert recorder.events == []
    keys = kv.keys(EVENTS_KEY_PREFIX)
    assert len(keys) == 1
    assert len(json.loads(kv.get(keys[0]))) == 2
    assert json.loads(kv.get(COSTS_KEY))["openai"] == pytest.approx(0.04)
    assert json.loads(kv.get(CACHE_STATS_KEY))["misses"] == 1


def test_flush_with_empty_buffer_is_noop():
    kv = KeyValueStore(url=None)
    assert _recorder(store=kv).flush() is False
    assert kv.keys(EVENTS_KEY_PREFIX) == []


def test_failed_flush_drops_batch(_event_log):
    recorder = _recorder(store=FailingKV())
    recorder.record_ai_request("openai", token_usage=USAGE)

    assert recorder.flush() is False
    assert recorder.events == []
    assert "analytics_flush_failed" in _event_log.read_text(encoding="utf-8")


def test_replay_merges_persisted_batches_in_order():
    kv = KeyValueStore(url=None)
    first = _recorder(store=kv, clock=FakeClock(start=NOW))
    first.record_ai_request("openai", token_usage=USAGE)
    first.flush()
    first.record_ai_request("claude", token_usage=USAGE)
    first.flush()

    second = _recorder(store=kv, clock=FakeClock(start=NOW + 100))
    second.record_rate_limit("gateway", "requests_per_minute", 11, 10)
    second.init()
    try:
        events = second.events
        assert [e.event_type for e in events] == ["ai_request", "ai_request", "rate_limit"]
        assert [e.metadata.provider for e in events[:2]] == ["openai", "claude"]
        assert kv.keys(EVENTS_KEY_PREFIX) == []
        assert second.cost_estimates["claude"] == pytest.approx(0.018)
    finally:
        second.scheduler.stop()


def test_replay_skips_corrupt_batch():
    kv = KeyValueStore(url=None)
    kv.set(f"{EVENTS_KEY_PREFIX}{NOW}", "not json")
    kv.set(CACHE_STATS_KEY, "{bad")
    recorder = _recorder(store=kv)
    recorder.init()
    try:
        assert recorder.events == []
        assert kv.keys(EVENTS_KEY_PREFIX) == []
        assert recorder.cache_stats.hits == 0
    finally:
        recorder.scheduler.stop()


def test_threshold_triggers_background_flush():
    kv = KeyValueStore(url=None)
    recorder = _recorder(store=kv, flush_threshold=3)
    recorder.record_cache_operation("hit", "a")
    recorder.record_cache_operation("hit", "b")
    assert kv.keys(EVENTS_KEY_PREFIX) == []

    recorder.record_cache_operation("hit", "c")
    recorder.scheduler.wait(timeout=5)

    assert len(kv.keys(EVENTS_KEY_PREFIX)) == 1
    assert recorder.events == []


def test_shutdown_flushes_remaining_events():
    kv = KeyValueStore(url=None)
    recorder = _recorder(store=kv)
    recorder.init()
    recorder.record_ai_request("openai")
    recorder.shutdown()

    assert recorder.events == []
    assert len(kv.keys(EVENTS_KEY_PREFIX)) == 1
    assert recorder.scheduler.running is False


def test_collector_receives_events(monkeypatch):
    calls = []

    class FakeResponse:
        def raise_for_status(self):
            return None

    def fake_post(url, json=None, timeout=None):
        calls.append((url, json, timeout))
        return FakeResponse()

    monkeypatch.setattr(analytics_mod.requests, "post", fake_post)
    recorder = _recorder(collector_url="http://collector/events", timeout=2)
    recorder.record_rate_limit("gateway", "requests_per_minute", 11, 10)

    assert recorder.flush() is True
    url, body, timeout = calls[0]
    assert url == "http://collector/events"
    assert timeout == 2
    assert body["events"][0]["event_type"] == "rate_limit"
    assert body["events"][0]["metadata"]["limit"] == 10


def test_collector_failure_is_swallowed(monkeypatch):
    def fake_post(url, json=None, timeout=None):
        raise requests.ConnectionError("collector down")

    monkeypatch.setattr(analytics_mod.requests, "post", fake_post)
    recorder = _recorder(collector_url="http://collector/events")
    recorder.record_ai_request("openai")

    assert recorder.flush() is False
    assert recorder.events == []


def test_scheduler_interval_disabled_starts_no_timer():
    flushed = []
    scheduler = FlushScheduler(lambda trigger: flushed.append(trigger) or True, 0, 10)
    scheduler.start()
    assert scheduler.running is True
    scheduler.notify(3)
    scheduler.wait()
    assert flushed == []
    assert scheduler.flush_now() is True
    assert flushed == ["manual"]
    scheduler.stop()
    assert scheduler.running is False


def test_scheduler_interval_flushes_until_stopped():
    flushed = []
    done = threading.Event()

    def flush(trigger):
        flushed.append(trigger)
        if len(flushed) >= 2:
            done.set()
        return True

    scheduler = FlushScheduler(flush, 0.05, 1000)
    scheduler.start()
    try:
        assert done.wait(timeout=5)
    finally:
        scheduler.stop()
    assert set(flushed) == {"interval"}

    count = len(flushed)
    time.sleep(0.2)
    assert len(flushed) == count


def test_recorder_interval_flush_writes_store():
    kv = KeyValueStore(url=None)
    recorder = _recorder(store=kv, flush_interval_sec=0.05)
    recorder.init()
    try:
        recorder.record_ai_request("openai", token_usage=USAGE)
        deadline = time.monotonic() + 5
        while (recorder.events or not kv.keys(EVENTS_KEY_PREFIX)) and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        recorder.scheduler.stop()
    assert len(kv.keys(EVENTS_KEY_PREFIX)) == 1
    assert recorder.events == []
