import json

import redis

import bibscrip.events as events_mod
from bibscrip.events import log_event, reset_event_log
from bibscrip.storage import KeyValueStore


def test_log_event_hashes_identifiers(_event_log):
    log_event("session_switch", {"session_id": "abc", "ip": "203.0.113.7", "count": 2})

    record = json.loads(_event_log.read_text(encoding="utf-8").splitlines()[0])
    assert record["event_type"] == "session_switch"
    assert record["session_id"] == events_mod._hash_id("abc")
    assert record["ip"] != "203.0.113.7"
    assert record["count"] == 2


def test_log_event_survives_unwritable_path(monkeypatch, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    monkeypatch.setattr(events_mod, "EVENT_LOG_PATH", str(blocker / "events.log"))
    log_event("anything", {})


def test_reset_event_log(_event_log):
    log_event("first", {})
    reset_event_log("test")
    lines = _event_log.read_text(encoding="utf-8").splitlines()
    assert [json.loads(l)["event_type"] for l in lines] == ["event_log_reset"]


class BrokenRedis:
    def get(self, key):
        raise redis.ConnectionError("down")

    def set(self, key, value):
        raise redis.ConnectionError("down")


def test_store_degrades_to_memory_on_redis_error(_event_log):
    kv = KeyValueStore(client=BrokenRedis())
    assert kv.get("k") is None
    kv.set("k", "v")
    assert kv.get("k") == "v"
    assert kv.in_memory is True
    assert "storage_error" in _event_log.read_text(encoding="utf-8")


def test_memory_store_keys_by_prefix():
    kv = KeyValueStore(url=None)
    kv.set("a_1", "x")
    kv.set("a_2", "y")
    kv.set("b_1", "z")
    kv.delete("a_2")
    assert kv.keys("a_") == ["a_1"]
