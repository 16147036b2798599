from unittest.mock import MagicMock

from redis.exceptions import RedisError
from sqlalchemy import select

from formflow.cache.envelope import decode_value, encode_value
from formflow.cache.manager import CacheManager
from formflow.cache.models import CacheEntry
from formflow.cache.tiers import DatabaseCache, ProcessCache, RedisCache, glob_to_like, glob_to_redis_match
from formflow.testing_dependencies import (
    cache_manager,
    cache_session_factory,
    clock,
    redis_client,
)


def test_set_then_get_returns_structured_value(cache_manager):
    value = {"name": "Contrato", "signers": [1, 2], "active": True}

    assert cache_manager.set("form_1", value, 600) is True
    assert cache_manager.get("form_1") == value
    assert cache_manager.stats()["l1_hits"] == 1


def test_keys_are_namespaced_and_versioned(cache_manager, redis_client):
    cache_manager.set("form_1", "x")

    assert CacheManager.make_key("form_1") == "formflow_2.0.0_form_1"
    assert "formflow_2.0.0_form_1" in redis_client.storage


def test_database_hit_is_promoted_to_faster_tiers(cache_manager, redis_client):
    cache_manager.set("submission_9", {"status": "pending"})
    cache_manager.l1.delete_pattern("*")
    redis_client.storage.clear()

    assert cache_manager.get("submission_9") == {"status": "pending"}
    assert "formflow_2.0.0_submission_9" in redis_client.storage

    assert cache_manager.get("submission_9") == {"status": "pending"}
    stats = cache_manager.stats()
    assert stats["l3_hits"] == 1
    assert stats["l1_hits"] == 1
    assert stats["hits"] == 2


def test_redis_hit_is_promoted_to_process_tier(cache_manager):
    cache_manager.set("k", "v")
    cache_manager.l1.delete_pattern("*")

    assert cache_manager.get("k") == "v"
    assert cache_manager.get("k") == "v"
    assert cache_manager.stats()["l2_hits"] == 1
    assert cache_manager.stats()["l1_hits"] == 1


def test_expired_entry_returns_default(cache_manager, clock):
    cache_manager.set("k", "v", 60)
    clock.advance(61)

    assert cache_manager.get("k", "fallback") == "fallback"
    assert cache_manager.stats()["misses"] == 1


def test_promoted_entry_keeps_database_expiry(cache_manager, redis_client, clock):
    cache_manager.set("k", "v", 60)
    cache_manager.l1.delete_pattern("*")
    redis_client.storage.clear()
    clock.advance(30)

    assert cache_manager.get("k") == "v"
    assert redis_client.ttl("formflow_2.0.0_k") == 30

    clock.advance(31)
    assert cache_manager.get("k", "default") == "default"


def test_redis_hit_promotion_keeps_redis_expiry(cache_manager, redis_client, clock):
    cache_manager.set("k", "v", 60)
    cache_manager.l1.delete_pattern("*")
    clock.advance(50)

    assert cache_manager.get("k") == "v"
    clock.advance(11)
    assert cache_manager.get("k", "default") == "default"


def test_cleanup_removes_only_expired_rows(cache_manager, cache_session_factory, clock):
    cache_manager.set("short", "a", 60)
    cache_manager.set("long", "b", 600)
    clock.advance(120)

    assert cache_manager.cleanup_expired() == 1

    session = cache_session_factory()
    try:
        keys = session.execute(select(CacheEntry.cache_key)).scalars().all()
    finally:
        session.close()
    assert keys == ["formflow_2.0.0_long"]
    assert cache_manager.get("long") == "b"


def test_flush_pattern_treats_underscore_literally(cache_manager):
    cache_manager.set("form_1", 1)
    cache_manager.set("form_2", 2)
    cache_manager.set("formx1", 3)
    cache_manager.set("submission_1", 4)

    assert cache_manager.flush_pattern("form_*") == 2
    assert cache_manager.get("form_1") is None
    assert cache_manager.get("form_2") is None
    assert cache_manager.get("formx1") == 3
    assert cache_manager.get("submission_1") == 4


def test_flush_drops_every_entry(cache_manager, redis_client):
    cache_manager.set("a", 1)
    cache_manager.set("b", 2)

    assert cache_manager.flush() is True
    assert cache_manager.get("a") is None
    assert cache_manager.get("b") is None
    assert redis_client.storage == {}


def test_delete_removes_key_from_all_tiers(cache_manager, redis_client):
    cache_manager.set("a", 1)

    assert cache_manager.delete("a") is True
    assert cache_manager.delete("missing") is True
    assert cache_manager.get("a") is None
    assert redis_client.storage == {}
    assert cache_manager.stats()["deletes"] == 2


def test_disabled_cache_reads_miss_and_writes_fail(cache_session_factory, clock):
    manager = CacheManager(database=DatabaseCache(cache_session_factory, clock=clock), enabled=False)

    assert manager.set("a", 1) is False
    assert manager.get("a", "default") == "default"
    assert manager.stats()["misses"] == 1
    assert manager.stats()["enabled"] is False
    assert manager.stats()["has_object_cache"] is False


def test_remember_computes_once(cache_manager):
    calls = []

    def load():
        calls.append(1)
        return {"id": 1}

    assert cache_manager.remember("form_1", load, 600) == {"id": 1}
    assert cache_manager.remember("form_1", load, 600) == {"id": 1}
    assert len(calls) == 1


def test_remember_does_not_store_none(cache_manager):
    calls = []

    def load():
        calls.append(1)
        return None

    assert cache_manager.remember("form_404", load) is None
    assert cache_manager.remember("form_404", load) is None
    assert len(calls) == 2


def test_warm_counts_stored_entries(cache_manager):
    result = cache_manager.warm({
        "form_1": (lambda: {"id": 1}, 600),
        "form_2": (lambda: None, 600),
    })

    assert result == {"status": "success", "entries": 1}
    assert cache_manager.get("form_1") == {"id": 1}


def test_stats_hit_rate(cache_manager):
    cache_manager.set("a", 1)
    cache_manager.get("a")
    cache_manager.get("missing")
    cache_manager.get("missing")

    stats = cache_manager.stats()
    assert stats["total_requests"] == 3
    assert stats["hit_rate"] == 33.33
    assert stats["writes"] == 1
    assert stats["has_object_cache"] is True


def test_redis_errors_fall_through_to_database(cache_session_factory, clock):
    broken = MagicMock()
    broken.get.side_effect = RedisError("connection refused")
    broken.setex.side_effect = RedisError("connection refused")
    manager = CacheManager(
        database=DatabaseCache(cache_session_factory, clock=clock),
        redis_cache=RedisCache(broken),
        enabled=True,
    )

    assert manager.set("a", {"x": 1}) is True
    assert manager.get("a") == {"x": 1}
    assert manager.stats()["l3_hits"] == 1


def test_process_cache_purges_expired(clock):
    tier = ProcessCache(clock=clock)
    tier.set("a", "t:1", 10)
    tier.set("b", "t:2", None)
    clock.advance(11)

    assert tier.purge_expired() == 1
    assert tier.get("b") == "t:2"


def test_glob_translation_escapes_wildcards():
    assert glob_to_like("form_1*") == "form\\_1%"
    assert glob_to_like("100%*") == "100\\%%"
    assert glob_to_redis_match("a[1]?*") == "a\\[1\\]\\?*"


def test_envelope_keeps_writer_type():
    assert decode_value(encode_value(b"\x00\x01pdf")) == b"\x00\x01pdf"
    assert decode_value(encode_value('{"a": 1}')) == '{"a": 1}'
    assert decode_value(encode_value({"a": 1})) == {"a": 1}
    assert decode_value(encode_value(5)) == 5
    assert decode_value("legacy value") == "legacy value"
