from datetime import datetime, timezone

from civiclens.services.redis_service import RedisService, geocode_cache_key


def test_cache_key_rounds_to_four_places():
    assert geocode_cache_key(12.971598, 77.594566) == "geocode:reverse:12.9716:77.5946"


async def test_set_and_get_roundtrip_with_ttl(cache):
    stamp = datetime(2024, 5, 1, tzinfo=timezone.utc)

    assert await cache.set("k", {"at": stamp, "n": 1}, ttl=60) is True

    assert await cache.get("k") == {"at": "2024-05-01T00:00:00+00:00", "n": 1}
    assert 0 < await cache.redis_client.ttl("k") <= 60
    assert await cache.delete("k") is True
    assert await cache.get("k") is None


async def test_stats(cache):
    await cache.set("a", 1)
    assert await cache.get_cache_stats() == {"status": "connected", "keys": 1}


async def test_unconfigured_cache_is_a_miss():
    service = RedisService(None)

    assert await service.connect() is False
    assert await service.get("anything") is None
    assert await service.set("anything", 1) is False
    assert await service.get_cache_stats() == {"status": "disconnected", "keys": 0}
