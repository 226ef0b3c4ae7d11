"""
Redis caching service for CivicLens.

Caches reverse-geocoding results so repeated lookups for the same spot do not
hit the geocoding providers again. Redis is optional: when it is not
configured or unreachable every call degrades to a cache miss.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import redis.asyncio as redis
from redis.asyncio import ConnectionPool

logger = logging.getLogger(__name__)

GEOCODE_KEY_PREFIX = "geocode:reverse"


def geocode_cache_key(latitude: float, longitude: float) -> str:
    # ~11m precision is enough to share an address between nearby lookups
    return f"{GEOCODE_KEY_PREFIX}:{latitude:.4f}:{longitude:.4f}"


class RedisService:
    """Thin JSON cache over redis.asyncio with graceful fallback."""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.redis_client: Optional[redis.Redis] = client
        self.connection_pool: Optional[ConnectionPool] = None
        self.is_connected = client is not None
        self.default_ttl = 300

    async def connect(self) -> bool:
        """
        Open a pooled connection and ping it.

        Returns:
            bool: True if the server answered, False otherwise
        """
        if self.redis_client is not None and self.is_connected:
            return True

        redis_url = self.redis_url
        if not redis_url:
            logger.info("⚠️ No REDIS_URL set. Geocode caching disabled.")
            return False
        if not redis_url.startswith(("redis://", "rediss://", "unix://")):
            logger.warning(f"⚠️ Malformed REDIS_URL detected. Auto-fixing to 'redis://{redis_url}'")
            redis_url = f"redis://{redis_url}"

        pool_kwargs = {
            'decode_responses': True,
            'max_connections': 20,
            'retry_on_timeout': True,
            'socket_connect_timeout': 5,
            'socket_timeout': 5,
            'health_check_interval': 30,
        }
        if urlparse(redis_url).scheme == 'rediss':
            pool_kwargs['ssl_cert_reqs'] = None
            pool_kwargs['ssl_check_hostname'] = False
            logger.info("🔒 TLS (rediss) detected; cert verification disabled for managed Redis")

        try:
            self.connection_pool = ConnectionPool.from_url(redis_url, **pool_kwargs)
            self.redis_client = redis.Redis(connection_pool=self.connection_pool)
            await asyncio.wait_for(self.redis_client.ping(), timeout=5.0)
            self.is_connected = True
            logger.info("✅ Redis connected successfully")
            return True
        except asyncio.TimeoutError:
            logger.warning("⏰ Redis connection timeout")
        except Exception as e:
            logger.warning(f"⚠️ Redis connection failed: {str(e)}")
        self.is_connected = False
        return False

    async def disconnect(self):
        try:
            if self.redis_client:
                await self.redis_client.aclose()
            if self.connection_pool:
                await self.connection_pool.disconnect()
            logger.info("🔌 Redis connection closed")
        except Exception as e:
            logger.error(f"❌ Error closing Redis connection: {str(e)}")
        finally:
            self.is_connected = False
            self.redis_client = None
            self.connection_pool = None

    @staticmethod
    def _serialize_data(data: Any) -> str:
        def json_serializer(obj):
            if isinstance(obj, datetime):
                return obj.isoformat()
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

        return json.dumps(data, default=json_serializer, ensure_ascii=False)

    async def get(self, key: str) -> Optional[Any]:
        if not self.is_connected or not self.redis_client:
            return None
        try:
            cached_data = await self.redis_client.get(key)
            if cached_data:
                logger.debug(f"🎯 Cache HIT for key: {key}")
                return json.loads(cached_data)
            logger.debug(f"❌ Cache MISS for key: {key}")
            return None
        except Exception as e:
            logger.warning(f"⚠️ Redis GET error for key {key}: {str(e)}")
            return None

    async def set(self, key: str, data: Any, ttl: Optional[int] = None) -> bool:
        if not self.is_connected or not self.redis_client:
            return False
        try:
            ttl = ttl or self.default_ttl
            await self.redis_client.setex(key, ttl, self._serialize_data(data))
            logger.debug(f"💾 Cache SET for key: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.warning(f"⚠️ Redis SET error for key {key}: {str(e)}")
            return False

    async def delete(self, key: str) -> bool:
        if not self.is_connected or not self.redis_client:
            return False
        try:
            return bool(await self.redis_client.delete(key))
        except Exception as e:
            logger.warning(f"⚠️ Redis DELETE error for key {key}: {str(e)}")
            return False

    async def cache_reverse_geocode(self, latitude: float, longitude: float, result: Dict[str, Any], ttl: int) -> bool:
        return await self.set(geocode_cache_key(latitude, longitude), result, ttl)

    async def get_cached_reverse_geocode(self, latitude: float, longitude: float) -> Optional[Dict[str, Any]]:
        return await self.get(geocode_cache_key(latitude, longitude))

    async def get_cache_stats(self) -> Dict[str, Any]:
        if not self.is_connected or not self.redis_client:
            return {"status": "disconnected", "keys": 0}
        try:
            return {"status": "connected", "keys": await self.redis_client.dbsize()}
        except Exception as e:
            logger.error(f"❌ Error getting cache stats: {str(e)}")
            return {"status": "error", "error": str(e)}


async def init_redis(redis_url: Optional[str]) -> RedisService:
    """Connect a cache; the application keeps working when this fails."""
    service = RedisService(redis_url)
    await service.connect()
    return service


async def close_redis(service: Optional[RedisService]):
    if service is not None:
        await service.disconnect()
