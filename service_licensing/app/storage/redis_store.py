"""
Redis-backed document store.

Each document is a hash ``{data, version}``. The conditional write runs as a
server-side script so the version check and the write are atomic.
"""

import json
from typing import Any, Optional

import redis.asyncio as redis

from shared.errors import InfrastructureFault
from service_licensing.app.storage.base import DocumentStore, VersionedDocument


COMPARE_AND_SET_SCRIPT = """
local current = redis.call('HGET', KEYS[1], 'version')
if ARGV[1] == '' then
    if current then
        return 0
    end
elseif current ~= ARGV[1] then
    return 0
end
local next_version = (tonumber(current) or 0) + 1
redis.call('HSET', KEYS[1], 'data', ARGV[2], 'version', tostring(next_version))
return 1
"""


class RedisDocumentStore(DocumentStore):
    """Versioned JSON documents in Redis."""

    def __init__(self, redis_url: str, prefix: str = "licensing:",
                 client: Optional[redis.Redis] = None, **kwargs):
        super().__init__(**kwargs)
        self.redis_url = redis_url
        self.prefix = prefix
        self._redis: Optional[redis.Redis] = client
        self._cas_script = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    def _make_key(self, path: str) -> str:
        return f"{self.prefix}{path}"

    async def read(self, path: str) -> VersionedDocument:
        redis_client = await self._get_redis()
        data, version = await redis_client.hmget(self._make_key(path), ["data", "version"])
        if data is None:
            return VersionedDocument(None, None)
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        if isinstance(version, bytes):
            version = version.decode("utf-8")
        try:
            return VersionedDocument(json.loads(data), int(version))
        except (ValueError, TypeError) as e:
            raise InfrastructureFault(
                f"Malformed document at {path}",
                {"path": path, "error": str(e)}
            ) from e

    async def compare_and_set(self, path: str, value: Any, expected_version: Optional[int]) -> bool:
        redis_client = await self._get_redis()
        if self._cas_script is None:
            self._cas_script = redis_client.register_script(COMPARE_AND_SET_SCRIPT)
        expected = "" if expected_version is None else str(expected_version)
        result = await self._cas_script(
            keys=[self._make_key(path)],
            args=[expected, json.dumps(value)],
        )
        return int(result) == 1

    async def put(self, path: str, value: Any) -> None:
        redis_client = await self._get_redis()
        key = self._make_key(path)
        async with redis_client.pipeline(transaction=True) as pipe:
            pipe.hset(key, "data", json.dumps(value))
            pipe.hincrby(key, "version", 1)
            await pipe.execute()

    async def ping(self) -> bool:
        redis_client = await self._get_redis()
        return bool(await redis_client.ping())

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
