"""Object storage on Redis: one key per object body, one hash per object's metadata.

Objects are addressed as ``<container>/<name>``; that string is also the
``blobUrl`` a claim check carries.
"""
from typing import AsyncIterator, Dict, Optional

from . import redis_helper

CHUNK_SIZE = 64 * 1024


def location(container: str, name: str) -> str:
    return f"{container}/{name}"


class BlobStore:
    def __init__(self, redis_client, blob_client):
        self.redis = redis_client
        self.blobs = blob_client

    @staticmethod
    def _data_key(loc: str) -> str:
        return f"blob:{loc}"

    @staticmethod
    def _meta_key(loc: str) -> str:
        return f"blob:{loc}:meta"

    async def upload(self, container: str, name: str, data: bytes,
                     content_type: str = "application/octet-stream",
                     content_encoding: Optional[str] = None,
                     metadata: Optional[Dict[str, str]] = None) -> str:
        loc = location(container, name)
        meta = dict(metadata or {})
        meta["content_type"] = content_type
        if content_encoding:
            meta["content_encoding"] = content_encoding
        # body first so metadata never points at a missing object
        await self.blobs.set(self._data_key(loc), data)
        await self.redis.hset(self._meta_key(loc), mapping=meta)
        return loc

    async def exists(self, loc: str) -> bool:
        return bool(await self.redis.exists(self._meta_key(loc)))

    async def download(self, loc: str) -> Optional[bytes]:
        return await self.blobs.get(self._data_key(loc))

    async def get_metadata(self, loc: str) -> Dict[str, str]:
        return await self.redis.hgetall(self._meta_key(loc))

    async def set_metadata_if(self, loc: str, field: str, expected: str, value: str) -> bool:
        return await redis_helper.hash_compare_and_set(
            self.redis, self._meta_key(loc), field, expected, value
        )

    async def stream(self, loc: str) -> AsyncIterator[bytes]:
        data = await self.download(loc) or b""
        for start in range(0, len(data), CHUNK_SIZE):
            yield data[start:start + CHUNK_SIZE]
