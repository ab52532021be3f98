import hashlib
import json
import time
from typing import Callable, Dict, List, Optional, Tuple, Union

import redis.asyncio as redis

from .config import settings

TESTING = settings.testing

Value = Union[str, bytes]

# Compare-and-set on one hash field; HSET only when the current value matches.
_HASH_CAS_LUA = """
local current = redis.call('HGET', KEYS[1], ARGV[1])
if current == ARGV[2] then
    redis.call('HSET', KEYS[1], ARGV[1], ARGV[3])
    return 1
end
return 0
"""

# Move the head of a ready list to its processing list and lease it, in one step.
# KEYS: ready, processing, deliveries, inflight, tokens, leases
# ARGV: lease deadline, lease token
_CLAIM_LUA = """
local raw = redis.call('LMOVE', KEYS[1], KEYS[2], 'LEFT', 'RIGHT')
if not raw then
    return false
end
local ok, envelope = pcall(cjson.decode, raw)
local message_id
if ok and type(envelope) == 'table' and envelope['message_id'] ~= nil then
    message_id = tostring(envelope['message_id'])
else
    message_id = redis.sha1hex(raw)
end
local count = redis.call('HINCRBY', KEYS[3], message_id, 1)
redis.call('HSET', KEYS[4], message_id, raw)
redis.call('HSET', KEYS[5], message_id, ARGV[2])
redis.call('ZADD', KEYS[6], ARGV[1], message_id)
return {raw, message_id, count}
"""

# Release a leased message and optionally push a value elsewhere, only while
# the caller still holds the lease token.
# KEYS: processing, leases, inflight, tokens, deliveries, target
# ARGV: message id, lease token, raw message, value to push, forget delivery count
_SETTLE_LUA = """
if redis.call('HGET', KEYS[4], ARGV[1]) ~= ARGV[2] then
    return 0
end
redis.call('LREM', KEYS[1], 1, ARGV[3])
redis.call('ZREM', KEYS[2], ARGV[1])
redis.call('HDEL', KEYS[3], ARGV[1])
redis.call('HDEL', KEYS[4], ARGV[1])
if ARGV[5] == '1' then
    redis.call('HDEL', KEYS[5], ARGV[1])
end
if ARGV[4] ~= '' then
    redis.call('RPUSH', KEYS[6], ARGV[4])
end
return 1
"""


def message_id_of(raw: str) -> str:
    """Envelope message id, or a content hash for anything that is not an envelope."""
    try:
        envelope = json.loads(raw)
    except ValueError:
        envelope = None
    if isinstance(envelope, dict) and envelope.get("message_id") is not None:
        return str(envelope["message_id"])
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


class AsyncInMemoryRedis:
    """Single-process stand-in for the Redis commands this service uses.

    Every method runs to completion without awaiting, so each call is atomic
    with respect to other asyncio tasks, which is what Redis guarantees per
    command.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._strings: Dict[str, Value] = {}
        self._expiry: Dict[str, float] = {}
        self._hashes: Dict[str, Dict[str, str]] = {}
        self._lists: Dict[str, List[Value]] = {}
        self._zsets: Dict[str, Dict[str, float]] = {}

    def _expire_if_due(self, name: str):
        deadline = self._expiry.get(name)
        if deadline is not None and deadline <= self.clock():
            self._strings.pop(name, None)
            self._expiry.pop(name, None)

    # strings
    async def set(self, name: str, value: Value, ex: Optional[float] = None, nx: bool = False):
        self._expire_if_due(name)
        if nx and name in self._strings:
            return None
        self._strings[name] = value
        if ex is not None:
            self._expiry[name] = self.clock() + ex
        else:
            self._expiry.pop(name, None)
        return True

    async def get(self, name: str) -> Optional[Value]:
        self._expire_if_due(name)
        return self._strings.get(name)

    async def exists(self, *names: str) -> int:
        count = 0
        for name in names:
            self._expire_if_due(name)
            if name in self._strings or name in self._hashes or name in self._lists:
                count += 1
        return count

    async def ping(self) -> bool:
        return True

    # hashes
    async def hset(self, name: str, key: Optional[str] = None, value: Optional[str] = None,
                   mapping: Optional[Dict[str, str]] = None):
        h = self._hashes.setdefault(name, {})
        items = dict(mapping or {})
        if key is not None:
            items[key] = value
        added = len([k for k in items if k not in h])
        h.update(items)
        return added

    async def hget(self, name: str, key: str) -> Optional[str]:
        h = self._hashes.get(name, {})
        return h.get(key)

    async def hgetall(self, name: str) -> Dict[str, str]:
        return dict(self._hashes.get(name, {}))

    async def hcompare_and_set(self, name: str, key: str, expected: str, value: str) -> bool:
        h = self._hashes.get(name)
        if h is None or h.get(key) != expected:
            return False
        h[key] = value
        return True

    # lists
    async def rpush(self, name: str, *values: Value):
        lst = self._lists.setdefault(name, [])
        for v in values:
            lst.append(v)
        return len(lst)

    async def llen(self, name: str) -> int:
        return len(self._lists.get(name, []))

    async def lrange(self, name: str, start: int, end: int) -> List[Value]:
        lst = self._lists.get(name, [])
        return list(lst[start:] if end == -1 else lst[start:end + 1])

    # queue scripts, mirroring _CLAIM_LUA and _SETTLE_LUA
    async def claim_message(self, keys: Tuple[str, ...], lease_deadline: float, token: str):
        ready, processing, deliveries, inflight, tokens, leases = keys
        lst = self._lists.get(ready, [])
        if not lst:
            return None
        raw = lst.pop(0)
        self._lists.setdefault(processing, []).append(raw)
        message_id = message_id_of(raw)
        counts = self._hashes.setdefault(deliveries, {})
        counts[message_id] = str(int(counts.get(message_id, 0)) + 1)
        self._hashes.setdefault(inflight, {})[message_id] = raw
        self._hashes.setdefault(tokens, {})[message_id] = token
        self._zsets.setdefault(leases, {})[message_id] = lease_deadline
        return raw, message_id, int(counts[message_id])

    async def settle_message(self, keys: Tuple[str, ...], message_id: str, token: str, raw: str,
                             push_value: str = "", forget_count: bool = True) -> bool:
        processing, leases, inflight, tokens, deliveries, target = keys
        if self._hashes.get(tokens, {}).get(message_id) != token:
            return False
        lst = self._lists.get(processing, [])
        if raw in lst:
            lst.remove(raw)
        self._zsets.get(leases, {}).pop(message_id, None)
        self._hashes.get(inflight, {}).pop(message_id, None)
        self._hashes[tokens].pop(message_id, None)
        if forget_count:
            self._hashes.get(deliveries, {}).pop(message_id, None)
        if push_value:
            self._lists.setdefault(target, []).append(push_value)
        return True

    # zset methods
    async def zrangebyscore(self, name: str, min: float, max: float,
                            start: Optional[int] = None, num: Optional[int] = None) -> List[str]:
        z = self._zsets.get(name, {})
        members = [m for m, s in sorted(z.items(), key=lambda kv: kv[1])
                   if float(min) <= s <= float(max)]
        if start is not None and num is not None:
            members = members[start:start + num]
        return members


# Singleton clients; the in-memory one backs both text and binary access
_inmemory_client: Optional[AsyncInMemoryRedis] = None
_text_client = None
_binary_client = None


async def get_redis():
    """Client for keys, hashes and queues (responses decoded to str)."""
    global _inmemory_client, _text_client
    if TESTING:
        if _inmemory_client is None:
            _inmemory_client = AsyncInMemoryRedis()
        return _inmemory_client
    if _text_client is None:
        _text_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
    return _text_client


async def get_blob_redis():
    """Client for raw object bodies (responses left as bytes)."""
    global _binary_client
    if TESTING:
        return await get_redis()
    if _binary_client is None:
        _binary_client = redis.Redis.from_url(settings.redis_url, decode_responses=False)
    return _binary_client


def reset_inmemory_client():
    global _inmemory_client
    _inmemory_client = None


# Basic helpers
async def set_if_absent(redis_client, key: str, value: str, ttl: float) -> bool:
    """Atomic SET NX with expiry; True only for the caller that created the key."""
    return bool(await redis_client.set(key, value, ex=ttl, nx=True))


async def hash_compare_and_set(redis_client, name: str, field: str, expected: str, value: str) -> bool:
    if TESTING:
        return await redis_client.hcompare_and_set(name, field, expected, value)
    result = await redis_client.eval(_HASH_CAS_LUA, 1, name, field, expected, value)
    return bool(result)


async def claim_message(redis_client, keys: Tuple[str, ...], lease_deadline: float,
                        token: str) -> Optional[Tuple[str, str, int]]:
    """Atomically move one message to processing, count the delivery and lease it.

    Returns (raw, message_id, delivery_count), or None when the ready list is empty.
    """
    if TESTING:
        return await redis_client.claim_message(keys, lease_deadline, token)
    result = await redis_client.eval(_CLAIM_LUA, len(keys), *keys, lease_deadline, token)
    if not result:
        return None
    raw, message_id, count = result
    return raw, message_id, int(count)


async def settle_message(redis_client, keys: Tuple[str, ...], message_id: str, token: str,
                         raw: str, push_value: str = "", forget_count: bool = True) -> bool:
    """Atomically release a leased message; False when the lease token is no longer current."""
    if TESTING:
        return await redis_client.settle_message(keys, message_id, token, raw,
                                                 push_value, forget_count)
    result = await redis_client.eval(_SETTLE_LUA, len(keys), *keys, message_id, token, raw,
                                     push_value, "1" if forget_count else "0")
    return bool(result)
