"""Claim-check queue on Redis lists with transport-style redelivery.

``receive`` moves a message from the ready list to the processing list,
counts the delivery and leases it in one atomic step; the receiver settles it
with exactly one of ``ack``, ``abandon`` or ``dead_letter``, each also a
single atomic step. Abandoned messages go back to the ready list until their
delivery count reaches ``max_delivery_count``, after which they land in the
dead-letter list with the last failure reason. A lease that expires without
settlement (crashed worker) is reclaimed by ``reclaim_expired`` through the
same abandon path.

Every delivery carries a lease token. Settling only succeeds while that token
is current, so a worker whose lease was reclaimed cannot release the next
delivery of the same message.
"""
import json
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import redis_helper
from .logging_config import get_logger

logger = get_logger(__name__)


class Delivery:
    """One received message and the operations available to settle it."""

    def __init__(self, queue: "ClaimCheckQueue", raw: str, message_id: str,
                 body: Any, delivery_count: int, token: str):
        self.queue = queue
        self.raw = raw
        self.message_id = message_id
        self.body = body
        self.delivery_count = delivery_count
        self.token = token
        self.settled = False

    async def ack(self) -> bool:
        return await self.queue._settle(self, self.queue.ready_key)

    async def abandon(self, reason: str) -> bool:
        if self.delivery_count >= self.queue.max_delivery_count:
            return await self.dead_letter(f"max delivery count exceeded: {reason}")
        return await self.queue._settle(self, self.queue.ready_key, push_value=self.raw,
                                        forget_count=False)

    async def dead_letter(self, reason: str) -> bool:
        record = {
            "message_id": self.message_id,
            "raw": self.raw,
            "reason": reason,
            "delivery_count": self.delivery_count,
            "dead_lettered_at": self.queue.clock(),
        }
        settled = await self.queue._settle(self, self.queue.dead_letter_key,
                                           push_value=json.dumps(record))
        if settled:
            logger.warning("job_dead_lettered", message_id=self.message_id, reason=reason)
        return settled


class ClaimCheckQueue:
    def __init__(self, redis_client, name: str, max_delivery_count: int = 10,
                 lock_duration: float = 300.0, clock: Callable[[], float] = time.time):
        self.redis = redis_client
        self.name = name
        self.max_delivery_count = max_delivery_count
        self.lock_duration = lock_duration
        self.clock = clock

    @property
    def ready_key(self) -> str:
        return f"{self.name}:ready"

    @property
    def processing_key(self) -> str:
        return f"{self.name}:processing"

    @property
    def dead_letter_key(self) -> str:
        return f"{self.name}:deadletter"

    @property
    def deliveries_key(self) -> str:
        return f"{self.name}:deliveries"

    @property
    def leases_key(self) -> str:
        return f"{self.name}:leases"

    @property
    def inflight_key(self) -> str:
        return f"{self.name}:inflight"

    @property
    def tokens_key(self) -> str:
        return f"{self.name}:tokens"

    async def publish(self, body: Dict[str, Any]) -> str:
        message_id = str(uuid.uuid4())
        envelope = {"message_id": message_id, "body": body, "enqueued_at": self.clock()}
        await self.redis.rpush(self.ready_key, json.dumps(envelope))
        return message_id

    async def receive(self) -> Optional[Delivery]:
        token = str(uuid.uuid4())
        keys = (self.ready_key, self.processing_key, self.deliveries_key,
                self.inflight_key, self.tokens_key, self.leases_key)
        claimed = await redis_helper.claim_message(
            self.redis, keys, self.clock() + self.lock_duration, token
        )
        if claimed is None:
            return None
        raw, message_id, count = claimed
        return Delivery(self, raw, message_id, self._body(raw), count, token)

    @staticmethod
    def _body(raw: str) -> Any:
        try:
            envelope = json.loads(raw)
        except ValueError:
            return None
        return envelope.get("body") if isinstance(envelope, dict) else None

    def _settle_keys(self, target: str) -> Tuple[str, ...]:
        return (self.processing_key, self.leases_key, self.inflight_key,
                self.tokens_key, self.deliveries_key, target)

    async def _settle(self, delivery: Delivery, target: str, push_value: str = "",
                      forget_count: bool = True) -> bool:
        if delivery.settled:
            raise RuntimeError(f"message {delivery.message_id} already settled")
        delivery.settled = True
        settled = await redis_helper.settle_message(
            self.redis, self._settle_keys(target), delivery.message_id, delivery.token,
            delivery.raw, push_value, forget_count,
        )
        if not settled:
            logger.warning("stale_settle", message_id=delivery.message_id,
                           delivery_count=delivery.delivery_count)
        return settled

    async def reclaim_expired(self, count: int = 100) -> List[str]:
        """Abandon every leased message whose lock ran out."""
        reclaimed = []
        due = await self.redis.zrangebyscore(self.leases_key, "-inf", self.clock(), start=0, num=count)
        for message_id in due:
            raw = await self.redis.hget(self.inflight_key, message_id)
            token = await self.redis.hget(self.tokens_key, message_id)
            if raw is None or token is None:
                continue
            count_raw = await self.redis.hget(self.deliveries_key, message_id)
            delivery = Delivery(self, raw, message_id, None, int(count_raw or 0), token)
            if await delivery.abandon("lease expired"):
                logger.warning("lease_expired", message_id=message_id,
                               delivery_count=delivery.delivery_count)
                reclaimed.append(message_id)
        return reclaimed

    async def dead_letters(self) -> List[Dict[str, Any]]:
        return [json.loads(r) for r in await self.redis.lrange(self.dead_letter_key, 0, -1)]

    async def depth(self) -> int:
        return await self.redis.llen(self.ready_key)
