"""One-time generation tickets.

A ticket is an HS256 JWT ``{sub, jti, exp}``. It is accepted at most once,
and only for the subject it was issued to: the validator records each
accepted ``jti`` in Redis with ``SET NX`` for a little longer than the ticket
itself lives, so the id is remembered for as long as the signature is valid.
"""
import enum
import time
import uuid
from typing import Callable, Optional

import jwt
from redis.exceptions import RedisError

from . import metrics, redis_helper
from .logging_config import get_logger

logger = get_logger(__name__)

ALGORITHM = "HS256"
REPLAY_PREFIX = "ticket:used:"


class TicketVerdict(str, enum.Enum):
    ACCEPTED = "accepted"
    INVALID = "invalid"
    EXPIRED = "expired"
    WRONG_USER = "wrong_user"
    REPLAYED = "replayed"

    @property
    def ok(self) -> bool:
        return self is TicketVerdict.ACCEPTED


class TicketIssuer:
    def __init__(self, secret: str, ttl: int = 60, clock: Callable[[], float] = time.time):
        self.secret = secret
        self.ttl = ttl
        self.clock = clock

    def issue(self, subject: str) -> dict:
        payload = {
            "sub": subject,
            "jti": str(uuid.uuid4()),
            "exp": int(self.clock()) + self.ttl,
        }
        ticket = jwt.encode(payload, self.secret, algorithm=ALGORITHM)
        metrics.tickets_issued_total.inc()
        return {"ticket": ticket, "ttl": self.ttl}


class TicketValidator:
    def __init__(self, redis_client, secret: str, ttl: int = 60, replay_grace: int = 5,
                 clock: Callable[[], float] = time.time):
        self.redis = redis_client
        self.secret = secret
        self.replay_ttl = ttl + replay_grace
        self.clock = clock

    async def validate(self, ticket: Optional[str], expected_subject: str) -> TicketVerdict:
        verdict = await self._check(ticket, expected_subject)
        if not verdict.ok:
            metrics.tickets_rejected_total.labels(reason=verdict.value).inc()
            logger.info("ticket_rejected", reason=verdict.value, user=expected_subject)
        return verdict

    async def _check(self, ticket: Optional[str], expected_subject: str) -> TicketVerdict:
        if not ticket:
            return TicketVerdict.INVALID
        try:
            claims = jwt.decode(
                ticket, self.secret, algorithms=[ALGORITHM],
                options={"require": ["sub", "jti", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            return TicketVerdict.EXPIRED
        except jwt.InvalidTokenError:
            return TicketVerdict.INVALID

        # checked before the replay cache: a consumed ticket past exp reads as expired
        if self.clock() > claims["exp"]:
            return TicketVerdict.EXPIRED
        if claims["sub"] != expected_subject:
            return TicketVerdict.WRONG_USER

        try:
            first_use = await redis_helper.set_if_absent(
                self.redis, REPLAY_PREFIX + str(claims["jti"]), expected_subject, self.replay_ttl
            )
        except RedisError:
            logger.exception("replay_cache_unavailable")
            return TicketVerdict.INVALID
        return TicketVerdict.ACCEPTED if first_use else TicketVerdict.REPLAYED
