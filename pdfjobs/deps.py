"""FastAPI dependency providers wiring the services to Redis and settings."""
from fastapi import Depends

from . import redis_helper
from .artifacts import ArtifactGate
from .config import Settings, get_settings
from .dedup import RequestDeduplicator
from .queue import ClaimCheckQueue
from .rendering import get_renderer
from .storage import BlobStore
from .submitter import JobSubmitter
from .templates import TemplateRegistry, get_registry
from .tickets import TicketIssuer, TicketValidator


async def get_blob_store() -> BlobStore:
    return BlobStore(await redis_helper.get_redis(), await redis_helper.get_blob_redis())


async def get_queue(settings: Settings = Depends(get_settings)) -> ClaimCheckQueue:
    return ClaimCheckQueue(
        await redis_helper.get_redis(),
        settings.queue_name,
        max_delivery_count=settings.max_delivery_count,
        lock_duration=settings.lock_duration,
    )


def get_ticket_issuer(settings: Settings = Depends(get_settings)) -> TicketIssuer:
    return TicketIssuer(settings.ticket_secret, settings.ticket_ttl)


async def get_ticket_validator(settings: Settings = Depends(get_settings)) -> TicketValidator:
    return TicketValidator(
        await redis_helper.get_redis(),
        settings.ticket_secret,
        ttl=settings.ticket_ttl,
        replay_grace=settings.ticket_replay_grace,
    )


async def get_deduplicator(
    registry: TemplateRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
) -> RequestDeduplicator:
    return RequestDeduplicator(await redis_helper.get_redis(), registry, settings.dedup_window)


def get_submitter(
    renderer=Depends(get_renderer),
    blob_store: BlobStore = Depends(get_blob_store),
    queue: ClaimCheckQueue = Depends(get_queue),
    deduplicator: RequestDeduplicator = Depends(get_deduplicator),
    settings: Settings = Depends(get_settings),
) -> JobSubmitter:
    return JobSubmitter(renderer, blob_store, queue, deduplicator, settings.payload_container)


def get_artifact_gate(
    blob_store: BlobStore = Depends(get_blob_store),
    settings: Settings = Depends(get_settings),
) -> ArtifactGate:
    return ArtifactGate(blob_store, settings.pdf_container)
