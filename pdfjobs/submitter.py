import gzip
import time
import uuid

from . import metrics
from .dedup import RequestDeduplicator, RenderRequest
from .errors import QueueUnavailable
from .logging_config import get_logger
from .queue import ClaimCheckQueue
from .schemas import ClaimCheck
from .storage import BlobStore

logger = get_logger(__name__)


class JobSubmitter:
    """Stores the rendered HTML out-of-band and enqueues a claim check for it."""

    def __init__(self, renderer, blob_store: BlobStore, queue: ClaimCheckQueue,
                 deduplicator: RequestDeduplicator, payload_container: str):
        self.renderer = renderer
        self.blob_store = blob_store
        self.queue = queue
        self.deduplicator = deduplicator
        self.payload_container = payload_container

    async def submit(self, request: RenderRequest, owner_id: str) -> str:
        job_id = str(uuid.uuid4())
        start = time.time()
        try:
            html = await self.renderer.render_html(request.template, request.params)
            payload_location = await self.blob_store.upload(
                self.payload_container,
                f"{job_id}.html.gz",
                gzip.compress(html.encode("utf-8")),
                content_type="text/html",
                content_encoding="gzip",
            )
            message = ClaimCheck(
                job_id=job_id,
                template=request.template,
                payload_location=payload_location,
                compressed=True,
                owner_id=owner_id,
                file_name=request.file_name,
            )
            await self.queue.publish(message.to_message())
        except Exception as exc:
            metrics.error_count.inc()
            logger.exception("enqueue_failed", template=request.template, job_id=job_id)
            raise QueueUnavailable("Queue unavailable") from exc
        finally:
            metrics.enqueue_latency_seconds.observe(time.time() - start)

        # only a confirmed enqueue may claim the dedup window
        await self.deduplicator.register(request, job_id)
        metrics.jobs_enqueued_total.inc()
        logger.info("pdf_queued", template=request.template, job_id=job_id, user=owner_id)
        return job_id
