"""Claim-check consumer: turns queued render jobs into stored PDFs.

Each message runs end-to-end in one of ``concurrency`` slots: validate,
fetch and gunzip the HTML payload, rasterize it, upload ``<jobId>.pdf`` with
its download metadata, then acknowledge. A malformed message is dead-lettered
without touching storage or the renderer; every other failure abandons the
message and leaves retries to the queue's delivery count.
"""
import asyncio
import gzip
import time
from typing import Set

from pydantic import ValidationError

from . import metrics
from .errors import MalformedMessage, PayloadMissing, RenderTimeout
from .logging_config import get_logger
from .queue import ClaimCheckQueue, Delivery
from .schemas import ClaimCheck
from .storage import BlobStore

logger = get_logger(__name__)

COMPLETED = "completed"
ABANDONED = "abandoned"
DEAD_LETTERED = "dead_lettered"


def parse_claim_check(body) -> ClaimCheck:
    if not isinstance(body, dict):
        raise MalformedMessage("Invalid message payload - body is not an object")
    try:
        return ClaimCheck.model_validate(body)
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        raise MalformedMessage(
            "Invalid message payload - missing jobId/template/blobUrl/userId",
            {"fields": fields},
        ) from exc


class JobConsumer:
    def __init__(self, queue: ClaimCheckQueue, blob_store: BlobStore, renderer,
                 pdf_container: str, concurrency: int = 3, render_timeout: float = 120.0,
                 poll_seconds: float = 0.5):
        self.queue = queue
        self.blob_store = blob_store
        self.renderer = renderer
        self.pdf_container = pdf_container
        self.concurrency = concurrency
        self.render_timeout = render_timeout
        self.poll_seconds = poll_seconds
        self._slots = asyncio.Semaphore(concurrency)
        self._tasks: Set[asyncio.Task] = set()

    async def process(self, delivery: Delivery) -> str:
        """Handle one delivery and settle it. Returns the outcome name."""
        try:
            message = parse_claim_check(delivery.body)
        except MalformedMessage as exc:
            await delivery.dead_letter(exc.message)
            metrics.jobs_executed_total.labels(outcome=DEAD_LETTERED).inc()
            return DEAD_LETTERED

        start = time.time()
        log = logger.bind(job_id=message.job_id, template=message.template,
                          delivery_count=delivery.delivery_count)
        try:
            html = await self._fetch_html(message)
            pdf_bytes = await self._render(message, html)
            await self.blob_store.upload(
                self.pdf_container,
                f"{message.job_id}.pdf",
                pdf_bytes,
                content_type="application/pdf",
                metadata={
                    "owner": message.owner_id,
                    "filename": message.file_name,
                    "downloaded": "false",
                },
            )
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            log.warning("job_abandoned", reason=reason)
            await delivery.abandon(reason)
            metrics.jobs_executed_total.labels(outcome=ABANDONED).inc()
            return ABANDONED

        await delivery.ack()
        metrics.jobs_executed_total.labels(outcome=COMPLETED).inc()
        metrics.execution_latency_seconds.observe(time.time() - start)
        log.info("job_processed", size=len(pdf_bytes))
        return COMPLETED

    async def _fetch_html(self, message: ClaimCheck) -> str:
        data = await self.blob_store.download(message.payload_location)
        if data is None:
            raise PayloadMissing(f"payload {message.payload_location} not found")
        if message.compressed:
            data = gzip.decompress(data)
        return data.decode("utf-8")

    async def _render(self, message: ClaimCheck, html: str) -> bytes:
        try:
            return await asyncio.wait_for(
                self.renderer.generate_pdf(message.template, html), self.render_timeout
            )
        except asyncio.TimeoutError as exc:
            raise RenderTimeout(f"render timed out after {self.render_timeout}s") from exc

    async def _run_slot(self, delivery: Delivery):
        metrics.active_renders.inc()
        try:
            await self.process(delivery)
        except Exception:
            # settling failed; the lease expiry hands the message back later
            logger.exception("job_settle_failed", message_id=delivery.message_id)
        finally:
            metrics.active_renders.dec()
            self._slots.release()

    async def run(self):
        """Pull claim checks forever, never running more than `concurrency` at once."""
        await self.queue.reclaim_expired()
        logger.info("worker_started", concurrency=self.concurrency)
        try:
            while True:
                await self._slots.acquire()
                try:
                    delivery = await self.queue.receive()
                except Exception:
                    logger.exception("receive_failed")
                    delivery = None
                except BaseException:
                    self._slots.release()
                    raise
                if delivery is None:
                    self._slots.release()
                    await asyncio.sleep(self.poll_seconds)
                    continue
                task = asyncio.create_task(self._run_slot(delivery))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        except asyncio.CancelledError:
            pass
        finally:
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            logger.info("worker_stopped")
