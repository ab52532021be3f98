import asyncio
import gzip
import json

import pytest

from pdfjobs.consumer import ABANDONED, COMPLETED, DEAD_LETTERED, JobConsumer
from pdfjobs.queue import ClaimCheckQueue
from pdfjobs.schemas import ClaimCheck


async def publish_job(queue, blob_store, job_id="J1", owner="U1", html="<html>hi</html>"):
    loc = await blob_store.upload("pdfpayloads", f"{job_id}.html.gz", gzip.compress(html.encode()),
                                  content_type="text/html", content_encoding="gzip")
    message = ClaimCheck(job_id=job_id, template="crm-trade-invoice", payload_location=loc,
                         compressed=True, owner_id=owner, file_name="invoice.pdf")
    await queue.publish(message.to_message())


class CountingBlobStore:
    def __init__(self, inner):
        self.inner = inner
        self.calls = 0

    async def download(self, loc):
        self.calls += 1
        return await self.inner.download(loc)

    async def upload(self, *args, **kwargs):
        self.calls += 1
        return await self.inner.upload(*args, **kwargs)


def make_consumer(queue, blob_store, renderer, **kwargs):
    return JobConsumer(queue, blob_store, renderer, "generated-pdfs", **kwargs)


@pytest.mark.asyncio
async def test_process_uploads_pdf_and_acks(queue, blob_store, renderer):
    await publish_job(queue, blob_store)
    consumer = make_consumer(queue, blob_store, renderer)

    outcome = await consumer.process(await queue.receive())

    assert outcome == COMPLETED
    assert renderer.pdf_calls == [("crm-trade-invoice", "<html>hi</html>")]
    assert await blob_store.download("generated-pdfs/J1.pdf") == b"%PDF-1.4\n<html>hi</html>"
    meta = await blob_store.get_metadata("generated-pdfs/J1.pdf")
    assert meta["owner"] == "U1"
    assert meta["filename"] == "invoice.pdf"
    assert meta["downloaded"] == "false"
    assert meta["content_type"] == "application/pdf"
    assert await queue.redis.llen(queue.processing_key) == 0
    assert await queue.depth() == 0


@pytest.mark.asyncio
async def test_uncompressed_payload(queue, blob_store, renderer):
    loc = await blob_store.upload("pdfpayloads", "J2.html", b"<p>plain</p>")
    await queue.publish({"jobId": "J2", "template": "product-de", "payloadLocation": loc,
                         "ownerId": "U1"})
    outcome = await make_consumer(queue, blob_store, renderer).process(await queue.receive())

    assert outcome == COMPLETED
    meta = await blob_store.get_metadata("generated-pdfs/J2.pdf")
    assert meta["filename"] == "product-de.pdf"


@pytest.mark.asyncio
async def test_malformed_message_dead_lettered_without_side_effects(queue, blob_store, renderer):
    await queue.publish({"jobId": "J3", "template": "crm-trade-invoice", "userId": "U1"})
    spy = CountingBlobStore(blob_store)

    outcome = await make_consumer(queue, spy, renderer).process(await queue.receive())

    assert outcome == DEAD_LETTERED
    assert spy.calls == 0
    assert renderer.pdf_calls == []
    dead = await queue.dead_letters()
    assert len(dead) == 1
    assert dead[0]["delivery_count"] == 1
    assert "missing" in dead[0]["reason"]
    assert await queue.depth() == 0


@pytest.mark.asyncio
async def test_non_json_message_dead_lettered(queue, blob_store, renderer):
    await queue.redis.rpush(queue.ready_key, "not json at all")
    outcome = await make_consumer(queue, blob_store, renderer).process(await queue.receive())

    assert outcome == DEAD_LETTERED
    assert (await queue.dead_letters())[0]["raw"] == "not json at all"


@pytest.mark.asyncio
async def test_render_failure_abandons_until_dead_lettered(queue, blob_store, renderer):
    renderer.fail_pdf = True
    await publish_job(queue, blob_store)
    consumer = make_consumer(queue, blob_store, renderer)

    # queue fixture allows three deliveries
    for attempt in (1, 2):
        delivery = await queue.receive()
        assert delivery.delivery_count == attempt
        assert await consumer.process(delivery) == ABANDONED
        assert await queue.depth() == 1

    assert await consumer.process(await queue.receive()) == ABANDONED
    assert await queue.depth() == 0
    dead = await queue.dead_letters()
    assert len(dead) == 1
    assert "chromium crashed" in dead[0]["reason"]
    assert not await blob_store.exists("generated-pdfs/J1.pdf")


@pytest.mark.asyncio
async def test_render_timeout_is_transient(queue, blob_store, renderer):
    renderer.pdf_delay = 5
    await publish_job(queue, blob_store)
    consumer = make_consumer(queue, blob_store, renderer, render_timeout=0.05)

    assert await consumer.process(await queue.receive()) == ABANDONED
    redelivered = await queue.receive()
    assert redelivered.delivery_count == 2


@pytest.mark.asyncio
async def test_missing_payload_is_transient(queue, blob_store, renderer):
    await queue.publish({"jobId": "J4", "template": "crm-trade-invoice",
                         "blobUrl": "pdfpayloads/J4.html.gz", "userId": "U1", "compressed": True})
    assert await make_consumer(queue, blob_store, renderer).process(await queue.receive()) == ABANDONED
    assert renderer.pdf_calls == []
    assert await queue.depth() == 1


@pytest.mark.asyncio
async def test_run_caps_concurrent_renders(queue, blob_store, renderer):
    renderer.pdf_delay = 0.05
    for i in range(6):
        await publish_job(queue, blob_store, job_id=f"J{i}")
    consumer = make_consumer(queue, blob_store, renderer, concurrency=2, poll_seconds=0.01)

    task = asyncio.create_task(consumer.run())
    try:
        for _ in range(200):
            done = [await blob_store.exists(f"generated-pdfs/J{i}.pdf") for i in range(6)]
            if all(done):
                break
            await asyncio.sleep(0.02)
        assert all(done)
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    assert renderer.max_active == 2
    assert consumer._slots._value == 2


@pytest.mark.asyncio
async def test_expired_lease_is_reclaimed(redis_client):
    now = [1000.0]
    queue = ClaimCheckQueue(redis_client, "reclaim", max_delivery_count=2,
                            lock_duration=30, clock=lambda: now[0])
    await queue.publish({"jobId": "J5"})

    first = await queue.receive()
    assert await queue.reclaim_expired() == []
    now[0] += 31
    assert await queue.reclaim_expired() == [first.message_id]
    assert await queue.depth() == 1

    await queue.receive()
    now[0] += 31
    await queue.reclaim_expired()
    dead = await queue.dead_letters()
    assert len(dead) == 1
    assert "lease expired" in dead[0]["reason"]
    assert json.loads(dead[0]["raw"])["body"] == {"jobId": "J5"}


@pytest.mark.asyncio
async def test_receive_and_requeue_do_not_strand_messages(redis_client, monkeypatch):
    now = [1000.0]
    queue = ClaimCheckQueue(redis_client, "atomic", max_delivery_count=5,
                            lock_duration=30, clock=lambda: now[0])
    await queue.publish({"jobId": "J6"})

    async def broken(*args, **kwargs):
        raise RuntimeError("connection dropped")

    # claiming and settling must not depend on separate follow-up commands
    for command in ("hincrby", "hset", "zadd", "rpush", "lrem", "zrem", "hdel"):
        monkeypatch.setattr(redis_client, command, broken, raising=False)

    stuck = await queue.receive()
    assert stuck.delivery_count == 1

    # the worker dies without settling; the lease brings the message back
    now[0] += 10_000
    assert await queue.reclaim_expired() == [stuck.message_id]
    assert await queue.depth() == 1
    assert await redis_client.llen(queue.processing_key) == 0

    again = await queue.receive()
    assert again.delivery_count == 2
    assert await again.abandon("render failed") is True
    assert await queue.depth() == 1
    assert await redis_client.llen(queue.processing_key) == 0


@pytest.mark.asyncio
async def test_late_settle_cannot_release_newer_delivery(redis_client):
    now = [1000.0]
    queue = ClaimCheckQueue(redis_client, "stale", max_delivery_count=5,
                            lock_duration=30, clock=lambda: now[0])
    await queue.publish({"jobId": "J7"})

    slow = await queue.receive()
    now[0] += 31
    assert await queue.reclaim_expired() == [slow.message_id]
    fresh = await queue.receive()
    assert fresh.delivery_count == 2

    assert await slow.ack() is False
    assert await redis_client.llen(queue.processing_key) == 1
    now[0] += 31
    assert await queue.reclaim_expired() == [fresh.message_id]
    assert await queue.depth() == 1

    current = await queue.receive()
    assert await current.ack() is True
    assert await redis_client.llen(queue.processing_key) == 0
    assert await queue.depth() == 0
