from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi.responses import Response

# Keep metrics module-level singletons
tickets_issued_total = Counter("tickets_issued_total", "One-time tickets issued")
tickets_rejected_total = Counter("tickets_rejected_total", "Tickets rejected", ["reason"])
jobs_submitted_total = Counter("jobs_submitted_total", "Render requests accepted via API")
jobs_deduplicated_total = Counter("jobs_deduplicated_total", "Render requests collapsed onto a queued job")
jobs_enqueued_total = Counter("jobs_enqueued_total", "Claim checks published to the queue")
error_count = Counter("error_count", "Total errors encountered by the API")
enqueue_latency_seconds = Histogram("enqueue_latency_seconds", "Time to store a payload and enqueue its claim check")
request_latency_seconds = Histogram("request_latency_seconds", "HTTP request latency seconds")

# Worker / execution metrics
jobs_executed_total = Counter("jobs_executed_total", "Claim checks settled by workers", ["outcome"])
execution_latency_seconds = Histogram("execution_latency_seconds", "Job execution latency seconds")
active_renders = Gauge("active_renders", "Render slots currently in use")

# Downloads
artifacts_downloaded_total = Counter("artifacts_downloaded_total", "PDFs streamed to their owner")


def metrics_response():
    payload = generate_latest()
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
