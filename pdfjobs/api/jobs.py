from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, Request

from .. import metrics
from ..auth import require_subject
from ..dedup import RequestDeduplicator
from ..deps import get_deduplicator, get_submitter, get_ticket_validator
from ..errors import TicketRejected
from ..logging_config import bind_request_context, get_logger
from ..schemas import QueuedResponse
from ..submitter import JobSubmitter
from ..tickets import TicketValidator

router = APIRouter()
logger = get_logger(__name__)


def merge_params(query: Dict[str, str], body: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Query string first, JSON body on top; the ticket itself is not a render parameter."""
    params = dict(query)
    for key, value in (body or {}).items():
        if key == "ticket" or value is None:
            continue
        params[key] = str(value)
    return params


@router.post("/request-pdf/{template:path}", status_code=202, response_model=QueuedResponse)
async def request_pdf(
    template: str,
    request: Request,
    body: Optional[Dict[str, Any]] = Body(default=None),
    x_pdf_ticket: Optional[str] = Header(default=None, alias="X-PDF-Ticket"),
    subject: str = Depends(require_subject),
    validator: TicketValidator = Depends(get_ticket_validator),
    deduplicator: RequestDeduplicator = Depends(get_deduplicator),
    submitter: JobSubmitter = Depends(get_submitter),
):
    bind_request_context(user=subject, template=template)
    ticket = x_pdf_ticket or (body or {}).get("ticket")
    verdict = await validator.validate(ticket, subject)
    if not verdict.ok:
        raise TicketRejected(verdict.value)

    render_request = deduplicator.resolve(template, merge_params(dict(request.query_params), body))
    existing = await deduplicator.lookup(render_request)
    if existing:
        metrics.jobs_deduplicated_total.inc()
        logger.info("pdf_reused", job_id=existing)
        return QueuedResponse(job_id=existing)

    job_id = await submitter.submit(render_request, subject)
    metrics.jobs_submitted_total.inc()
    return QueuedResponse(job_id=job_id)
