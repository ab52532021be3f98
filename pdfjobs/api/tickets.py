from fastapi import APIRouter, Depends

from ..auth import require_subject
from ..deps import get_ticket_issuer
from ..logging_config import get_logger
from ..schemas import TicketResponse
from ..tickets import TicketIssuer

router = APIRouter()
logger = get_logger(__name__)


@router.post("/pdf-tickets", response_model=TicketResponse)
async def create_ticket(subject: str = Depends(require_subject),
                        issuer: TicketIssuer = Depends(get_ticket_issuer)):
    issued = issuer.issue(subject)
    logger.info("pdf_ticket_issued", user=subject)
    return TicketResponse(**issued)
