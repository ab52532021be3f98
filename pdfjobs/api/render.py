"""Synchronous rendering: the PDF comes back in the response, cached briefly."""
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response

from .. import redis_helper
from ..auth import require_subject
from ..config import Settings, get_settings
from ..errors import RenderError
from ..logging_config import get_logger
from ..rendering import get_renderer
from ..templates import TemplateRegistry, get_registry

router = APIRouter()
logger = get_logger(__name__)

RESULT_CACHE_PREFIX = "pdfcache:"


@router.get("/generate-pdf/{template:path}")
async def generate_pdf(
    template: str,
    request: Request,
    subject: str = Depends(require_subject),
    registry: TemplateRegistry = Depends(get_registry),
    renderer=Depends(get_renderer),
    settings: Settings = Depends(get_settings),
):
    params = dict(request.query_params)
    spec = registry.require(template, params)
    logger.info("pdf_request", template=template, params=params, user=subject)

    key = RESULT_CACHE_PREFIX + "|".join(
        [template, *(params[p] for p in spec.params), params.get("imageUrl", "")]
    )
    cache = await redis_helper.get_blob_redis()
    cached = await cache.get(key)
    if cached:
        return Response(content=cached, media_type="application/pdf")

    try:
        html = await renderer.render_html(template, params)
    except RenderError:
        logger.exception("render_error", template=template)
        raise HTTPException(status_code=500, detail="Template error")
    try:
        pdf_bytes = await renderer.generate_pdf(template, html)
    except RenderError:
        logger.exception("pdf_generation_error", template=template)
        raise HTTPException(status_code=500, detail="PDF generation error")

    await cache.set(key, pdf_bytes, ex=settings.result_cache_ttl)
    return Response(content=pdf_bytes, media_type="application/pdf")
