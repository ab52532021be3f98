from dataclasses import dataclass
from typing import AsyncIterator

from . import metrics
from .errors import Forbidden, Gone, NotFound
from .logging_config import get_logger
from .storage import BlobStore, location

logger = get_logger(__name__)


@dataclass
class Download:
    artifact_id: str
    filename: str
    body: AsyncIterator[bytes]


class ArtifactGate:
    """Hands a finished PDF to its owner, once."""

    def __init__(self, blob_store: BlobStore, pdf_container: str):
        self.blob_store = blob_store
        self.pdf_container = pdf_container

    async def open(self, artifact_id: str, subject: str) -> Download:
        loc = location(self.pdf_container, f"{artifact_id}.pdf")
        if not await self.blob_store.exists(loc):
            raise NotFound("artifact not found")

        meta = await self.blob_store.get_metadata(loc)
        if meta.get("owner") != subject:
            logger.warning("download_rejected", artifact_id=artifact_id, reason="owner", user=subject)
            raise Forbidden("not the owner of this artifact")
        if meta.get("downloaded") == "true":
            logger.info("download_rejected", artifact_id=artifact_id, reason="downloaded", user=subject)
            raise Gone("artifact already downloaded")

        # flip before streaming so a concurrent duplicate sees it as consumed
        if not await self.blob_store.set_metadata_if(loc, "downloaded", "false", "true"):
            logger.info("download_rejected", artifact_id=artifact_id, reason="race", user=subject)
            raise Gone("artifact already downloaded")

        metrics.artifacts_downloaded_total.inc()
        logger.info("pdf_downloaded", artifact_id=artifact_id, user=subject)
        return Download(
            artifact_id=artifact_id,
            filename=meta.get("filename") or "document.pdf",
            body=self.blob_store.stream(loc),
        )
