from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ..artifacts import ArtifactGate
from ..auth import require_subject
from ..deps import get_artifact_gate

router = APIRouter()


@router.get("/download-pdf/{artifact_id}")
async def download_pdf(artifact_id: str,
                       subject: str = Depends(require_subject),
                       gate: ArtifactGate = Depends(get_artifact_gate)):
    download = await gate.open(artifact_id, subject)
    return StreamingResponse(
        download.body,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{download.filename}"'},
    )
