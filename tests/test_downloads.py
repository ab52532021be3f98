import asyncio

import pytest

from pdfjobs.artifacts import ArtifactGate
from pdfjobs.errors import Gone

PDF = b"%PDF-1.4\nbody"


async def store_artifact(blob_store, artifact_id="J1", owner="U1", downloaded="false"):
    await blob_store.upload("generated-pdfs", f"{artifact_id}.pdf", PDF,
                            content_type="application/pdf",
                            metadata={"owner": owner, "filename": "invoice.pdf",
                                      "downloaded": downloaded})


@pytest.mark.asyncio
async def test_first_fetch_streams_then_gone(client, blob_store):
    await store_artifact(blob_store)

    res = await client.get("/download-pdf/J1", headers={"X-User-Id": "U1"})
    assert res.status_code == 200
    assert res.content == PDF
    assert res.headers["content-type"] == "application/pdf"
    assert res.headers["content-disposition"] == 'attachment; filename="invoice.pdf"'
    meta = await blob_store.get_metadata("generated-pdfs/J1.pdf")
    assert meta["downloaded"] == "true"

    again = await client.get("/download-pdf/J1", headers={"X-User-Id": "U1"})
    assert again.status_code == 410


@pytest.mark.asyncio
async def test_missing_artifact(client):
    res = await client.get("/download-pdf/nope", headers={"X-User-Id": "U1"})
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_non_owner_forbidden_before_download_state(client, blob_store):
    await store_artifact(blob_store, downloaded="true")

    res = await client.get("/download-pdf/J1", headers={"X-User-Id": "U2"})
    assert res.status_code == 403
    res = await client.get("/download-pdf/J1", headers={"X-User-Id": "U1"})
    assert res.status_code == 410


@pytest.mark.asyncio
async def test_non_owner_does_not_consume_download(client, blob_store):
    await store_artifact(blob_store)

    assert (await client.get("/download-pdf/J1", headers={"X-User-Id": "U2"})).status_code == 403
    assert (await client.get("/download-pdf/J1", headers={"X-User-Id": "U1"})).status_code == 200


@pytest.mark.asyncio
async def test_download_requires_identity(client, blob_store):
    await store_artifact(blob_store)
    assert (await client.get("/download-pdf/J1")).status_code == 401


@pytest.mark.asyncio
async def test_concurrent_fetches_yield_one_download(blob_store):
    await store_artifact(blob_store)
    gate = ArtifactGate(blob_store, "generated-pdfs")

    results = await asyncio.gather(*[gate.open("J1", "U1") for _ in range(4)],
                                   return_exceptions=True)
    opened = [r for r in results if not isinstance(r, Exception)]
    assert len(opened) == 1
    assert all(isinstance(r, Gone) for r in results if isinstance(r, Exception))
    chunks = [chunk async for chunk in opened[0].body]
    assert b"".join(chunks) == PDF
