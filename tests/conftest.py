import asyncio
import os

import pytest
from httpx import ASGITransport, AsyncClient

os.environ["TESTING"] = "1"
os.environ.setdefault("TICKET_SECRET", "test-ticket-secret-0123456789abcdef")

from pdfjobs import redis_helper
from pdfjobs.config import settings
from pdfjobs.errors import RenderError
from pdfjobs.main import app as fastapi_app
from pdfjobs.queue import ClaimCheckQueue
from pdfjobs.rendering import get_renderer
from pdfjobs.storage import BlobStore


class FakeRenderer:
    """Records calls and returns deterministic HTML/PDF bytes."""

    def __init__(self):
        self.html_calls = []
        self.pdf_calls = []
        self.fail_html = False
        self.fail_pdf = False
        self.pdf_delay = 0.0
        self.active = 0
        self.max_active = 0

    async def render_html(self, template, params):
        self.html_calls.append((template, dict(params)))
        if self.fail_html:
            raise RenderError("template script failed")
        return f"<html><body>{template} {sorted(params.items())}</body></html>"

    async def generate_pdf(self, template, html):
        self.pdf_calls.append((template, html))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.pdf_delay:
                await asyncio.sleep(self.pdf_delay)
            if self.fail_pdf:
                raise RenderError("chromium crashed")
            return b"%PDF-1.4\n" + html.encode("utf-8")
        finally:
            self.active -= 1


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def fresh_redis():
    redis_helper.reset_inmemory_client()
    yield
    redis_helper.reset_inmemory_client()


@pytest.fixture
async def redis_client():
    return await redis_helper.get_redis()


@pytest.fixture
async def blob_store(redis_client):
    return BlobStore(redis_client, await redis_helper.get_blob_redis())


@pytest.fixture
def queue(redis_client):
    return ClaimCheckQueue(redis_client, settings.queue_name, max_delivery_count=3)


@pytest.fixture
def renderer():
    fake = FakeRenderer()
    fastapi_app.dependency_overrides[get_renderer] = lambda: fake
    yield fake
    fastapi_app.dependency_overrides.pop(get_renderer, None)


@pytest.fixture
async def client(renderer):
    async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def issue_ticket(client):
    async def _issue(user="U1"):
        res = await client.post("/pdf-tickets", headers={"X-User-Id": user})
        assert res.status_code == 200
        return res.json()["ticket"]
    return _issue
