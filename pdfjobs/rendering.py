"""Default rendering collaborator.

HTML comes from the template's script (``<scripts_dir>/<script> --<param>
<value> ...`` writing HTML to stdout); PDFs come from headless Chromium via
Playwright. Both steps raise RenderError so callers can treat any rendering
problem as transient.
"""
import asyncio
import sys
from pathlib import Path
from typing import Mapping

from .config import settings
from .errors import RenderError
from .logging_config import get_logger
from .templates import TemplateRegistry, get_registry

logger = get_logger(__name__)


class TemplateRenderer:
    def __init__(self, registry: TemplateRegistry, scripts_dir: Path, headless: bool = True):
        self.registry = registry
        self.scripts_dir = Path(scripts_dir)
        self.headless = headless

    async def render_html(self, template: str, params: Mapping[str, str]) -> str:
        spec = self.registry.get(template)
        args = [sys.executable, str(self.scripts_dir / spec.script)]
        for name, value in params.items():
            args += [f"--{name}", str(value)]

        proc = await asyncio.create_subprocess_exec(
            *args, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            logger.error("template_script_failed", template=template,
                         returncode=proc.returncode, stderr=stderr.decode("utf-8", "replace")[-2000:])
            raise RenderError(f"template script for {template} exited with {proc.returncode}")
        return stdout.decode("utf-8")

    async def generate_pdf(self, template: str, html: str) -> bytes:
        # Import here to avoid loading Playwright in processes that never rasterize
        from playwright.async_api import async_playwright

        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(
                    headless=self.headless, args=["--no-sandbox", "--disable-setuid-sandbox"]
                )
                try:
                    page = await browser.new_page()
                    await page.set_content(html, wait_until="networkidle")
                    pdf_bytes = await page.pdf(
                        format="A4", print_background=False, prefer_css_page_size=True
                    )
                finally:
                    await browser.close()
        except Exception as exc:
            raise RenderError(f"PDF generation failed for {template}: {exc}") from exc
        return pdf_bytes


def get_renderer() -> TemplateRenderer:
    return TemplateRenderer(get_registry(), settings.scripts_dir, settings.playwright_headless)
