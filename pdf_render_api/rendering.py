"""Headless Chromium rendering of URLs and HTML into PDF bytes."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from .config import Settings
from .errors import RenderFailureError, RenderTimeoutError
from .options import RenderOptions, RenderSource
from .readiness import ReadinessWaiter

logger = logging.getLogger(__name__)

BLOCKED_RESOURCE_TYPES = frozenset({"media", "websocket", "manifest"})

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--font-render-hinting=none",
]
DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

PRINT_STYLESHEET = """
@media print {
    html, body {
        margin: 0 auto !important;
        -webkit-print-color-adjust: exact !important;
        print-color-adjust: exact !important;
    }
    .container, .container-fluid { max-width: 100% !important; }
    .row { display: flex !important; flex-wrap: wrap !important; }
    .col, [class*="col-"] { flex: 1 0 0 !important; max-width: 50% !important; }
}
"""


class BrowserRenderer:
    """One Chromium instance per render, closed on every exit path."""

    def __init__(self, settings: Settings, waiter: Optional[ReadinessWaiter] = None) -> None:
        self.settings = settings
        self.waiter = waiter or ReadinessWaiter(settings.readiness)

    def render_pdf(self, source: RenderSource, options: RenderOptions) -> bytes:
        return asyncio.run(self.render_with_deadline(source, options))

    async def render_with_deadline(self, source: RenderSource, options: RenderOptions) -> bytes:
        timeout = self.settings.render_timeout
        try:
            return await asyncio.wait_for(self.render(source, options), timeout)
        except asyncio.TimeoutError as exc:
            raise RenderTimeoutError(
                "PDF generation timed out.",
                details=f"Render exceeded timeout of {self.settings.render_timeout_ms} ms.",
            ) from exc
        except PlaywrightError as exc:
            raise RenderFailureError("Failed to generate PDF.", details=exc.message) from exc

    async def render(self, source: RenderSource, options: RenderOptions) -> bytes:
        started = time.monotonic()
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=True, args=CHROMIUM_ARGS)
            try:
                context = await browser.new_context(
                    viewport={"width": options.viewport.width, "height": options.viewport.height},
                    device_scale_factor=options.viewport.device_scale_factor,
                    user_agent=DESKTOP_USER_AGENT,
                )
                page = await context.new_page()
                page.set_default_timeout(self.settings.navigation_timeout_ms)
                await page.route("**/*", _block_heavy_resources)

                if source.url is not None:
                    logger.info("Navigating to %s", source.url)
                    await page.goto(source.url, wait_until="networkidle")
                else:
                    await page.set_content(source.html or "", wait_until="networkidle")

                await page.emulate_media(media=options.emulate_media)
                if options.print_stylesheet:
                    await page.add_style_tag(content=PRINT_STYLESHEET)
                await self.waiter.wait_until_ready(page)
                pdf = await page.pdf(**options.pdf_kwargs())
            finally:
                await browser.close()

        logger.info("Rendered %s in %.2fs (%d bytes)", source.describe(), time.monotonic() - started, len(pdf))
        return pdf


async def _block_heavy_resources(route: Any) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()
