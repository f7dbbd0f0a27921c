import asyncio
import unittest
from importlib import util as importlib_util
from typing import Any, Dict, List, Optional
from unittest.mock import patch

from pdf_render_api.config import Settings
from pdf_render_api.errors import RenderFailureError, RenderTimeoutError
from pdf_render_api.options import RenderOptions, RenderSource

PLAYWRIGHT_AVAILABLE = importlib_util.find_spec("playwright") is not None
if PLAYWRIGHT_AVAILABLE:
    from playwright.async_api import Error as PlaywrightError

    from pdf_render_api.rendering import (
        BLOCKED_RESOURCE_TYPES,
        PRINT_STYLESHEET,
        BrowserRenderer,
        _block_heavy_resources,
    )


class FakePage:
    def __init__(self, goto_error: Optional[Exception] = None, pdf_delay: float = 0.0) -> None:
        self.goto_error = goto_error
        self.pdf_delay = pdf_delay
        self.visited: Optional[str] = None
        self.content: Optional[str] = None
        self.media: Optional[str] = None
        self.pdf_kwargs: Dict[str, Any] = {}
        self.default_timeout: Optional[float] = None
        self.style_tags: List[str] = []

    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    async def route(self, pattern: str, handler: Any) -> None:
        self.route_handler = handler

    async def goto(self, url: str, wait_until: Optional[str] = None) -> None:
        if self.goto_error is not None:
            raise self.goto_error
        self.visited = url

    async def set_content(self, html: str, wait_until: Optional[str] = None) -> None:
        self.content = html

    async def add_style_tag(self, content: str) -> None:
        self.style_tags.append(content)

    async def emulate_media(self, media: Optional[str] = None) -> None:
        self.media = media

    async def pdf(self, **kwargs: Any) -> bytes:
        self.pdf_kwargs = kwargs
        if self.pdf_delay:
            await asyncio.sleep(self.pdf_delay)
        return b"%PDF-1.7 rendered"


class FakeBrowser:
    def __init__(self, page: FakePage) -> None:
        self.page = page
        self.closed = False
        self.context_kwargs: Dict[str, Any] = {}

    async def new_context(self, **kwargs: Any) -> "FakeBrowser":
        self.context_kwargs = kwargs
        return self

    async def new_page(self) -> FakePage:
        return self.page

    async def close(self) -> None:
        self.closed = True


class FakeDriver:
    def __init__(self, browser: FakeBrowser) -> None:
        self.browser = browser
        self.chromium = self
        self.launch_kwargs: Dict[str, Any] = {}
        self.stopped = False

    async def launch(self, **kwargs: Any) -> FakeBrowser:
        self.launch_kwargs = kwargs
        return self.browser

    async def __aenter__(self) -> "FakeDriver":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.stopped = True


class RecordingWaiter:
    def __init__(self) -> None:
        self.pages: List[Any] = []

    async def wait_until_ready(self, page: Any) -> list:
        self.pages.append(page)
        return []


@unittest.skipUnless(PLAYWRIGHT_AVAILABLE, "playwright is not installed")
class BrowserRendererTests(unittest.TestCase):
    def render(
        self,
        page: FakePage,
        source: RenderSource,
        settings: Optional[Settings] = None,
        options: Optional[RenderOptions] = None,
    ):
        settings = settings or Settings()
        driver = FakeDriver(FakeBrowser(page))
        waiter = RecordingWaiter()
        renderer = BrowserRenderer(settings, waiter=waiter)  # type: ignore[arg-type]
        options = options or RenderOptions.defaults(settings)
        with patch("pdf_render_api.rendering.async_playwright", return_value=driver):
            try:
                return renderer.render_pdf(source, options), driver, waiter
            finally:
                self.driver = driver

    def test_renders_url_with_fixed_export_options(self) -> None:
        page = FakePage()

        pdf, driver, waiter = self.render(page, RenderSource(url="https://example.com"))

        self.assertEqual(pdf, b"%PDF-1.7 rendered")
        self.assertEqual(page.visited, "https://example.com")
        self.assertEqual(page.media, "screen")
        self.assertEqual(waiter.pages, [page])
        self.assertEqual(
            page.pdf_kwargs,
            {
                "format": "A4",
                "landscape": True,
                "print_background": True,
                "margin": {"top": "10mm", "right": "10mm", "bottom": "10mm", "left": "10mm"},
                "scale": 0.9,
                "prefer_css_page_size": True,
            },
        )
        self.assertTrue(driver.launch_kwargs["headless"])
        self.assertIn("--no-sandbox", driver.launch_kwargs["args"])
        self.assertTrue(driver.browser.closed)
        self.assertTrue(driver.stopped)

    def test_renders_raw_html(self) -> None:
        page = FakePage()

        self.render(page, RenderSource(html="<h1>Hello</h1>"))

        self.assertEqual(page.content, "<h1>Hello</h1>")
        self.assertIsNone(page.visited)

    def test_print_stylesheet_injected_only_when_requested(self) -> None:
        page = FakePage()
        self.render(page, RenderSource(url="https://example.com"))
        self.assertEqual(page.style_tags, [])

        page = FakePage()
        options = RenderOptions(print_stylesheet=True)
        self.render(page, RenderSource(url="https://example.com"), options=options)
        self.assertEqual(page.style_tags, [PRINT_STYLESHEET])

    def test_navigation_failure_closes_browser(self) -> None:
        page = FakePage(goto_error=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))

        with self.assertRaises(RenderFailureError) as ctx:
            self.render(page, RenderSource(url="https://nowhere.invalid"))

        self.assertIn("ERR_NAME_NOT_RESOLVED", ctx.exception.details or "")
        self.assertTrue(self.driver.browser.closed)

    def test_unexpected_exception_still_closes_browser(self) -> None:
        page = FakePage(goto_error=RuntimeError("boom"))

        with self.assertRaises(RuntimeError):
            self.render(page, RenderSource(url="https://example.com"))

        self.assertTrue(self.driver.browser.closed)

    def test_deadline_force_closes_browser(self) -> None:
        page = FakePage(pdf_delay=5.0)
        settings = Settings(render_timeout_ms=50)

        with self.assertRaises(RenderTimeoutError) as ctx:
            self.render(page, RenderSource(url="https://example.com"), settings)

        self.assertEqual(ctx.exception.status, 408)
        self.assertTrue(self.driver.browser.closed)
        self.assertTrue(self.driver.stopped)


@unittest.skipUnless(PLAYWRIGHT_AVAILABLE, "playwright is not installed")
class ResourceBlockingTests(unittest.IsolatedAsyncioTestCase):
    async def test_blocks_media_and_lets_documents_through(self) -> None:
        class FakeRoute:
            def __init__(self, resource_type: str) -> None:
                self.request = type("Request", (), {"resource_type": resource_type})()
                self.outcome = ""

            async def abort(self) -> None:
                self.outcome = "aborted"

            async def continue_(self) -> None:
                self.outcome = "continued"

        for resource_type in sorted(BLOCKED_RESOURCE_TYPES):
            route = FakeRoute(resource_type)
            await _block_heavy_resources(route)
            self.assertEqual(route.outcome, "aborted")

        route = FakeRoute("document")
        await _block_heavy_resources(route)
        self.assertEqual(route.outcome, "continued")


if __name__ == "__main__":
    unittest.main()
