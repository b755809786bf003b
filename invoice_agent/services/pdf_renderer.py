"""
HTML -> PDF rendering on a shared headless Chromium.

The browser is launched lazily by the first render; concurrent first callers
wait on the same launch instead of starting duplicates. Each render gets its
own browser context, closed on every exit path. shutdown() is called from
the application lifespan rather than relying on process exit.
"""

import asyncio
from contextlib import asynccontextmanager

from loguru import logger
from playwright.async_api import Browser, Page, Playwright, async_playwright

PDF_OPTIONS = {
    "format": "A4",
    "print_background": True,
    "margin": {"top": "20px", "bottom": "20px", "left": "20px", "right": "20px"},
}


class PdfRenderer:
    def __init__(self, launch_args: list[str] | None = None):
        self.launch_args = launch_args or ["--no-sandbox", "--disable-setuid-sandbox"]
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()
        self.active_renders = 0

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def _get_browser(self) -> Browser:
        if self._browser is not None:
            return self._browser
        async with self._lock:
            if self._browser is None:
                logger.info("Launching headless Chromium for PDF rendering")
                self._playwright = await async_playwright().start()
                try:
                    self._browser = await self._playwright.chromium.launch(headless=True, args=self.launch_args)
                except Exception:
                    logger.exception("Chromium launch failed")
                    await self._playwright.stop()
                    self._playwright = None
                    raise
        return self._browser

    @asynccontextmanager
    async def page(self):
        """Scoped page in a fresh browser context; always released"""
        browser = await self._get_browser()
        context = await browser.new_context()
        self.active_renders += 1
        try:
            page: Page = await context.new_page()
            yield page
        finally:
            self.active_renders -= 1
            await context.close()

    async def render_html(self, html: str, pdf_options: dict | None = None) -> bytes:
        async with self.page() as page:
            await page.set_content(html, wait_until="networkidle")
            return await page.pdf(**(pdf_options or PDF_OPTIONS))

    async def shutdown(self) -> None:
        async with self._lock:
            if self._browser is not None:
                if self.active_renders:
                    logger.warning("Closing browser with renders in flight", active=self.active_renders)
                await self._browser.close()
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        logger.info("PDF renderer shut down")


# Process-wide instance, closed by the FastAPI lifespan
pdf_renderer = PdfRenderer()
