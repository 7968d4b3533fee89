"""
Shared headless browser.

One Chromium process is launched lazily and reused for the lifetime of the
server; each request gets its own browser context and page, released by
the ``page()`` context manager whether or not the request succeeds.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional

from playwright.async_api import async_playwright

from aeo_schema.config import config
from aeo_schema.utils.logger import LayerLogger

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)
DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}

BLOCKED_RESOURCE_TYPES = frozenset({"font", "stylesheet"})


class BrowserClosedError(RuntimeError):
    """Raised when a page is requested during or after shutdown."""


async def block_heavy_resources(route: Any) -> None:
    """Route handler aborting resource types that do not affect content."""
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class BrowserManager:
    """
    Process-wide browser handle.

    ``get_browser`` is safe to call concurrently: the first caller launches
    Chromium, the rest wait on the same lock and reuse it.
    """

    def __init__(
        self,
        headless: Optional[bool] = None,
        playwright_factory: Callable[[], Any] = async_playwright,
        drain_timeout: Optional[float] = None,
    ):
        self.headless = config.BROWSER_HEADLESS if headless is None else headless
        self.drain_timeout = config.BROWSER_DRAIN_TIMEOUT if drain_timeout is None else drain_timeout
        self._playwright_factory = playwright_factory
        self._playwright = None
        self._browser = None
        self._lock = asyncio.Lock()
        self._active_pages = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._closing = False
        self.logger = LayerLogger("browser")

    @property
    def active_pages(self) -> int:
        return self._active_pages

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def get_browser(self) -> Any:
        if self._closing:
            raise BrowserClosedError("Browser is shutting down")
        if self._browser is not None:
            return self._browser

        async with self._lock:
            # close() may have started while this caller waited on the lock
            if self._closing:
                raise BrowserClosedError("Browser is shutting down")
            if self._browser is None:
                self.logger.log_action("launch_browser", "started", headless=self.headless)
                self._playwright = await self._playwright_factory().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=LAUNCH_ARGS,
                )
                self.logger.log_action("launch_browser", "completed")
        return self._browser

    @asynccontextmanager
    async def page(
        self,
        user_agent: Optional[str] = None,
        block_resources: bool = True,
    ) -> AsyncIterator[Any]:
        """Fresh isolated page; closed on exit even if the body raises."""
        browser = await self.get_browser()
        self._active_pages += 1
        self._idle.clear()
        context = None
        try:
            context = await browser.new_context(
                user_agent=user_agent or DEFAULT_USER_AGENT,
                viewport=DEFAULT_VIEWPORT,
            )
            page = await context.new_page()
            if block_resources:
                await page.route("**/*", block_heavy_resources)
            yield page
        finally:
            if context is not None:
                try:
                    await context.close()
                except Exception as e:
                    self.logger.log_warning("context close failed", error=str(e))
            self._active_pages -= 1
            if self._active_pages == 0:
                self._idle.set()

    async def close(self) -> None:
        """Stop accepting pages, wait for in-flight ones, then close Chromium."""
        self._closing = True
        if self._active_pages:
            self.logger.log_action("drain_pages", "started", active_pages=self._active_pages)
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=self.drain_timeout)
            except asyncio.TimeoutError:
                self.logger.log_warning(
                    "pages still open at shutdown", active_pages=self._active_pages
                )

        async with self._lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except Exception as e:
                    self.logger.log_warning("browser close failed", error=str(e))
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
        self.logger.log_action("close_browser", "completed")

