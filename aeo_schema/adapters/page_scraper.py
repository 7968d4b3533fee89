"""
Page scraper for the AEO Schema Generator.
Renders pages in the shared headless browser and hands the resulting HTML
to the content extractor.
"""
import asyncio
import re
from typing import Optional
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError

from aeo_schema.adapters.browser import BrowserClosedError, BrowserManager
from aeo_schema.adapters.content_quality import score_page_content
from aeo_schema.adapters.html_extractor import (
    ExtractedContent,
    HTMLContentExtractor,
    MAIN_CONTENT_SELECTORS,
)
from aeo_schema.adapters.overlays import dismiss_overlays
from aeo_schema.config import config
from aeo_schema.errors import ScrapeError
from aeo_schema.models.content import ContentAnalysis
from aeo_schema.models.schema import GenerationOptions
from aeo_schema.utils.logger import LayerLogger

BODY_WAIT_TIMEOUT_MS = 10000
MAX_SCRAPE_ATTEMPTS = 3
PASS_DELAY_MS = 2000
GOOD_ENOUGH_SCORE = 0.8
GOOD_ENOUGH_LENGTH = 500
MIN_SAMPLE_LENGTH = 200

CONTENT_SAMPLE_SCRIPT = """
([selectors, minLength]) => {
    for (const selector of selectors) {
        for (const el of document.querySelectorAll(selector)) {
            const text = (el.innerText || '').trim();
            if (text.length >= minLength) return text;
        }
    }
    return document.body ? (document.body.innerText || '').trim() : '';
}
"""

BROWSER_ERRORS = (PlaywrightError, asyncio.TimeoutError, BrowserClosedError)


class PageScraper:
    """
    Scraper backed by the shared headless browser.

    Each call gets an isolated page from the browser manager, so concurrent
    requests never share cookies, overlays or navigation state.
    """

    def __init__(
        self,
        browser_manager: BrowserManager,
        extractor: Optional[HTMLContentExtractor] = None,
        timeout_ms: Optional[int] = None,
        validate_timeout_ms: Optional[int] = None,
        settle_delay_ms: Optional[int] = None,
        extraction_timeout: Optional[float] = None,
    ):
        self.browser_manager = browser_manager
        self.extractor = extractor or HTMLContentExtractor()
        self.timeout_ms = timeout_ms if timeout_ms is not None else config.SCRAPE_TIMEOUT_MS
        self.validate_timeout_ms = (
            validate_timeout_ms if validate_timeout_ms is not None else config.VALIDATE_TIMEOUT_MS
        )
        self.settle_delay_ms = settle_delay_ms if settle_delay_ms is not None else config.SETTLE_DELAY_MS
        self.extraction_timeout = (
            extraction_timeout if extraction_timeout is not None else config.EXTRACTION_TIMEOUT
        )
        self.logger = LayerLogger("page_scraper")

    async def scrape_url(self, url: str, options: Optional[GenerationOptions] = None) -> ContentAnalysis:
        """
        Render ``url`` and return its normalized content.

        Raises:
            ScrapeError: navigation failed, timed out, or extraction did not finish.
        """
        if options is not None and options.multi_attempt:
            return await self.scrape_url_multi_attempt(url)

        self.logger.log_action("scrape_url", "started", url=url)
        try:
            async with self.browser_manager.page() as page:
                await self._open(page, url)
                await dismiss_overlays(page, 1)
                html = await page.content()
        except BROWSER_ERRORS as e:
            self.logger.log_error(str(e), error_type=type(e).__name__, url=url)
            raise ScrapeError(f"Failed to scrape URL: {e}", url=url) from e

        analysis = await self._analyze(html, url)
        self.logger.log_action(
            "scrape_url", "completed",
            url=url, word_count=analysis.metadata.word_count, content_length=len(analysis.content),
        )
        return analysis

    async def scrape_url_multi_attempt(self, url: str, max_attempts: int = MAX_SCRAPE_ATTEMPTS) -> ContentAnalysis:
        """
        Scrape with repeated overlay dismissal, keeping the best-scoring sample.

        Useful for pages whose consent walls or lazy content only clear after
        a few seconds.
        """
        self.logger.log_action("scrape_url_multi_attempt", "started", url=url, max_attempts=max_attempts)
        best_content, best_score = "", -1.0
        try:
            async with self.browser_manager.page() as page:
                await self._open(page, url)
                await dismiss_overlays(page, 1)

                for attempt in range(1, max_attempts + 1):
                    await dismiss_overlays(page, attempt)
                    sample = await self.extract_content_sample(page)
                    score = await score_page_content(sample, page)
                    self.logger.log_action(
                        "scrape_pass", "completed",
                        attempt=attempt, score=round(score, 3), content_length=len(sample),
                    )
                    if score > best_score:
                        best_content, best_score = sample, score
                    if score >= GOOD_ENOUGH_SCORE and len(sample) > GOOD_ENOUGH_LENGTH:
                        self.logger.log_decision("stop_attempts", "content good enough", attempt=attempt)
                        break
                    if attempt < max_attempts:
                        await page.wait_for_timeout(PASS_DELAY_MS * attempt)

                html = await page.content()
        except BROWSER_ERRORS as e:
            self.logger.log_error(str(e), error_type=type(e).__name__, url=url)
            raise ScrapeError(f"Failed to scrape URL: {e}", url=url) from e

        analysis = await self._analyze(html, url, content=best_content or None)
        self.logger.log_action(
            "scrape_url_multi_attempt", "completed",
            url=url, best_score=round(max(best_score, 0.0), 3), word_count=analysis.metadata.word_count,
        )
        return analysis

    async def extract_content_sample(self, page) -> str:
        """Text of the first content region with enough text, else the whole body."""
        text = await page.evaluate(CONTENT_SAMPLE_SCRIPT, [list(MAIN_CONTENT_SELECTORS), MIN_SAMPLE_LENGTH])
        return re.sub(r"[ \t]+", " ", text or "").strip()

    async def validate_url(self, url: str) -> bool:
        """True when ``url`` is http(s) and answers with a 2xx/3xx status."""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            self.logger.log_decision("validate_url", "rejected malformed url", url=url)
            return False

        try:
            async with self.browser_manager.page() as page:
                response = await page.goto(url, wait_until="domcontentloaded", timeout=self.validate_timeout_ms)
                status = response.status if response is not None else None
        except BROWSER_ERRORS as e:
            self.logger.log_action("validate_url", "failed", url=url, error=str(e))
            return False

        reachable = status is not None and 200 <= status < 400
        self.logger.log_action("validate_url", "completed", url=url, status=status, reachable=reachable)
        return reachable

    async def _open(self, page, url: str) -> None:
        await page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
        await page.wait_for_selector("body", timeout=BODY_WAIT_TIMEOUT_MS)
        await page.wait_for_timeout(self.settle_delay_ms)

    async def _analyze(self, html: str, url: str, content: Optional[str] = None) -> ContentAnalysis:
        """Extract ``html`` into a ``ContentAnalysis``; any extraction failure is a ``ScrapeError``."""
        try:
            extracted = await self._extract(html, url)
            return self._to_analysis(extracted, content=content)
        except ScrapeError:
            raise
        except asyncio.TimeoutError as e:
            self.logger.log_error("content extraction timed out", error_type="TimeoutError", url=url)
            raise ScrapeError("Failed to scrape URL: content extraction timed out", url=url) from e
        except Exception as e:
            self.logger.log_error(str(e), error_type=type(e).__name__, url=url, stage="extraction")
            raise ScrapeError(f"Failed to scrape URL: {e}", url=url) from e

    async def _extract(self, html: str, url: str) -> ExtractedContent:
        return await asyncio.wait_for(
            asyncio.to_thread(self.extractor.process_html, html, url),
            timeout=self.extraction_timeout,
        )

    def _to_analysis(self, extracted: ExtractedContent, content: Optional[str] = None) -> ContentAnalysis:
        return ContentAnalysis(
            url=extracted.url,
            title=extracted.title,
            description=extracted.description,
            content=extracted.clean_text if content is None else content,
            metadata=extracted.metadata,
        )
