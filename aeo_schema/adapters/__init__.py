"""Adapters package initialization."""
from aeo_schema.adapters.browser import BrowserManager
from aeo_schema.adapters.claude_client import ClaudeClient
from aeo_schema.adapters.crawler_access import CrawlerAccessChecker, CrawlerAccessResult
from aeo_schema.adapters.html_extractor import ExtractedContent, HTMLContentExtractor
from aeo_schema.adapters.page_scraper import PageScraper

__all__ = [
    "BrowserManager",
    "ClaudeClient",
    "CrawlerAccessChecker",
    "CrawlerAccessResult",
    "ExtractedContent",
    "HTMLContentExtractor",
    "PageScraper",
]
