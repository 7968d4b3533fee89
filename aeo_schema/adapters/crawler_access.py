"""
Crawler access check.

Looks for the three common ways a site asks crawlers to stay away: an
X-Robots-Tag response header, a robots.txt Disallow rule for ``User-agent: *``
and robots meta tags. Network failures never block a generation.
"""
import re
from typing import List, Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from aeo_schema.utils.logger import LayerLogger

CHECK_USER_AGENT = "Mozilla/5.0 (compatible; AEOSchemaBot/1.0)"
CHECK_TIMEOUT = 10.0

HEADER_DIRECTIVES = ("noindex", "nofollow", "none", "noarchive")
META_DIRECTIVES = ("noindex", "nofollow", "none")
META_ROBOT_NAMES = ("robots", "googlebot", "bingbot")
GROUP_RULE_FIELDS = ("allow", "disallow", "crawl-delay")


class CrawlerAccessResult(BaseModel):
    """Outcome of a crawler access check."""
    blocked: bool = False
    reasons: List[str] = Field(default_factory=list)

    @property
    def can_proceed(self) -> bool:
        return not self.blocked

    def to_dict(self) -> dict:
        return {"blocked": self.blocked, "reasons": self.reasons, "can_proceed": self.can_proceed}


def _directives(value: str) -> List[str]:
    return [token for token in re.split(r"[\s,]+", value.lower()) if token]


def is_path_disallowed(robots_txt: str, path: str) -> bool:
    """
    True when a group naming ``User-agent: *`` disallows ``path``.

    Consecutive ``User-agent`` lines share one group; a new group starts
    only when a ``User-agent`` line follows a rule line.
    """
    agents: List[str] = []
    seen_rule = False
    for raw_line in robots_txt.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue
        field, _, value = line.partition(":")
        field, value = field.strip().lower(), value.strip()
        if field == "user-agent":
            if seen_rule:
                agents, seen_rule = [], False
            agents.append(value)
        elif field in GROUP_RULE_FIELDS:
            seen_rule = True
            if field == "disallow" and "*" in agents and value:
                if value == "/" or path == value or path.startswith(value):
                    return True
    return False


class CrawlerAccessChecker:
    """Checks whether a URL opts out of crawling."""

    def __init__(self, timeout: float = CHECK_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport
        self.logger = LayerLogger("crawler_access")

    async def check(self, url: str) -> CrawlerAccessResult:
        self.logger.log_action("check_crawler_access", "started", url=url)
        reasons: List[str] = []

        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": CHECK_USER_AGENT},
            transport=self.transport,
        ) as client:
            reasons.extend(await self._check_header(client, url))
            reasons.extend(await self._check_robots_txt(client, url))
            reasons.extend(await self._check_meta_tags(client, url))

        result = CrawlerAccessResult(blocked=bool(reasons), reasons=reasons)
        self.logger.log_action("check_crawler_access", "completed", url=url, blocked=result.blocked, reasons=reasons)
        return result

    async def _check_header(self, client: httpx.AsyncClient, url: str) -> List[str]:
        try:
            response = await client.head(url)
        except httpx.HTTPError as e:
            self.logger.log_fallback("x_robots_tag", "skip", reason=str(e))
            return []

        header = ", ".join(response.headers.get_list("x-robots-tag"))
        directives = _directives(header)
        return [f"X-Robots-Tag header ({d})" for d in HEADER_DIRECTIVES if d in directives]

    async def _check_robots_txt(self, client: httpx.AsyncClient, url: str) -> List[str]:
        parsed = urlparse(url)
        robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"
        try:
            response = await client.get(robots_url)
        except httpx.HTTPError as e:
            self.logger.log_fallback("robots_txt", "skip", reason=str(e))
            return []
        if response.status_code != 200:
            return []

        if is_path_disallowed(response.text, parsed.path or "/"):
            return ["robots.txt restrictions"]
        return []

    async def _check_meta_tags(self, client: httpx.AsyncClient, url: str) -> List[str]:
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.log_fallback("meta_robots", "skip", reason=str(e))
            return []

        soup = BeautifulSoup(response.text, "lxml")
        reasons = []
        for name in META_ROBOT_NAMES:
            tag = soup.find("meta", attrs={"name": name})
            if tag is None:
                continue
            directives = _directives(tag.get("content") or "")
            reasons.extend(f"Meta robots tag ({name}: {d})" for d in META_DIRECTIVES if d in directives)
        return reasons
