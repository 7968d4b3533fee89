"""
HTML content extractor for the AEO Schema Generator.
Turns the rendered HTML of a page into metadata plus a compact, structured
text representation suitable for the schema generation prompt.
"""
import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup, Tag

from aeo_schema.models.content import (
    AlternateLanguage,
    AuthorInfo,
    BreadcrumbItem,
    BusinessInfo,
    ContentType,
    FAQItem,
    MAX_LIST_ITEMS,
    PageMetadata,
    count_words,
)
from aeo_schema.utils.logger import LayerLogger

MAX_CLEAN_TEXT_LENGTH = 6000
MIN_PARAGRAPH_LENGTH = 20
MAX_FAQ_ITEMS = 10
MAX_SOCIAL_URLS = 5
SHORT_CONTENT_WORDS = 300

# (selector, attribute); attribute None means element text
AUTHOR_SOURCES: Sequence[Tuple[str, Optional[str]]] = (
    ('meta[name="author"]', "content"),
    ('meta[property="article:author"]', "content"),
    ('[rel="author"]', None),
    (".author-name, .author .name, .byline .name", None),
    (".blog-author__name, .hs-author-name", None),
    ('[class*="author-name"]', None),
    (".author, .by-author, .byline", None),
    ('[itemprop="author"] [itemprop="name"]', None),
    ('[itemprop="author"]', "content"),
    ('[itemprop="author"]', None),
)

PUBLISHED_DATE_SOURCES: Sequence[Tuple[str, str]] = (
    ('meta[property="article:published_time"]', "content"),
    ('meta[name="date"]', "content"),
    ('meta[name="publish_date"]', "content"),
    ('meta[name="publishdate"]', "content"),
    ('time[itemprop="datePublished"]', "datetime"),
    ('[itemprop="datePublished"]', "content"),
    ('[itemprop="datePublished"]', "datetime"),
    ("time[datetime]", "datetime"),
)

MODIFIED_DATE_SOURCES: Sequence[Tuple[str, str]] = (
    ('meta[property="article:modified_time"]', "content"),
    ('meta[name="last-modified"]', "content"),
    ('time[itemprop="dateModified"]', "datetime"),
    ('[itemprop="dateModified"]', "content"),
    ('[itemprop="dateModified"]', "datetime"),
)

VISIBLE_DATE_SELECTORS = (
    ".blog-post__date",
    ".post-date",
    '[class*="publish"]',
    '[class*="date"]',
    "time",
)

VISIBLE_DATE_PATTERN = re.compile(
    r"(?:January|February|March|April|May|June|July|August|September|October|November|December)"
    r"\s+\d{1,2},\s+\d{4}"
    r"|(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\s+\d{1,2},\s+\d{4}"
    r"|\d{4}-\d{2}-\d{2}"
)
VISIBLE_DATE_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%Y-%m-%d")

SECTION_HEADING_SELECTORS = (
    "main h2",
    "article h2",
    ".content h2",
    ".post-content h2",
    ".entry-content h2",
    ".article-content h2",
    ".post-body h2",
    ".blog-post h2",
    "body h2",
)

MAIN_CONTENT_SELECTORS = (
    "main",
    "article",
    '[role="main"]',
    ".post-body",
    ".blog-post",
    ".content",
    ".main-content",
    ".post-content",
    ".entry-content",
    ".article-content",
    ".article-body",
    "#content",
    "#main",
)

NON_CONTENT_SELECTORS = (
    "script", "style", "noscript", "iframe", "embed", "object",
    "nav", "footer", "aside",
    ".sidebar", ".menu", ".navigation", ".nav",
    ".ads", ".advertisement", ".ad-banner",
    ".social-share", ".share-buttons",
    ".comments", ".comment-section",
    ".popup", ".modal", ".overlay",
    ".cookie-banner", ".consent-banner",
    ".newsletter-signup", ".subscription",
    ".related-posts", ".recommended",
    ".tags-section",
    "#sidebar", "#menu", "#navigation", "#ads", "#comments", "#popup",
    '[class*="advertisement"]',
    '[class*="sidebar"]:not([class*="author"])',
    '[class*="popup"]', '[class*="modal"]', '[class*="overlay"]',
    '[class*="cookie"]', '[id*="cookie"]',
)

# (path fragments, content type), first match wins
CONTENT_TYPE_RULES: Sequence[Tuple[Tuple[str, ...], ContentType]] = (
    (("/product/", "/shop/"), ContentType.PRODUCT),
    (("/blog/", "/post/"), ContentType.BLOG),
    (("/news/",), ContentType.NEWS),
    (("/about",), ContentType.ABOUT),
    (("/contact",), ContentType.CONTACT),
)

SOCIAL_DOMAINS = (
    "facebook.com",
    "twitter.com",
    "x.com",
    "linkedin.com",
    "instagram.com",
    "youtube.com",
)

TRACKING_PARAM_PREFIXES = ("utm_", "fbclid", "gclid", "ref", "source", "campaign")

AUTHOR_PREFIX = re.compile(r"^(by|posted by|written by|author:|from)\s+", re.IGNORECASE)
MONTH_WORD = re.compile(
    r"\b(january|february|march|april|may|june|july|august|september|october|november|december"
    r"|jan|feb|mar|apr|jun|jul|aug|sep|sept|oct|nov|dec)\b"
)
AUTHOR_UI_JUNK = (
    "share", "follow", "subscribe", "comment", "read more", "click",
    "twitter", "facebook", "linkedin", "instagram", "min read", "likes", "views",
)
AUTHOR_VERBS = ("written", "posted", "published", "updated", "edited", "reviewed", "contributed")


def collapse_whitespace(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def classify_content_type(url: str) -> ContentType:
    """Classify a page from its URL path."""
    path = urlparse(url).path.lower()
    for fragments, content_type in CONTENT_TYPE_RULES:
        if any(fragment in path for fragment in fragments):
            return content_type
    if path in ("", "/"):
        return ContentType.HOME
    return ContentType.ARTICLE


def strip_tracking_params(url: str) -> str:
    """Drop the fragment and common tracking query parameters."""
    parsed = urlparse(url)
    query = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not key.lower().startswith(TRACKING_PARAM_PREFIXES)
    ]
    return urlunparse(parsed._replace(query=urlencode(query), fragment=""))


def sanitize_author_name(raw: Optional[str]) -> Optional[str]:
    """Return a plausible personal/organization name or None."""
    if not raw:
        return None

    clean = AUTHOR_PREFIX.sub("", collapse_whitespace(raw))
    clean = re.split(r"\s+\|\s*|\s+-\s+", clean)[0].strip()

    if not 2 <= len(clean) <= 80:
        return None
    if re.search(r"https?://", clean, re.IGNORECASE):
        return None
    if "@" in clean and "." in clean:
        return None

    lower = clean.lower()
    if any(verb in lower for verb in AUTHOR_VERBS):
        return None
    if any(junk in lower for junk in AUTHOR_UI_JUNK):
        return None
    if re.search(r"\b\d{4}\b|\b\d{1,2}/\d{1,2}\b", lower) or MONTH_WORD.search(lower):
        return None
    if len(re.findall(r"[.,;:!?(){}\[\]|·]", clean)) > 2:
        return None
    if re.match(r"^[\d\s]+$", clean):
        return None

    return clean


def flatten_jsonld(data: Any) -> List[Dict[str, Any]]:
    """Collect every typed node, following @graph containers and arrays."""
    nodes: List[Dict[str, Any]] = []
    if isinstance(data, dict):
        for item in data.get("@graph", []) or []:
            nodes.extend(flatten_jsonld(item))
        if "@type" in data:
            nodes.append(data)
    elif isinstance(data, list):
        for item in data:
            nodes.extend(flatten_jsonld(item))
    return nodes


def _node_has_type(node: Dict[str, Any], type_name: str) -> bool:
    node_type = node.get("@type")
    if isinstance(node_type, list):
        return type_name in node_type
    return node_type == type_name


@dataclass
class ContentNode:
    """One block of main content in document order."""
    type: str  # heading | paragraph | list | quote | image | table
    content: str
    level: Optional[int] = None
    items: List[str] = field(default_factory=list)

    def render(self) -> str:
        if self.type == "heading":
            return f"{'#' * (self.level or 1)} {self.content}"
        if self.type == "paragraph":
            return f"P: {self.content}"
        if self.type == "list":
            lines = [f"LIST: {self.content}"] + [f"  - {item}" for item in self.items]
            return "\n".join(lines)
        if self.type == "quote":
            return f"QUOTE: {self.content}"
        if self.type == "image":
            return f"IMAGE: {self.content}"
        if self.type == "table":
            lines = [f"TABLE: {self.content}"] + [f"  | {row} |" for row in self.items]
            return "\n".join(lines)
        return self.content


@dataclass
class ExtractedContent:
    """Output of the HTML cleaning stage."""
    url: str
    title: str
    description: str
    clean_text: str
    hierarchy: List[ContentNode]
    metadata: PageMetadata
    original_length: int = 0

    @property
    def processed_length(self) -> int:
        return len(self.clean_text)

    @property
    def token_estimate(self) -> int:
        return -(-self.processed_length // 4)


class HTMLContentExtractor:
    """
    Extracts metadata and structured main content from rendered HTML.

    Metadata is read before any cleaning so that bylines, dates and embedded
    JSON-LD in headers or sidebars are not lost.
    """

    def __init__(self, max_text_length: int = MAX_CLEAN_TEXT_LENGTH):
        self.max_text_length = max_text_length
        self.logger = LayerLogger("html_extractor")

    def process_html(self, html: str, url: str) -> ExtractedContent:
        self.logger.log_action("process_html", "started", url=url, html_length=len(html or ""))

        soup = BeautifulSoup(html or "", "lxml")
        jsonld_raw = self._extract_existing_jsonld(soup)
        jsonld_nodes = flatten_jsonld(jsonld_raw)

        title = self._extract_title(soup)
        description = self._extract_description(soup)
        metadata = self._extract_metadata(soup, url, jsonld_raw, jsonld_nodes)

        self._remove_non_content(soup)
        hierarchy = self._build_hierarchy(soup)
        hierarchy = self._truncate(hierarchy)
        clean_text = "\n\n".join(node.render() for node in hierarchy)

        metadata.word_count = count_words(clean_text)
        metadata.content_quality_suggestions = self._suggestions(hierarchy, metadata)

        extracted = ExtractedContent(
            url=url,
            title=title,
            description=description,
            clean_text=clean_text,
            hierarchy=hierarchy,
            metadata=metadata,
            original_length=len(html or ""),
        )

        present = [name for name, value in (
            ("title", title),
            ("description", description),
            ("author", metadata.author),
            ("publish_date", metadata.publish_date),
            ("images", metadata.images),
            ("keywords", metadata.keywords),
            ("existing_json_ld", metadata.existing_json_ld),
        ) if value]
        missing = [name for name in (
            "title", "description", "author", "publish_date", "images", "keywords", "existing_json_ld",
        ) if name not in present]
        self.logger.log_extraction(
            url=url,
            fields_present=present,
            fields_missing=missing,
            word_count=metadata.word_count,
            content_type=metadata.content_type.value,
            processed_length=extracted.processed_length,
            token_estimate=extracted.token_estimate,
        )
        return extracted

    # Metadata

    def _meta(self, soup: BeautifulSoup, selector: str, attribute: Optional[str] = None) -> Optional[str]:
        element = soup.select_one(selector)
        if element is None:
            return None
        value = element.get(attribute) if attribute else element.get_text(" ", strip=True)
        if isinstance(value, list):
            value = " ".join(value)
        value = collapse_whitespace(value)
        return value or None

    def _first(self, soup: BeautifulSoup, sources: Sequence[Tuple[str, Optional[str]]]) -> Optional[str]:
        for selector, attribute in sources:
            value = self._meta(soup, selector, attribute)
            if value:
                return value
        return None

    def _extract_title(self, soup: BeautifulSoup) -> str:
        return self._first(soup, (
            ('meta[property="og:title"]', "content"),
            ("title", None),
            ('meta[name="twitter:title"]', "content"),
            ("h1", None),
        )) or ""

    def _extract_description(self, soup: BeautifulSoup) -> str:
        return self._first(soup, (
            ('meta[name="description"]', "content"),
            ('meta[property="og:description"]', "content"),
            ('meta[name="twitter:description"]', "content"),
        )) or ""

    def _extract_metadata(
        self,
        soup: BeautifulSoup,
        url: str,
        jsonld_raw: List[Dict[str, Any]],
        jsonld_nodes: List[Dict[str, Any]],
    ) -> PageMetadata:
        publish_date = self._first(soup, PUBLISHED_DATE_SOURCES)
        modified_date = self._first(soup, MODIFIED_DATE_SOURCES)
        for node in jsonld_nodes:
            if not publish_date and isinstance(node.get("datePublished"), str):
                publish_date = node["datePublished"]
            if not modified_date and isinstance(node.get("dateModified"), str):
                modified_date = node["dateModified"]
        if not publish_date:
            publish_date = self._extract_visible_date(soup)
            if publish_date:
                self.logger.log_fallback("meta_dates", "visible_text", reason="no date metadata", date=publish_date)

        article_sections = self._extract_article_sections(soup)
        featured_image, images = self._extract_images(soup, url)

        return PageMetadata(
            author=self._extract_author(soup, url, jsonld_nodes),
            publish_date=publish_date,
            modified_date=modified_date,
            content_type=classify_content_type(url),
            canonical_url=self._extract_canonical_url(soup, url),
            language=self._extract_language(soup),
            images=images,
            featured_image=featured_image,
            keywords=self._extract_keywords(soup),
            tags=self._extract_tags(soup),
            article_section=(
                self._meta(soup, 'meta[property="article:section"]', "content")
                or self._meta(soup, '[itemprop="articleSection"]')
                or (article_sections[0] if article_sections else None)
            ),
            article_sections=article_sections,
            business_info=self._extract_business_info(soup, url),
            faq_content=self._extract_faq(soup, jsonld_nodes),
            social_urls=self._extract_social_urls(soup),
            existing_json_ld=jsonld_raw,
            alternate_languages=self._extract_alternate_languages(soup, url),
            breadcrumbs=self._extract_breadcrumbs(soup, url, jsonld_nodes),
        )

    def _extract_author(
        self,
        soup: BeautifulSoup,
        url: str,
        jsonld_nodes: List[Dict[str, Any]],
    ) -> Optional[AuthorInfo]:
        name = None
        for selector, attribute in AUTHOR_SOURCES:
            name = sanitize_author_name(self._meta(soup, selector, attribute))
            if name:
                break

        if not name:
            for node in jsonld_nodes:
                author = node.get("author")
                if isinstance(author, list) and author:
                    author = author[0]
                if isinstance(author, dict):
                    author = author.get("name")
                name = sanitize_author_name(author if isinstance(author, str) else None)
                if name:
                    self.logger.log_fallback("dom_byline", "jsonld", reason="no byline in markup")
                    break

        if not name:
            return None

        author_url = (
            self._meta(soup, 'a[rel="author"]', "href")
            or self._meta(soup, '[itemprop="author"] [itemprop="url"]', "href")
        )
        return AuthorInfo(
            name=name,
            url=urljoin(url, author_url) if author_url else None,
            job_title=self._meta(soup, '[itemprop="jobTitle"]'),
        )

    def _extract_visible_date(self, soup: BeautifulSoup) -> Optional[str]:
        for selector in VISIBLE_DATE_SELECTORS:
            text = self._meta(soup, selector)
            match = VISIBLE_DATE_PATTERN.search(text or "")
            if not match:
                continue
            for date_format in VISIBLE_DATE_FORMATS:
                try:
                    return datetime.strptime(match.group(0), date_format).date().isoformat()
                except ValueError:
                    continue
        return None

    def _extract_article_sections(self, soup: BeautifulSoup) -> List[str]:
        for selector in SECTION_HEADING_SELECTORS:
            headings = soup.select(selector)
            if headings:
                sections = [collapse_whitespace(h.get_text(" ", strip=True)) for h in headings]
                return [s for s in sections if 3 < len(s) < 100]
        return []

    def _extract_canonical_url(self, soup: BeautifulSoup, fallback_url: str) -> str:
        for selector, attribute in (
            ('link[rel="canonical"]', "href"),
            ('meta[property="og:url"]', "content"),
        ):
            value = self._meta(soup, selector, attribute)
            if value and value.startswith("http"):
                return strip_tracking_params(value)
        return strip_tracking_params(fallback_url)

    def _extract_language(self, soup: BeautifulSoup) -> str:
        html_tag = soup.find("html")
        if isinstance(html_tag, Tag) and html_tag.get("lang"):
            lang = str(html_tag["lang"]).strip()
            if lang and len(lang) <= 10:
                return lang
        return (
            self._meta(soup, 'meta[http-equiv="content-language"]', "content")
            or self._meta(soup, 'meta[property="og:locale"]', "content")
            or "en"
        )

    def _extract_keywords(self, soup: BeautifulSoup) -> List[str]:
        raw = self._meta(soup, 'meta[name="keywords"]', "content")
        if not raw:
            return []
        return [k.strip() for k in raw.split(",") if k.strip()]

    def _split_tag(self, raw: str) -> List[str]:
        tag = collapse_whitespace(raw)
        words = tag.split(" ")
        if len(words) >= 3:
            return [w for w in words if 2 < len(w) < 50]
        if 2 < len(tag) < 100:
            return [tag]
        return []

    def _extract_tags(self, soup: BeautifulSoup) -> List[str]:
        tags: List[str] = []
        for meta in soup.select('meta[property="article:tag"]'):
            tags.extend(self._split_tag(meta.get("content") or ""))
        for element in soup.select('.tag, .tags a, .post-tags a, [class*="tag"]'):
            tags.extend(self._split_tag(element.get_text(" ", strip=True)))
        return tags

    def _extract_images(self, soup: BeautifulSoup, url: str) -> Tuple[Optional[str], List[str]]:
        featured = self._first(soup, (
            ('meta[property="og:image"]', "content"),
            ('meta[name="twitter:image"]', "content"),
        ))
        featured = urljoin(url, featured) if featured else None

        images: List[str] = [featured] if featured else []
        for img in soup.find_all("img"):
            src = img.get("src") or img.get("data-src")
            if not src or src.startswith("data:"):
                continue
            absolute = urljoin(url, src)
            if absolute not in images:
                images.append(absolute)
            if len(images) >= MAX_LIST_ITEMS:
                break
        return featured, images

    def _extract_existing_jsonld(self, soup: BeautifulSoup) -> List[Dict[str, Any]]:
        found: List[Dict[str, Any]] = []
        for script in soup.find_all("script", type="application/ld+json"):
            text = script.string or script.get_text()
            if not text or not text.strip():
                continue
            try:
                data = json.loads(text)
            except json.JSONDecodeError as e:
                self.logger.log_action("parse_jsonld", "skipped", error=str(e))
                continue
            if isinstance(data, list):
                found.extend(item for item in data if isinstance(item, dict))
            elif isinstance(data, dict):
                found.append(data)
        return found

    def _extract_business_info(self, soup: BeautifulSoup, url: str) -> Optional[BusinessInfo]:
        name = (
            self._meta(soup, 'meta[property="og:site_name"]', "content")
            or self._meta(soup, 'meta[name="application-name"]', "content")
        )
        parsed = urlparse(url)
        if not name:
            host = parsed.hostname or ""
            name = host[4:] if host.startswith("www.") else host
        if not name:
            return None

        logo = self._first(soup, (
            ('link[rel="icon"][type="image/png"]', "href"),
            ('link[rel="apple-touch-icon"]', "href"),
            (".logo img, .site-logo img, [class*='logo'] img", "src"),
            ('link[rel="icon"][type="image/x-icon"]', "href"),
        ))
        website = self._meta(soup, 'meta[property="og:url"]', "content")
        origin = f"{parsed.scheme}://{parsed.netloc}" if parsed.scheme and parsed.netloc else None
        return BusinessInfo(
            name=name,
            logo=urljoin(url, logo) if logo else None,
            url=origin or website,
        )

    def _extract_faq(self, soup: BeautifulSoup, jsonld_nodes: List[Dict[str, Any]]) -> List[FAQItem]:
        faqs: List[FAQItem] = []

        for node in jsonld_nodes:
            if not _node_has_type(node, "FAQPage"):
                continue
            entities = node.get("mainEntity") or []
            for item in entities if isinstance(entities, list) else [entities]:
                if not isinstance(item, dict):
                    continue
                answer = item.get("acceptedAnswer") or {}
                question = collapse_whitespace(item.get("name"))
                text = collapse_whitespace(answer.get("text") if isinstance(answer, dict) else None)
                if question and text:
                    faqs.append(FAQItem(question=question, answer=text))
        if faqs:
            return faqs[:MAX_FAQ_ITEMS]

        for dl in soup.find_all("dl"):
            for dt, dd in zip(dl.find_all("dt"), dl.find_all("dd")):
                question, answer = dt.get_text(" ", strip=True), dd.get_text(" ", strip=True)
                if question and answer:
                    faqs.append(FAQItem(question=question, answer=answer))

        for heading in soup.find_all(["h2", "h3", "h4"]):
            question = heading.get_text(" ", strip=True)
            if not question.endswith("?"):
                continue
            answer = heading.find_next_sibling("p")
            if answer and answer.get_text(strip=True):
                faqs.append(FAQItem(question=question, answer=answer.get_text(" ", strip=True)))

        for block in soup.select('[class*="faq"], .qa-item'):
            question = block.select_one('h2, h3, h4, h5, .question, [class*="question"]')
            answer = block.select_one('.answer, [class*="answer"], p')
            if question and answer:
                q_text = question.get_text(" ", strip=True)
                a_text = answer.get_text(" ", strip=True)
                if q_text and a_text and q_text != a_text:
                    faqs.append(FAQItem(question=q_text, answer=a_text))

        unique: Dict[str, FAQItem] = {}
        for item in faqs:
            unique.setdefault(item.question.lower(), item)
        return list(unique.values())[:MAX_FAQ_ITEMS]

    def _extract_social_urls(self, soup: BeautifulSoup) -> List[str]:
        urls: List[str] = []
        for link in soup.find_all("a", href=True):
            href = link["href"].strip()
            host = (urlparse(href).hostname or "").lower()
            if host.startswith("www."):
                host = host[4:]
            if host in SOCIAL_DOMAINS and href not in urls:
                urls.append(href)
            if len(urls) >= MAX_SOCIAL_URLS:
                break
        return urls

    def _extract_alternate_languages(self, soup: BeautifulSoup, url: str) -> List[AlternateLanguage]:
        alternates = []
        for link in soup.select('link[rel="alternate"][hreflang]'):
            lang, href = link.get("hreflang"), link.get("href")
            if lang and href:
                alternates.append(AlternateLanguage(lang=lang, url=urljoin(url, href)))
        return alternates

    def _extract_breadcrumbs(
        self,
        soup: BeautifulSoup,
        url: str,
        jsonld_nodes: List[Dict[str, Any]],
    ) -> List[BreadcrumbItem]:
        for node in jsonld_nodes:
            if not _node_has_type(node, "BreadcrumbList"):
                continue
            items = []
            elements = node.get("itemListElement") or []
            for element in sorted(
                (e for e in elements if isinstance(e, dict)),
                key=lambda e: e.get("position") or 0,
            ):
                target = element.get("item")
                name = element.get("name") or (target.get("name") if isinstance(target, dict) else None)
                item_url = target.get("@id") if isinstance(target, dict) else target
                if name:
                    items.append(BreadcrumbItem(name=collapse_whitespace(name), url=item_url))
            if items:
                return items

        return [
            BreadcrumbItem(name=link.get_text(" ", strip=True), url=urljoin(url, link["href"]) if link.get("href") else None)
            for link in soup.select('.breadcrumb a, .breadcrumbs a, [class*="breadcrumb"] a')
            if link.get_text(strip=True)
        ]

    # Cleaning and structure

    def _remove_non_content(self, soup: BeautifulSoup) -> None:
        for element in soup.select(", ".join(NON_CONTENT_SELECTORS)):
            if not element.decomposed:
                element.decompose()

    def _find_main_content(self, soup: BeautifulSoup) -> Tag:
        for selector in MAIN_CONTENT_SELECTORS:
            candidate = soup.select_one(selector)
            if candidate is not None:
                self.logger.log_decision("main_content", f"matched {selector}")
                return candidate
        self.logger.log_fallback("main_content_selectors", "body", reason="no selector matched")
        return soup.body or soup

    def _build_hierarchy(self, soup: BeautifulSoup) -> List[ContentNode]:
        root = self._find_main_content(soup)
        nodes: List[ContentNode] = []
        captured: set = set()

        block_tags = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "ul", "ol", "blockquote", "img", "table"]
        for element in root.find_all(block_tags):
            if any(id(parent) in captured for parent in element.parents):
                continue

            name = element.name
            if name in ("h1", "h2", "h3", "h4", "h5", "h6"):
                text = collapse_whitespace(element.get_text(" "))
                if text:
                    nodes.append(ContentNode(type="heading", level=int(name[1]), content=text))
            elif name == "p":
                text = collapse_whitespace(element.get_text(" "))
                if len(text) > MIN_PARAGRAPH_LENGTH:
                    nodes.append(ContentNode(type="paragraph", content=text))
            elif name in ("ul", "ol"):
                items = [collapse_whitespace(li.get_text(" ")) for li in element.find_all("li")]
                items = [item for item in items if item]
                if items:
                    nodes.append(ContentNode(
                        type="list", content=f"{name.upper()} with {len(items)} items", items=items,
                    ))
                    captured.add(id(element))
            elif name == "blockquote":
                text = collapse_whitespace(element.get_text(" "))
                if text:
                    nodes.append(ContentNode(type="quote", content=text))
                    captured.add(id(element))
            elif name == "img":
                if element.get("src"):
                    nodes.append(ContentNode(type="image", content=f"Image: {element.get('alt') or 'No alt text'}"))
            elif name == "table":
                rows = element.find_all("tr")
                if rows:
                    columns = len(rows[0].find_all(["td", "th"]))
                    cells = (
                        [collapse_whitespace(cell.get_text(" ")) for cell in row.find_all(["td", "th"])]
                        for row in rows
                    )
                    nodes.append(ContentNode(
                        type="table", content=f"Table with {len(rows)} rows and {columns} columns",
                        items=[" | ".join(c for c in row if c) for row in cells if any(row)],
                    ))
                    captured.add(id(element))
        return nodes

    def _truncate(self, nodes: List[ContentNode]) -> List[ContentNode]:
        """
        Fit the rendered text into ``max_text_length`` at block boundaries.

        Headings are kept first (up to 80% of the budget) so the outline
        survives, then paragraphs, lists, quotes, images and tables. Kept
        blocks stay in document order.
        """
        separator = 2
        total = sum(len(node.render()) + separator for node in nodes)
        if total <= self.max_text_length:
            return nodes

        keep: set = set()
        used = 0
        for index, node in enumerate(nodes):
            if node.type != "heading" or used >= self.max_text_length * 0.8:
                continue
            size = len(node.render()) + separator
            if used + size < self.max_text_length:
                keep.add(index)
                used += size

        for node_type in ("paragraph", "list", "quote", "image", "table"):
            for index, node in enumerate(nodes):
                if node.type != node_type or used >= self.max_text_length:
                    continue
                size = len(node.render()) + separator
                if used + size < self.max_text_length:
                    keep.add(index)
                    used += size

        self.logger.log_action("truncate_content", "completed", nodes_before=len(nodes), nodes_after=len(keep))
        return [node for index, node in enumerate(nodes) if index in keep]

    def _suggestions(self, nodes: List[ContentNode], metadata: PageMetadata) -> List[str]:
        suggestions = []
        if not any(node.type == "heading" and node.level in (2, 3) for node in nodes):
            suggestions.append(
                "Consider adding H2 or H3 headings to improve content structure and SEO. "
                "Well-structured headings help search engines understand your content better."
            )
        if 0 < metadata.word_count < SHORT_CONTENT_WORDS:
            suggestions.append(
                f"Content is quite short ({metadata.word_count} words). "
                f"Consider expanding to at least {SHORT_CONTENT_WORDS} words for better SEO performance."
            )
        if metadata.author is None:
            suggestions.append(
                "Add author information to your article for better entity recognition and trust signals."
            )
        if not metadata.publish_date:
            suggestions.append("Add a publication date to improve temporal relevance signals.")
        return suggestions
