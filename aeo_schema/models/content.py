"""
Content Analysis Model for the AEO Schema Generator.
This model is the normalized representation of a scraped page that is
handed to the schema generation client.
"""
import re
from typing import Any, Dict, List, Optional
from enum import Enum
from pydantic import BaseModel, Field, field_validator, model_validator

MAX_LIST_ITEMS = 10

_PUNCTUATION = re.compile(r"[^\w\s]")
# Block summaries and labels the HTML extractor adds to clean text; not page words.
_GENERATED_LINE = re.compile(
    r"^(?:LIST: (?:UL|OL) with \d+ items|TABLE: Table with \d+ rows and \d+ columns|IMAGE: .*)$",
    re.MULTILINE,
)
_BLOCK_LABEL = re.compile(r"^(?:P|QUOTE):[ \t]", re.MULTILINE)


def count_words(content: str) -> int:
    """Word count after punctuation and whitespace normalization, ignoring extractor block labels."""
    if not content:
        return 0
    text = _BLOCK_LABEL.sub("", _GENERATED_LINE.sub("", content))
    return len(_PUNCTUATION.sub(" ", text).split())


def dedupe_capped(values: List[str], limit: int = MAX_LIST_ITEMS) -> List[str]:
    """Case-insensitive dedupe keeping first spelling, capped at ``limit``."""
    seen = set()
    result = []
    for value in values:
        cleaned = " ".join(str(value).split())
        if not cleaned or cleaned.lower() in seen:
            continue
        seen.add(cleaned.lower())
        result.append(cleaned)
        if len(result) >= limit:
            break
    return result


class ContentType(str, Enum):
    """Page classification used to pick schema types."""
    ARTICLE = "article"
    BLOG = "blog"
    NEWS = "news"
    PRODUCT = "product"
    ABOUT = "about"
    CONTACT = "contact"
    HOME = "home"


class AuthorInfo(BaseModel):
    """Author found in page metadata."""
    name: str
    url: Optional[str] = None
    job_title: Optional[str] = None


class BusinessInfo(BaseModel):
    """Site owner / publisher information."""
    name: str
    logo: Optional[str] = None
    url: Optional[str] = None


class FAQItem(BaseModel):
    """FAQ question and answer pair."""
    question: str
    answer: str


class AlternateLanguage(BaseModel):
    """hreflang alternate link."""
    lang: str
    url: str


class BreadcrumbItem(BaseModel):
    """Breadcrumb navigation item."""
    name: str
    url: Optional[str] = None


class PageMetadata(BaseModel):
    """Structured metadata extracted from the rendered page."""
    author: Optional[AuthorInfo] = None
    publish_date: Optional[str] = None
    modified_date: Optional[str] = None
    word_count: int = Field(default=0, ge=0)
    content_type: ContentType = ContentType.ARTICLE

    canonical_url: Optional[str] = None
    language: str = "en"

    images: List[str] = Field(default_factory=list)
    featured_image: Optional[str] = None

    keywords: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    article_section: Optional[str] = None
    article_sections: List[str] = Field(default_factory=list)

    business_info: Optional[BusinessInfo] = None
    faq_content: List[FAQItem] = Field(default_factory=list)
    social_urls: List[str] = Field(default_factory=list)
    existing_json_ld: List[Dict[str, Any]] = Field(default_factory=list)
    alternate_languages: List[AlternateLanguage] = Field(default_factory=list)
    breadcrumbs: List[BreadcrumbItem] = Field(default_factory=list)

    content_quality_suggestions: List[str] = Field(default_factory=list)

    @field_validator("keywords", "tags")
    @classmethod
    def _dedupe_terms(cls, value: List[str]) -> List[str]:
        return dedupe_capped(value)


class ContentAnalysis(BaseModel):
    """
    Normalized scraped page.

    ``metadata.word_count`` always reflects ``content``; it is recomputed
    on construction so callers cannot build an inconsistent record.
    """
    url: str
    title: str = ""
    description: str = ""
    content: str = ""
    metadata: PageMetadata = Field(default_factory=PageMetadata)

    @model_validator(mode="after")
    def _sync_word_count(self) -> "ContentAnalysis":
        self.metadata.word_count = count_words(self.content)
        return self

    def get_present_fields(self) -> List[str]:
        """Return list of fields that have values."""
        present = []
        if self.title:
            present.append("title")
        if self.description:
            present.append("description")
        if self.content:
            present.append("content")
        if self.metadata.author:
            present.append("author")
        if self.metadata.publish_date:
            present.append("publish_date")
        if self.metadata.modified_date:
            present.append("modified_date")
        if self.metadata.images:
            present.append("images")
        if self.metadata.keywords:
            present.append("keywords")
        if self.metadata.tags:
            present.append("tags")
        if self.metadata.business_info:
            present.append("business_info")
        if self.metadata.faq_content:
            present.append("faq_content")
        if self.metadata.existing_json_ld:
            present.append("existing_json_ld")
        return present

    def get_missing_fields(self) -> List[str]:
        """Return list of tracked fields that are empty."""
        all_fields = [
            "title", "description", "content", "author", "publish_date",
            "modified_date", "images", "keywords", "tags", "business_info",
            "faq_content", "existing_json_ld",
        ]
        present = set(self.get_present_fields())
        return [f for f in all_fields if f not in present]
