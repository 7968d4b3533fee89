"""
Content Quality Scorer.

Scores a text sample in [0, 1] so the scraper can keep the best of several
extraction attempts. The score is a tie-breaker only: it is never
persisted or shown to users.
"""
from dataclasses import dataclass
from typing import Any

from aeo_schema.utils.logger import LayerLogger

BOILERPLATE_KEYWORDS = (
    "cookie",
    "consent",
    "privacy policy",
    "accept",
    "decline",
    "gdpr",
    "tracking",
)

MIN_CONTENT_LENGTH = 50
LENGTH_TARGET = 2000
LENGTH_WEIGHT = 0.3
DIVERSITY_WEIGHT = 0.3
STRUCTURE_WEIGHT = 0.1
MAX_BOILERPLATE_PENALTY = 0.5

STRUCTURE_SIGNALS_SCRIPT = """
() => ({
    headings: document.querySelectorAll('h1, h2, h3, h4, h5, h6').length,
    paragraphs: document.querySelectorAll('p').length,
    images: document.querySelectorAll('img').length,
    links: document.querySelectorAll('a').length
})
"""

logger = LayerLogger("content_quality")


@dataclass
class StructureSignals:
    """Element counts read from the live DOM."""
    headings: int = 0
    paragraphs: int = 0
    images: int = 0
    links: int = 0

    def score(self) -> float:
        present = [
            self.headings > 0,
            self.paragraphs > 2,
            self.images > 0,
            self.links > 2,
        ]
        return STRUCTURE_WEIGHT * sum(present)


def boilerplate_penalty(content: str) -> float:
    lowered = content.lower()
    words = content.split()
    if not words:
        return 0.0
    hits = sum(lowered.count(keyword) for keyword in BOILERPLATE_KEYWORDS)
    return min(hits / len(words) * 10, MAX_BOILERPLATE_PENALTY)


def score_content(content: str, signals: StructureSignals) -> float:
    """Weighted length, diversity and structure, minus a boilerplate penalty."""
    if not content or len(content) < MIN_CONTENT_LENGTH:
        return 0.0

    length_score = min(len(content) / LENGTH_TARGET, 1.0) * LENGTH_WEIGHT

    words = content.lower().split()
    diversity_score = 0.0
    if words:
        diversity_score = min(len(set(words)) / len(words), 1.0) * DIVERSITY_WEIGHT

    score = length_score + diversity_score + signals.score() - boilerplate_penalty(content)
    return max(0.0, min(1.0, score))


async def collect_structure_signals(page: Any) -> StructureSignals:
    """Count headings, paragraphs, images and links on ``page``."""
    counts = await page.evaluate(STRUCTURE_SIGNALS_SCRIPT)
    return StructureSignals(
        headings=int(counts.get("headings", 0)),
        paragraphs=int(counts.get("paragraphs", 0)),
        images=int(counts.get("images", 0)),
        links=int(counts.get("links", 0)),
    )


async def score_page_content(content: str, page: Any) -> float:
    """Score ``content`` using structural signals from the page it came from."""
    try:
        signals = await collect_structure_signals(page)
    except Exception as e:
        logger.log_fallback("live_dom", "no_structure", reason=str(e))
        signals = StructureSignals()
    return score_content(content, signals)
