"""
Quality Scoring Engine.

Produces a weighted 0-100 score for user feedback. Only the first schema
of a generation is scored; pages with several schemas are not yet scored
as a whole.
"""
from typing import Any, List

from aeo_schema.models.schema import JsonLdSchema, QualityScore, ScoreBreakdown

RECOMMENDED_PROPERTIES = (
    "description",
    "url",
    "image",
    "author",
    "publisher",
    "datePublished",
    "dateModified",
)

ADVANCED_AEO_PROPERTIES = (
    "keywords",
    "about",
    "mentions",
    "sameAs",
    "speakable",
    "inLanguage",
    "articleSection",
    "wordCount",
    "isPartOf",
    "mainEntityOfPage",
    "aggregateRating",
    "review",
)

WEIGHTS = {
    "required": 0.35,
    "recommended": 0.25,
    "advanced": 0.25,
    "content_quality": 0.15,
}


def round_half_up(value: float) -> int:
    """Round x.5 upward for non-negative scores."""
    return int(value + 0.5)


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, dict)):
        return len(value) > 0
    return True


def score_required(schema: JsonLdSchema) -> int:
    score = 0
    if _present(schema.get("@context")):
        score += 33
    if _present(schema.get("@type")):
        score += 33
    if _present(schema.get("name")) or _present(schema.get("headline")):
        score += 34
    return score


def _checklist_score(schema: JsonLdSchema, checklist) -> int:
    present = sum(1 for prop in checklist if _present(schema.get(prop)))
    return round_half_up(100 * present / len(checklist))


def score_content_quality(schema: JsonLdSchema) -> int:
    score = 0

    description = schema.get("description")
    if isinstance(description, str) and description:
        score += 20 if 50 <= len(description) <= 160 else 10

    author = schema.get("author")
    if isinstance(author, list) and author:
        score += 15
        if isinstance(author[0], dict) and _present(author[0].get("sameAs")):
            score += 10
    elif isinstance(author, dict):
        score += 15
        if _present(author.get("sameAs")):
            score += 10
    elif isinstance(author, str) and author:
        score += 10

    publisher = schema.get("publisher")
    if isinstance(publisher, dict):
        score += 15
        if _present(publisher.get("logo")):
            score += 10

    image = schema.get("image")
    if _present(image):
        score += 10
        if isinstance(image, (dict, list)):
            score += 10

    keywords = schema.get("keywords")
    if isinstance(keywords, list) and keywords:
        score += 10
    elif isinstance(keywords, str) and keywords:
        score += 5

    return min(score, 100)


def calculate_score(schemas: List[JsonLdSchema]) -> QualityScore:
    """Score ``schemas[0]``; an empty list scores zero everywhere."""
    if not schemas or not isinstance(schemas[0], dict):
        return QualityScore()

    schema = schemas[0]
    breakdown = ScoreBreakdown(
        required_properties=score_required(schema),
        recommended_properties=_checklist_score(schema, RECOMMENDED_PROPERTIES),
        advanced_aeo_features=_checklist_score(schema, ADVANCED_AEO_PROPERTIES),
        content_quality=score_content_quality(schema),
    )
    overall = round_half_up(
        WEIGHTS["required"] * breakdown.required_properties
        + WEIGHTS["recommended"] * breakdown.recommended_properties
        + WEIGHTS["advanced"] * breakdown.advanced_aeo_features
        + WEIGHTS["content_quality"] * breakdown.content_quality
    )
    return QualityScore(overall_score=min(max(overall, 0), 100), breakdown=breakdown)
