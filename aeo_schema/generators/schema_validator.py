"""
Structural validation of generated JSON-LD.

Errors make a schema unusable (the pipeline drops it); warnings are
advisory and returned to the user alongside the schema.
"""
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from aeo_schema.generators.property_rules import (
    is_property_valid_for_type,
    restricted_property_hint,
)
from aeo_schema.models.schema import (
    JsonLdSchema,
    ValidationIssue,
    ValidationResult,
    ValidationSummary,
)
from aeo_schema.utils.logger import LayerLogger

VALID_CONTEXTS = {
    "https://schema.org",
    "http://schema.org",
    "https://schema.org/",
    "http://schema.org/",
}

KNOWN_TYPES = {
    "Article", "BlogPosting", "NewsArticle", "Product", "Organization",
    "LocalBusiness", "Person", "Event", "Recipe", "Course", "WebSite",
    "WebPage", "BreadcrumbList", "Review", "Rating", "Offer", "FAQPage",
    "QAPage", "ImageObject",
    # Types the sanitizer's rule table knows about
    "ScholarlyArticle", "TechArticle", "SocialMediaPosting", "Report",
    "CreativeWork", "Book", "Service", "AggregateRating", "ListItem",
    "Question", "Answer", "Place", "PostalAddress", "ContactPoint",
}

_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def parse_date(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 date or datetime string, else None."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _is_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(("http://", "https://"))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


PROPERTY_FORMATS: Dict[str, Callable[[Any], bool]] = {
    "url": _is_url,
    "email": lambda v: isinstance(v, str) and bool(_EMAIL.match(v)),
    "telephone": lambda v: isinstance(v, str) and len(v) > 0,
    "datePublished": lambda v: parse_date(v) is not None,
    "dateModified": lambda v: parse_date(v) is not None,
    "startDate": lambda v: parse_date(v) is not None,
    "endDate": lambda v: parse_date(v) is not None,
    "price": lambda v: isinstance(v, str) or _is_number(v),
    "ratingValue": lambda v: _is_number(v) and v >= 0,
    "bestRating": lambda v: _is_number(v) and v >= 0,
    "worstRating": lambda v: _is_number(v) and v >= 0,
}

ARTICLE_RULE_TYPES = {"Article", "BlogPosting", "NewsArticle"}
BUSINESS_RULE_TYPES = {"Organization", "LocalBusiness"}


def _is_valid_context(context: Any) -> bool:
    if isinstance(context, str):
        return context in VALID_CONTEXTS
    if isinstance(context, list):
        return any(isinstance(c, str) and c in VALID_CONTEXTS for c in context)
    return False


class SchemaValidator:
    """Validates one schema at a time; see ``validate_schema``."""

    def __init__(self):
        self.logger = LayerLogger("schema_validator")

    def validate_schema(self, schema: Any) -> ValidationResult:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        if not isinstance(schema, dict):
            errors.append(ValidationIssue(field="schema", message="Schema must be a valid object"))
            return ValidationResult(is_valid=False, errors=errors, warnings=warnings)

        self._check_context(schema, errors, warnings)
        self._check_type(schema, errors, warnings)
        self._check_formats(schema, "", warnings)
        self._check_special_properties(schema, errors, warnings)
        self._check_type_restrictions(schema, "", warnings)
        self._check_nested(schema, "", warnings)
        self._check_content_rules(schema, errors, warnings)

        is_valid = not errors
        return ValidationResult(
            is_valid=is_valid,
            errors=errors,
            warnings=warnings,
            schema=schema if is_valid else None,
        )

    def validate_many(self, schemas: List[Any]) -> List[ValidationResult]:
        results = [self.validate_schema(schema) for schema in schemas]
        summary = self.summarize(results)
        self.logger.log_action(
            "validate_schemas",
            "completed",
            total=summary.total_schemas,
            valid=summary.valid_schemas,
            errors=summary.total_errors,
            warnings=summary.total_warnings,
        )
        return results

    @staticmethod
    def summarize(results: List[ValidationResult]) -> ValidationSummary:
        total = len(results)
        valid = sum(1 for r in results if r.is_valid)
        return ValidationSummary(
            total_schemas=total,
            valid_schemas=valid,
            total_errors=sum(len(r.errors) for r in results),
            total_warnings=sum(len(r.warnings) for r in results),
            error_rate=(total - valid) / total if total else 0.0,
        )

    # Top-level structure

    def _check_context(self, schema: JsonLdSchema, errors, warnings) -> None:
        context = schema.get("@context")
        if not context:
            errors.append(ValidationIssue(field="@context", message="@context is required for JSON-LD"))
        elif not _is_valid_context(context):
            warnings.append(ValidationIssue(
                field="@context",
                message="Context should be a valid Schema.org URL",
                severity="warning",
            ))

    def _check_type(self, schema: JsonLdSchema, errors, warnings) -> None:
        schema_type = schema.get("@type")
        if not schema_type:
            errors.append(ValidationIssue(field="@type", message="@type is required for JSON-LD"))
        elif not isinstance(schema_type, str):
            errors.append(ValidationIssue(field="@type", message="@type must be a string"))
        elif schema_type not in KNOWN_TYPES:
            warnings.append(ValidationIssue(
                field="@type",
                message=f'"{schema_type}" is not a recognized Schema.org type',
                severity="warning",
            ))

    def _check_formats(self, obj: JsonLdSchema, prefix: str, warnings) -> None:
        for prop, is_valid_format in PROPERTY_FORMATS.items():
            value = obj.get(prop)
            if value and not is_valid_format(value):
                warnings.append(ValidationIssue(
                    field=f"{prefix}{prop}",
                    message=f'"{prop}" has invalid format',
                    severity="warning",
                    path=f"{prefix}{prop}" if prefix else None,
                ))

    def _check_type_restrictions(self, obj: JsonLdSchema, prefix: str, warnings) -> None:
        schema_type = obj.get("@type")
        for prop in obj:
            if not is_property_valid_for_type(prop, schema_type):
                warnings.append(ValidationIssue(
                    field=f"{prefix}{prop}",
                    message=f'"{prop}" is {restricted_property_hint(prop)} and will be removed',
                    severity="warning",
                    path=f"{prefix}{prop}" if prefix else None,
                ))

    # Property shapes

    def _check_special_properties(self, schema: JsonLdSchema, errors, warnings) -> None:
        if schema.get("image"):
            self._check_image(schema["image"], warnings)
        if schema.get("author"):
            self._check_author(schema["author"], warnings)
        if schema.get("aggregateRating"):
            self._check_rating(schema["aggregateRating"], "aggregateRating", errors, warnings)

    def _check_image(self, image: Any, warnings) -> None:
        if isinstance(image, str):
            if not _is_url(image):
                warnings.append(ValidationIssue(field="image", message="Image should be a valid URL", severity="warning"))
        elif isinstance(image, list):
            for index, item in enumerate(image):
                if isinstance(item, str) and not _is_url(item):
                    warnings.append(ValidationIssue(
                        field=f"image[{index}]", message="Image URL is invalid", severity="warning",
                    ))
        elif isinstance(image, dict) and not image.get("url"):
            warnings.append(ValidationIssue(
                field="image.url", message="Image object should have a url property", severity="warning",
            ))

    def _check_author(self, author: Any, warnings) -> None:
        authors = author if isinstance(author, list) else [author]
        for item in authors:
            if not isinstance(item, dict):
                continue
            if not item.get("@type"):
                warnings.append(ValidationIssue(
                    field="author.@type", message="Author object should have @type property", severity="warning",
                ))
            if not item.get("name"):
                warnings.append(ValidationIssue(
                    field="author.name", message="Author should have a name", severity="warning",
                ))

    def _check_rating(self, rating: Any, field: str, errors, warnings) -> None:
        if not isinstance(rating, dict):
            warnings.append(ValidationIssue(field=field, message="Rating should be an object", severity="warning"))
            return

        value = rating.get("ratingValue")
        if not _is_number(value):
            errors.append(ValidationIssue(field=f"{field}.ratingValue", message="ratingValue must be a number"))
            return

        best, worst = rating.get("bestRating"), rating.get("worstRating")
        if _is_number(best) and _is_number(worst) and not (worst <= value <= best):
            warnings.append(ValidationIssue(
                field=f"{field}.ratingValue",
                message="ratingValue should be between worstRating and bestRating",
                severity="warning",
            ))

    # Nested entities inherit @context from the parent

    def _check_nested(self, obj: JsonLdSchema, prefix: str, warnings) -> None:
        for key, value in obj.items():
            items = value if isinstance(value, list) else [value]
            for index, item in enumerate(items):
                if not (isinstance(item, dict) and item.get("@type")):
                    continue
                path = f"{prefix}{key}[{index}]" if isinstance(value, list) else f"{prefix}{key}"
                self._check_nested_entity(item, path, warnings)

    def _check_nested_entity(self, obj: JsonLdSchema, path: str, warnings) -> None:
        nested_type = obj.get("@type")
        if isinstance(nested_type, str) and nested_type not in KNOWN_TYPES:
            warnings.append(ValidationIssue(
                field=f"{path}.@type",
                message=f'"{nested_type}" is not a recognized Schema.org type',
                severity="warning",
                path=f"{path}.@type",
            ))

        self._check_formats(obj, f"{path}.", warnings)
        self._check_type_restrictions(obj, f"{path}.", warnings)

        if nested_type in BUSINESS_RULE_TYPES:
            self._check_business(obj, f"{path}.", warnings)

        self._check_nested(obj, f"{path}.", warnings)

    # Type-specific rules

    def _check_content_rules(self, schema: JsonLdSchema, errors, warnings) -> None:
        schema_type = schema.get("@type")
        if schema_type in ARTICLE_RULE_TYPES:
            for prop, message in (
                ("author", "Articles should have an author for better SEO"),
                ("datePublished", "Articles should have a publication date"),
                ("image", "Articles should have an image for better visibility"),
            ):
                if not schema.get(prop):
                    warnings.append(ValidationIssue(field=prop, message=message, severity="warning"))
        elif schema_type == "Product":
            if not schema.get("image"):
                warnings.append(ValidationIssue(
                    field="image", message="Products should have images for better visibility", severity="warning",
                ))
            if not schema.get("description"):
                warnings.append(ValidationIssue(
                    field="description", message="Products should have descriptions", severity="warning",
                ))
            if not schema.get("offers") and not schema.get("price"):
                warnings.append(ValidationIssue(
                    field="offers", message="Products should have offers or price information", severity="warning",
                ))
        elif schema_type == "Event":
            if not schema.get("location"):
                warnings.append(ValidationIssue(
                    field="location", message="Events should have location information", severity="warning",
                ))
            start, end = parse_date(schema.get("startDate")), parse_date(schema.get("endDate"))
            if start and end and _comparable(start, end) and start >= end:
                errors.append(ValidationIssue(field="endDate", message="End date must be after start date"))
        elif schema_type in BUSINESS_RULE_TYPES:
            self._check_business(schema, "", warnings)

    def _check_business(self, obj: JsonLdSchema, prefix: str, warnings) -> None:
        if not obj.get("address"):
            warnings.append(ValidationIssue(
                field=f"{prefix}address",
                message="Businesses should have address information",
                severity="warning",
                path=f"{prefix}address" if prefix else None,
            ))
        if not obj.get("telephone") and not obj.get("email"):
            warnings.append(ValidationIssue(
                field=f"{prefix}contact",
                message="Businesses should have contact information (telephone or email)",
                severity="warning",
                path=f"{prefix}contact" if prefix else None,
            ))


def _comparable(a: datetime, b: datetime) -> bool:
    # naive and aware datetimes cannot be ordered against each other
    return (a.tzinfo is None) == (b.tzinfo is None)
