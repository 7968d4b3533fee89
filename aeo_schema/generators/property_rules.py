"""
Type-aware property rules for generated JSON-LD.

The AI generator sometimes emits properties that look plausible but are
not valid for the declared ``@type``. The sanitizer walks the object
graph and strips them, reporting every removal with its full path.
``is_property_valid_for_type`` reads the same tables so validators and
the sanitizer never disagree.
"""
import copy
from typing import Any, Dict, Iterable, List, Optional, Tuple

from aeo_schema.models.schema import (
    JsonLdSchema,
    RemovalCode,
    SanitizationRemoval,
    SanitizationResult,
)

ARTICLE_TYPES = frozenset({
    "Article",
    "BlogPosting",
    "NewsArticle",
    "ScholarlyArticle",
    "TechArticle",
    "SocialMediaPosting",
    "Report",
})

CREATIVE_WORK_TYPES = ARTICLE_TYPES | frozenset({"CreativeWork", "Book", "Review"})

# property -> (allowed types, label used in the removal message)
TYPE_RESTRICTED_PROPERTIES: Dict[str, Tuple[frozenset, str]] = {
    "articleSection": (ARTICLE_TYPES, "Article"),
    "articleBody": (ARTICLE_TYPES, "Article"),
    "wordCount": (CREATIVE_WORK_TYPES, "CreativeWork"),
}

ALWAYS_REMOVED_PROPERTIES = {
    "speakable": "speakable property removed - CSS selectors are error-prone and often fail validation",
}


def _declared_types(schema_type: Any) -> List[str]:
    if isinstance(schema_type, str):
        return [schema_type]
    if isinstance(schema_type, (list, tuple)):
        return [t for t in schema_type if isinstance(t, str)]
    return []


def _type_label(schema_type: Any) -> str:
    types = _declared_types(schema_type)
    return ", ".join(types) if types else str(schema_type)


def _has_type(value: Any) -> bool:
    return isinstance(value, dict) and bool(value.get("@type"))


def is_property_valid_for_type(prop: str, schema_type: Any) -> bool:
    """True if ``prop`` may appear on an object declaring ``schema_type``."""
    if prop in ALWAYS_REMOVED_PROPERTIES:
        return False

    types = _declared_types(schema_type)
    if not types:
        return True

    restriction = TYPE_RESTRICTED_PROPERTIES.get(prop)
    if restriction is None:
        return True

    allowed, _ = restriction
    return any(t in allowed for t in types)


def _invalid_properties(schema: JsonLdSchema) -> Iterable[Tuple[str, RemovalCode, str]]:
    schema_type = schema.get("@type")
    for prop in list(schema.keys()):
        if prop in ALWAYS_REMOVED_PROPERTIES:
            yield prop, RemovalCode.SPEAKABLE_REMOVED, ALWAYS_REMOVED_PROPERTIES[prop]
        elif not is_property_valid_for_type(prop, schema_type):
            _, label = TYPE_RESTRICTED_PROPERTIES[prop]
            yield (
                prop,
                RemovalCode.INVALID_PROPERTY_FOR_TYPE,
                f"{prop} is not valid for {_type_label(schema_type)} - only valid for {label} types",
            )


def _sanitize_in_place(schema: JsonLdSchema, prefix: str, removals: List[SanitizationRemoval]) -> None:
    if not schema.get("@type"):
        return

    for prop, code, message in list(_invalid_properties(schema)):
        removals.append(SanitizationRemoval(
            code=code,
            property=f"{prefix}{prop}",
            message=message,
            removed_value=schema.pop(prop),
        ))

    for key, value in schema.items():
        if _has_type(value):
            _sanitize_in_place(value, f"{prefix}{key}.", removals)
        elif isinstance(value, list):
            for index, item in enumerate(value):
                if _has_type(item):
                    _sanitize_in_place(item, f"{prefix}{key}[{index}].", removals)


def sanitize_schema_properties(schema: JsonLdSchema) -> SanitizationResult:
    """
    Strip properties that are invalid for each object's ``@type``.

    Works on a deep copy: the caller's object is left untouched. Objects
    without ``@type`` are returned unchanged, since type compatibility
    cannot be judged without one.
    """
    if not isinstance(schema, dict) or not schema.get("@type"):
        return SanitizationResult(schema=schema, removed_properties=[])

    cleaned = copy.deepcopy(schema)
    removals: List[SanitizationRemoval] = []
    _sanitize_in_place(cleaned, "", removals)
    return SanitizationResult(schema=cleaned, removed_properties=removals)


def sanitize_schemas(schemas: List[JsonLdSchema]) -> Tuple[List[JsonLdSchema], List[SanitizationRemoval]]:
    """Sanitize a list; removal paths are prefixed with the schema index."""
    cleaned: List[JsonLdSchema] = []
    removals: List[SanitizationRemoval] = []
    for index, schema in enumerate(schemas):
        result = sanitize_schema_properties(schema)
        cleaned.append(result.schema)
        prefix = f"[{index}]." if len(schemas) > 1 else ""
        removals.extend(
            removal.model_copy(update={"property": f"{prefix}{removal.property}"})
            for removal in result.removed_properties
        )
    return cleaned, removals


def restricted_property_hint(prop: str) -> Optional[str]:
    """Human-readable description of where ``prop`` is allowed, if restricted."""
    if prop in ALWAYS_REMOVED_PROPERTIES:
        return "never allowed"
    restriction = TYPE_RESTRICTED_PROPERTIES.get(prop)
    if restriction is None:
        return None
    return f"only valid for {restriction[1]} types"
