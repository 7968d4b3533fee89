"""
Anti-hallucination guard for refined schemas.

Refinement is allowed to enrich structure, but not to invent people,
contact details or placeholder values that the scraped page never
contained.
"""
import copy
import re
from typing import Any, Dict, List, Optional

from aeo_schema.models.content import PageMetadata
from aeo_schema.models.schema import JsonLdSchema
from aeo_schema.utils.logger import LayerLogger

PROTECTED_PROPERTIES = ("author", "editor", "contributor", "creator")

PROTECTED_ORG_PROPERTIES = (
    "address",
    "founder",
    "founders",
    "employee",
    "employees",
    "memberOf",
    "member",
    "contactPoint",
    "telephone",
    "email",
    "faxNumber",
)

PLACEHOLDER_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"john\s+doe",
        r"jane\s+doe",
        r"example\.com",
        r"placeholder",
        r"\[your\s+",
        r"\{your\s+",
        r"\[company\s+",
        r"\{company\s+",
        r"lorem\s+ipsum",
    )
]

FAKE_LINK_MARKERS = ("johndoe", "janedoe", "example")

logger = LayerLogger("refinement_guard")


def looks_like_placeholder(value: Any) -> bool:
    return isinstance(value, str) and any(p.search(value) for p in PLACEHOLDER_PATTERNS)


def _verified_in_metadata(prop: str, metadata: Optional[PageMetadata]) -> bool:
    if metadata is None:
        return False
    if prop == "author":
        return metadata.author is not None and bool(metadata.author.name)
    # editor/contributor/creator and organization details are never scraped
    return False


def _guard_organization(
    original: Dict[str, Any],
    refined: Dict[str, Any],
    refinement_count: int,
) -> Dict[str, Any]:
    guarded = dict(refined)
    if refinement_count > 1:
        return guarded
    for prop in PROTECTED_ORG_PROPERTIES:
        if guarded.get(prop) and not original.get(prop):
            logger.log_decision("remove_property", "unverified organization detail", property=prop)
            guarded.pop(prop)
    return guarded


def _strip_placeholders(schema: JsonLdSchema) -> JsonLdSchema:
    author = schema.get("author")
    if isinstance(author, dict):
        same_as = author.get("sameAs") or []
        links = same_as if isinstance(same_as, list) else [same_as]
        fake_link = any(
            isinstance(link, str) and any(marker in link for marker in FAKE_LINK_MARKERS)
            for link in links
        )
        if looks_like_placeholder(author.get("name")) or fake_link:
            logger.log_decision("remove_property", "placeholder author", property="author")
            schema.pop("author")

    publisher = schema.get("publisher")
    if isinstance(publisher, dict) and looks_like_placeholder(publisher.get("name")):
        logger.log_decision("remove_property", "placeholder publisher name", property="publisher.name")
        publisher.pop("name")

    return schema


def guard_refined_schema(
    original: JsonLdSchema,
    refined: JsonLdSchema,
    metadata: Optional[PageMetadata] = None,
    refinement_count: int = 1,
) -> JsonLdSchema:
    """
    Remove properties the refinement added without evidence.

    The first refinement is strict about organization details; later
    ones only drop obvious placeholders.
    """
    guarded = copy.deepcopy(refined)

    for prop in PROTECTED_PROPERTIES:
        if guarded.get(prop) and not original.get(prop) and not _verified_in_metadata(prop, metadata):
            logger.log_decision("remove_property", "added without metadata evidence", property=prop)
            guarded.pop(prop)

    if isinstance(guarded.get("publisher"), dict):
        original_publisher = original.get("publisher")
        guarded["publisher"] = _guard_organization(
            original_publisher if isinstance(original_publisher, dict) else {},
            guarded["publisher"],
            refinement_count,
        )

    main_entity = guarded.get("mainEntity")
    if isinstance(main_entity, dict) and isinstance(main_entity.get("provider"), dict):
        original_entity = original.get("mainEntity")
        original_provider = original_entity.get("provider") if isinstance(original_entity, dict) else None
        main_entity["provider"] = _guard_organization(
            original_provider if isinstance(original_provider, dict) else {},
            main_entity["provider"],
            refinement_count,
        )

    return _strip_placeholders(guarded)


def summarize_removed(original: JsonLdSchema, guarded: JsonLdSchema) -> List[str]:
    """Human-readable list of what the guard took out."""
    changes = [
        f"Removed unverified property: {key}"
        for key in original
        if key not in guarded
    ]
    original_publisher, guarded_publisher = original.get("publisher"), guarded.get("publisher")
    if isinstance(original_publisher, dict) and isinstance(guarded_publisher, dict):
        changes.extend(
            f"Removed unverified publisher property: {key}"
            for key in original_publisher
            if key not in guarded_publisher
        )
    return changes
