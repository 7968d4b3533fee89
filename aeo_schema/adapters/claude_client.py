"""
Claude API Client for schema generation.
Provides an async interface to Claude for generating and refining
Schema.org JSON-LD from scraped page content.

DESIGN PRINCIPLES:
- Never hallucinate
- Never infer missing facts
- Never guess authors, brands, dates
- Omit a property rather than invent its value
"""
import json
import math
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import anthropic

from aeo_schema.config import config
from aeo_schema.errors import NoSchemasGeneratedError, SchemaGenerationError
from aeo_schema.models.content import ContentAnalysis, PageMetadata
from aeo_schema.models.schema import GenerationOptions, JsonLdSchema
from aeo_schema.utils.logger import LayerLogger
from aeo_schema.utils.retry import RetryPolicy

PROVIDER = "anthropic"
MAX_TOKENS = 8000
MAX_PROMPT_CONTENT = 100000
NOT_FOUND = "[NOT FOUND]"

RETRYABLE_STATUSES = {429, 500, 529}
RETRYABLE_ERROR_TYPES = {"overloaded_error", "api_error", "rate_limit_error"}

# (status, provider error type, message shown to the user)
USER_MESSAGES = (
    (401, "authentication_error", "Our AI assistant lost its credentials. Please contact support."),
    (403, "permission_error", "We don't have permission to access that resource. Please contact support."),
    (404, "not_found_error", "We couldn't find what we were looking for. The AI model might be temporarily unavailable."),
    (413, "request_too_large", "This page is too large for us to process. Try a simpler page or contact support for help."),
    (429, "rate_limit_error", "We're generating schemas faster than expected. Give us a moment and try again."),
    (500, "api_error", "Our AI hit a small bump. Please try again."),
    (529, "overloaded_error", "Our AI is experiencing high demand. Please try again in a moment."),
)
DEFAULT_USER_MESSAGE = "Unable to generate your schemas right now. Please try again or contact support."

SYSTEM_PROMPT = """You are a Schema.org expert producing production-ready JSON-LD for Answer Engine Optimization.

CORE RULES:
- Extract data ONLY from the metadata and content you are given
- Never invent, guess or "improve" values that are not explicitly present
- Never use placeholder values such as "Sample Author" or "Company Team"
- Never create fake URLs, images or contact information
- Never take the author from body text; use ONLY the author metadata
- Use only well-established Schema.org types; keep schemas simple and flat
- Omit a property when real data is unavailable"""

SCHEMA_SELECTION_PROMPT = """
SCHEMA SELECTION:
- BlogPosting: URLs containing /blog/ or /post/, or blog content
- Article: news articles and press releases (not blog posts)
- WebPage: static, service and landing pages
- Organization: business or company information
- LocalBusiness: businesses with a physical location
- Person: author profiles and team member pages"""

REFINE_SYSTEM_PROMPT = """You are a Schema.org, SEO and Answer Engine Optimization expert. You return precise, valid JSON-LD.

RULES:
- Never invent author names, social profiles or contact details
- Never add factual information that the provided metadata does not verify
- Never use placeholder values like "John Doe" or "example.com"
- When uncertain about factual data, omit the property
- Enhance structure and SEO, do not invent facts"""

logger = LayerLogger("claude_client")


def provider_error_type(error: BaseException) -> Optional[str]:
    body = getattr(error, "body", None)
    if isinstance(body, dict):
        inner = body.get("error")
        if isinstance(inner, dict):
            return inner.get("type")
        return body.get("type")
    return None


def is_retryable_provider_error(error: BaseException) -> bool:
    """Rate limits, overload, provider 500s and connection failures."""
    if isinstance(error, anthropic.APIConnectionError):
        return True
    if isinstance(error, anthropic.APIStatusError):
        return error.status_code in RETRYABLE_STATUSES or provider_error_type(error) in RETRYABLE_ERROR_TYPES
    return False


def user_message_for(error: BaseException) -> str:
    status = getattr(error, "status_code", None)
    error_type = provider_error_type(error)
    for code, type_name, message in USER_MESSAGES:
        if status == code or error_type == type_name:
            return message
    if isinstance(error, anthropic.APIConnectionError):
        return "We couldn't reach our AI service. Please try again in a moment."
    return DEFAULT_USER_MESSAGE


def parse_json_response(text: str) -> Any:
    """
    Parse JSON from a model reply.

    Accepts a ```json fenced block, otherwise the outermost ``{...}`` span,
    otherwise the whole text.

    Raises:
        ValueError: no parseable JSON.
    """
    fenced = re.search(r"```json\s*([\s\S]*?)\s*```", text)
    if fenced:
        candidate = fenced.group(1)
    else:
        braces = re.search(r"\{[\s\S]*\}", text)
        candidate = braces.group(0) if braces else text
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse Claude JSON response: {e}") from e


def prioritize_content(content: str) -> str:
    """Reorder clean-text blocks: headings, then paragraphs, lists, everything else."""
    blocks = [block for block in content.split("\n\n") if block.strip()]
    headings = [b for b in blocks if b.startswith("#")]
    paragraphs = [b for b in blocks if b.startswith("P:")][:50]
    lists = [b for b in blocks if b.startswith("LIST:")][:20]
    rest = [b for b in blocks if not b.startswith(("#", "P:", "LIST:"))]
    return "\n\n".join(headings + paragraphs + lists + rest)[:MAX_PROMPT_CONTENT]


def _listing(values: List[str]) -> str:
    return json.dumps(values, ensure_ascii=False) if values else "[]"


def build_generation_prompt(analysis: ContentAnalysis, options: GenerationOptions) -> str:
    metadata = analysis.metadata
    parsed = urlparse(analysis.url)
    host = parsed.hostname or ""
    origin = f"{parsed.scheme}://{parsed.netloc}"
    reading_minutes = math.ceil(metadata.word_count / 200)
    content = prioritize_content(analysis.content)

    faq_lines = "\n".join(f"Q: {item.question}\nA: {item.answer}" for item in metadata.faq_content) or NOT_FOUND
    requested = options.requested_schema_types or ([options.schema_type] if options.schema_type else [])

    sections = [
        "Extract schema.org JSON-LD from this web page data.",
        "",
        "=== PAGE METADATA ===",
        f"URL: {analysis.url}",
        f"Title: {analysis.title or NOT_FOUND}",
        f"Description: {analysis.description or NOT_FOUND}",
        f"Canonical URL: {metadata.canonical_url or analysis.url}",
        f"Language: {metadata.language or 'en'}",
        f"Content type: {metadata.content_type.value}",
        "",
        "=== AUTHOR ===",
        f"Author: {metadata.author.name if metadata.author else NOT_FOUND}",
        f"Author URL: {(metadata.author.url if metadata.author else None) or NOT_FOUND}",
        f'If the author is "{NOT_FOUND}", OMIT the author property entirely. '
        "Do not use company names as authors.",
        "",
        "=== DATES ===",
        f"Date Published: {metadata.publish_date or NOT_FOUND + ' - OMIT'}",
        f"Date Modified: {metadata.modified_date or NOT_FOUND}",
        "",
        "=== IMAGES ===",
        f"Featured Image: {metadata.featured_image or NOT_FOUND}",
        f"Other Images: {_listing(metadata.images[:5])}",
        f"Publisher Logo: {(metadata.business_info.logo if metadata.business_info else None) or NOT_FOUND}",
        "",
        "=== PUBLISHER ===",
        f"Organization: {metadata.business_info.name if metadata.business_info else host.replace('www.', '')}",
        f"Organization URL: {origin}",
        f"Social profiles: {_listing(metadata.social_urls)}",
        "",
        "=== CONTENT STRUCTURE ===",
        f"Keywords: {_listing(metadata.keywords)}",
        f"Tags: {_listing(metadata.tags)}",
        f"Article Sections (H2 headings): {_listing(metadata.article_sections)}",
        f"Breadcrumbs: {_listing([b.name for b in metadata.breadcrumbs])}",
        f"Word Count: {metadata.word_count}",
        f"Reading Time: PT{reading_minutes}M",
        "",
        "=== FAQ ===",
        faq_lines,
        "",
        f"=== CONTENT PREVIEW ({len(content)} characters) ===",
        content,
        "",
        "=== OUTPUT REQUIREMENTS ===",
        'Return ONLY a JSON object of the form {"schemas": [ ... ]} holding 1-4 complete JSON-LD schemas.',
        "Each schema must have @context and @type and every property the data above supports.",
        "Keep schemas flat. Do not add mainContentOfPage or speakable.",
        "Only use articleSection/articleBody on Article types and wordCount on CreativeWork types.",
    ]
    if requested:
        sections.append(f"Generate ONLY these types: {', '.join(requested)}")
    sections.append("OMIT properties rather than guess.")
    return "\n".join(sections)


def build_refinement_prompt(schema: JsonLdSchema, url: str, metadata: Optional[PageMetadata]) -> str:
    verified = {
        "author": metadata.author.name if metadata and metadata.author else NOT_FOUND,
        "publishDate": (metadata.publish_date if metadata else None) or NOT_FOUND,
        "modifiedDate": (metadata.modified_date if metadata else None) or NOT_FOUND,
        "siteName": (metadata.business_info.name if metadata and metadata.business_info else None) or NOT_FOUND,
    }
    return f"""Enhance the following JSON-LD schema to reach the highest possible quality.

CURRENT SCHEMA:
{json.dumps(schema, indent=2, ensure_ascii=False)}

ORIGINAL URL: {url}

VERIFIED PAGE METADATA (add factual properties only when present here):
{json.dumps(verified, indent=2, ensure_ascii=False)}

ALLOWED:
- Add relevant keywords to keywords/about/mentions arrays
- Improve existing descriptions
- Add structural properties: breadcrumb, isPartOf, potentialAction, inLanguage
- Improve existing publisher information without adding new facts

NOT ALLOWED:
- Adding author, datePublished or dateModified unless verified above
- Adding organization address, founder, telephone or email
- Placeholder values such as "John Doe", "example.com" or "[Your Company]"
- Changing @context or @type, or removing existing properties

Return ONLY a JSON object:
{{"schema": {{ ...enhanced schema... }}, "changes": ["Change 1", "Change 2"]}}"""


class ClaudeClient:
    """
    Claude API client for schema generation and refinement.

    Temperature=0 for deterministic output. Transient provider errors are
    retried with the shared retry policy; everything else surfaces as
    SchemaGenerationError with a user-facing message.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Any = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.model = model or config.ANTHROPIC_MODEL
        self.provider = PROVIDER
        self.retry_policy = (retry_policy or RetryPolicy()).with_predicate(
            is_retryable_provider_error, "claude_request"
        )

        api_key = api_key or config.ANTHROPIC_API_KEY
        if client is not None:
            self.client = client
        elif not api_key:
            logger.log_error("ANTHROPIC_API_KEY not found in environment", error_type="configuration")
            self.client = None
        else:
            # retries are owned by retry_policy
            self.client = anthropic.AsyncAnthropic(
                api_key=api_key,
                timeout=config.AI_REQUEST_TIMEOUT,
                max_retries=0,
            )
            logger.log_action("init", "completed", model=self.model)

    def is_available(self) -> bool:
        """Check if Claude client is properly configured."""
        return self.client is not None

    async def _complete(self, system: str, prompt: str) -> str:
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=MAX_TOKENS,
            temperature=0,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        text = "".join(getattr(block, "text", "") for block in response.content)
        usage = getattr(response, "usage", None)
        logger.log_action(
            "claude_request", "completed",
            model=self.model,
            response_length=len(text),
            tokens=(usage.input_tokens + usage.output_tokens) if usage else None,
        )
        return text

    async def _request(self, system: str, prompt: str) -> str:
        if not self.client:
            raise SchemaGenerationError(
                "Schema generation is not configured. Please contact support.",
                error_type="configuration",
                retryable=False,
            )
        try:
            return await self.retry_policy.call(self._complete, system, prompt)
        except anthropic.APIError as e:
            logger.log_error(
                f"Claude API error: {e}",
                error_type=provider_error_type(e) or type(e).__name__,
                status=getattr(e, "status_code", None),
            )
            raise SchemaGenerationError(
                user_message_for(e),
                status=getattr(e, "status_code", None),
                error_type=provider_error_type(e),
                retryable=is_retryable_provider_error(e),
                provider=PROVIDER,
            ) from e

    async def generate_schemas(
        self,
        analysis: ContentAnalysis,
        options: Optional[GenerationOptions] = None,
    ) -> List[JsonLdSchema]:
        """
        Generate JSON-LD candidates for a scraped page.

        Returns an empty list when the model produced no schemas; callers
        decide whether that is an error.
        """
        options = options or GenerationOptions()
        system = SYSTEM_PROMPT
        if options.requested_schema_types:
            system += "\n\nGenerate ONLY these schema types: " + ", ".join(options.requested_schema_types)
        else:
            system += "\n" + SCHEMA_SELECTION_PROMPT

        logger.log_action(
            "generate_schemas", "started",
            url=analysis.url,
            mode="user_specific" if options.requested_schema_types else "auto_detection",
            content_length=len(analysis.content),
        )
        text = await self._request(system, build_generation_prompt(analysis, options))

        try:
            result = parse_json_response(text)
        except ValueError as e:
            logger.log_error(str(e), error_type="parse_error", preview=text[:500])
            raise NoSchemasGeneratedError(
                "The AI response could not be understood. Please try again.",
                retryable=True,
            ) from e

        raw = result.get("schemas", []) if isinstance(result, dict) else result
        schemas = [s for s in raw if isinstance(s, dict)] if isinstance(raw, list) else []
        logger.log_action(
            "generate_schemas", "completed",
            url=analysis.url, schema_count=len(schemas),
            types=[s.get("@type") for s in schemas],
        )
        return schemas

    async def refine_schemas(
        self,
        schemas: List[JsonLdSchema],
        url: str,
        original_metadata: Optional[PageMetadata] = None,
    ) -> Tuple[List[JsonLdSchema], List[str]]:
        """Refine the primary schema; any further schemas pass through unchanged."""
        if not schemas:
            raise NoSchemasGeneratedError("There are no schemas to refine.")

        logger.log_action("refine_schemas", "started", url=url, schema_type=schemas[0].get("@type"))
        text = await self._request(REFINE_SYSTEM_PROMPT, build_refinement_prompt(schemas[0], url, original_metadata))

        try:
            result = parse_json_response(text)
        except ValueError as e:
            logger.log_error(str(e), error_type="parse_error", preview=text[:500])
            raise NoSchemasGeneratedError(
                "The AI response could not be understood. Please try again.",
                retryable=True,
            ) from e

        if not isinstance(result, dict):
            raise NoSchemasGeneratedError("The AI returned an unusable refinement.", retryable=True)

        refined = result.get("schema") if isinstance(result.get("schema"), dict) else result
        refined = {k: v for k, v in refined.items() if k != "changes"}
        changes = [str(c) for c in result.get("changes") or []] or ["Schema enhanced with AI improvements"]

        logger.log_action("refine_schemas", "completed", url=url, change_count=len(changes))
        return [refined] + list(schemas[1:]), changes
