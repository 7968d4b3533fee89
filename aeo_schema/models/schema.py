"""
Models for generated JSON-LD, its sanitization, validation and scoring,
and the records the pipeline persists and returns.

Generated schemas themselves stay plain ``dict`` objects: the AI emits an
open-ended graph keyed by ``@type`` that no fixed model can describe.
"""
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

JsonLdSchema = Dict[str, Any]


def render_script_tag(schema: JsonLdSchema) -> str:
    """One ``<script type="application/ld+json">`` block, 2-space indent."""
    body = json.dumps(schema, indent=2, ensure_ascii=False).replace("</", "<\\/")
    return f'<script type="application/ld+json">\n{body}\n</script>'


def render_script_tags(schemas: List[JsonLdSchema]) -> str:
    """One block per schema, separated by a blank line."""
    return "\n\n".join(render_script_tag(schema) for schema in schemas)


class RemovalCode(str, Enum):
    """Stable codes reported for sanitizer removals."""
    SPEAKABLE_REMOVED = "SPEAKABLE_REMOVED"
    INVALID_PROPERTY_FOR_TYPE = "INVALID_PROPERTY_FOR_TYPE"


class SanitizationRemoval(BaseModel):
    """A single property stripped by the sanitizer."""
    code: RemovalCode
    property: str  # dotted / indexed path, e.g. "review[2].wordCount"
    message: str
    removed_value: Any = None


class SanitizationResult(BaseModel):
    """Cleaned schema plus an audit trail of removals."""
    schema_: JsonLdSchema = Field(alias="schema")
    removed_properties: List[SanitizationRemoval] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    @property
    def schema(self) -> JsonLdSchema:
        return self.schema_

    @property
    def was_modified(self) -> bool:
        return bool(self.removed_properties)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema": self.schema_,
            "removed_properties": [r.model_dump(mode="json") for r in self.removed_properties],
            "was_modified": self.was_modified,
        }


class ValidationIssue(BaseModel):
    """Validator error or warning."""
    field: str
    message: str
    severity: str = "error"  # error | warning
    path: Optional[str] = None


class ValidationResult(BaseModel):
    """Outcome of validating one schema."""
    is_valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    schema_: Optional[JsonLdSchema] = Field(default=None, alias="schema")

    model_config = {"populate_by_name": True}


class ValidationSummary(BaseModel):
    """Aggregate over a batch of validation results."""
    total_schemas: int = 0
    valid_schemas: int = 0
    total_errors: int = 0
    total_warnings: int = 0
    error_rate: float = 0.0


class ScoreBreakdown(BaseModel):
    """Sub-scores, each 0-100."""
    required_properties: int = Field(default=0, ge=0, le=100)
    recommended_properties: int = Field(default=0, ge=0, le=100)
    advanced_aeo_features: int = Field(default=0, ge=0, le=100)
    content_quality: int = Field(default=0, ge=0, le=100)


class QualityScore(BaseModel):
    """Weighted 0-100 schema quality score."""
    overall_score: int = Field(default=0, ge=0, le=100)
    breakdown: ScoreBreakdown = Field(default_factory=ScoreBreakdown)


class GenerationStatus(str, Enum):
    """Persisted status of a generation record."""
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class GenerationStage(str, Enum):
    """In-flight state of a generation request."""
    PENDING = "pending"
    SCRAPING = "scraping"
    GENERATING = "generating"
    VALIDATING = "validating"
    SCORED = "scored"
    PERSISTED = "persisted"
    FAILED = "failed"


class GenerationOptions(BaseModel):
    """Options forwarded to the schema generation client."""
    schema_type: Optional[str] = None
    requested_schema_types: List[str] = Field(default_factory=list)
    multi_attempt: bool = False


class GenerationRequest(BaseModel):
    """One schema generation request."""
    url: str
    user_id: str
    options: GenerationOptions = Field(default_factory=GenerationOptions)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class RefinementRequest(BaseModel):
    """Follow-up request revising previously generated schemas."""
    url: str
    user_id: str
    schemas: List[JsonLdSchema]
    generation_id: Optional[str] = None


class GenerationRecord(BaseModel):
    """Row kept by the generation store."""
    id: str
    user_id: str
    url: str
    status: GenerationStatus = GenerationStatus.PROCESSING
    schemas: List[JsonLdSchema] = Field(default_factory=list)
    schema_score: Optional[int] = None
    schema_type: Optional[str] = None
    credits_cost: int = 1
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    refinement_count: int = 0
    discovered_url_id: Optional[str] = None
    original_metadata: Optional[Dict[str, Any]] = None

    failure_reason: Optional[str] = None
    failure_stage: Optional[str] = None
    ai_model_provider: Optional[str] = None
    stack_trace: Optional[str] = None
    request_context: Optional[Dict[str, Any]] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SchemaGenerationResult(BaseModel):
    """External-facing outcome of a generation request."""
    success: bool
    url: str
    schemas: List[JsonLdSchema] = Field(default_factory=list)
    html_output: str = ""
    validation_results: List[ValidationResult] = Field(default_factory=list)
    sanitization: List[SanitizationRemoval] = Field(default_factory=list)
    score: Optional[QualityScore] = None
    generation_id: Optional[str] = None
    processing_time_ms: int = 0
    credits_used: int = 0
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    failure_stage: Optional[GenerationStage] = None
    retryable: bool = False
    content_quality_suggestions: List[str] = Field(default_factory=list)


class RefinementResult(BaseModel):
    """Outcome of a refine request."""
    success: bool
    url: str
    schemas: List[JsonLdSchema] = Field(default_factory=list)
    html_output: str = ""
    changes: List[str] = Field(default_factory=list)
    sanitization: List[SanitizationRemoval] = Field(default_factory=list)
    score: Optional[QualityScore] = None
    generation_id: Optional[str] = None
    refinement_count: int = 0
    credits_used: int = 0
    error_message: Optional[str] = None
    error_kind: Optional[str] = None


class SchemaEvaluation(BaseModel):
    """Sanitize + validate + score report for caller-supplied schemas."""
    schemas: List[JsonLdSchema] = Field(default_factory=list)
    html_output: str = ""
    sanitization: List[SanitizationRemoval] = Field(default_factory=list)
    validation_results: List[ValidationResult] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)
    score: QualityScore = Field(default_factory=QualityScore)
